"""Worker/model selection from explicit input, routing rules, or fallback."""

import logging
import re
from typing import Any, Iterable, List, Optional

from .errors import ConfigurationError, RoutingUnavailable
from .models import RoutingRule, Selection, Task, WorkerModel, WorkerProgram
from .workers import WorkerRegistry

logger = logging.getLogger(__name__)

OPERATORS = (
    "equals", "not_equals", "contains", "starts_with", "ends_with", "regex",
    "gt", "gte", "lt", "lte", "in", "not_in",
)


def _to_number(value: Any) -> Optional[float]:
    try:
        return float(value)
    except (TypeError, ValueError):
        return None


def _compare_numbers(field_value: Any, condition_value: Any, op) -> bool:
    left = _to_number(field_value)
    right = _to_number(condition_value)
    if left is None or right is None:
        return False
    return op(left, right)


def evaluate_condition(field_value: Any, operator: str, condition_value: Any) -> bool:
    """Evaluate one condition. List fields (labels) match if any element matches."""
    if isinstance(field_value, (list, tuple, set)):
        if operator == "not_equals":
            return condition_value not in field_value
        if operator == "not_in":
            values = condition_value if isinstance(condition_value, list) else [condition_value]
            return not any(item in values for item in field_value)
        return any(evaluate_condition(item, operator, condition_value) for item in field_value)

    if operator == "equals":
        return field_value == condition_value or str(field_value) == str(condition_value)
    if operator == "not_equals":
        return not evaluate_condition(field_value, "equals", condition_value)
    if operator == "contains":
        return str(condition_value) in str(field_value)
    if operator == "starts_with":
        return str(field_value).startswith(str(condition_value))
    if operator == "ends_with":
        return str(field_value).endswith(str(condition_value))
    if operator == "regex":
        try:
            return re.search(str(condition_value), str(field_value)) is not None
        except re.error:
            return False
    if operator == "gt":
        return _compare_numbers(field_value, condition_value, lambda a, b: a > b)
    if operator == "gte":
        return _compare_numbers(field_value, condition_value, lambda a, b: a >= b)
    if operator == "lt":
        return _compare_numbers(field_value, condition_value, lambda a, b: a < b)
    if operator == "lte":
        return _compare_numbers(field_value, condition_value, lambda a, b: a <= b)
    if operator == "in":
        return isinstance(condition_value, list) and field_value in condition_value
    if operator == "not_in":
        return isinstance(condition_value, list) and field_value not in condition_value
    return False


def rule_matches(rule: RoutingRule, task: Task) -> bool:
    fields = task.to_dict()
    results = []
    for condition in rule.conditions:
        value = fields.get(condition.field)
        # Missing field never matches
        results.append(value is not None and evaluate_condition(value, condition.operator, condition.value))
    if not results:
        return False
    return any(results) if rule.match == "any" else all(results)


def evaluate_rules(task: Task, rules: Iterable[RoutingRule]) -> Optional[RoutingRule]:
    """Return the first enabled rule matching ``task``, or None."""
    for rule in rules:
        if rule.enabled and rule_matches(rule, task):
            return rule
    return None


def load_rules(config: dict) -> List[RoutingRule]:
    rules = []
    for data in config.get("routing", {}).get("rules", []) or []:
        try:
            rule = RoutingRule.from_dict(data)
        except KeyError as e:
            raise ConfigurationError(f"Routing rule missing field {e}") from e
        for condition in rule.conditions:
            if condition.operator not in OPERATORS:
                raise ConfigurationError(
                    f"Routing rule '{rule.id}' uses unknown operator '{condition.operator}'"
                )
        rules.append(rule)
    return rules


class WorkerSelector:
    """Picks the worker and model for a launch."""

    def __init__(self, registry: WorkerRegistry, config: Optional[dict] = None):
        self.registry = registry
        self.config = config or {}
        self.rules = load_rules(self.config)
        fallback = self.config.get("routing", {}).get("fallback", {}) or {}
        self.fallback_worker: Optional[str] = fallback.get("worker")
        self.fallback_model: Optional[str] = fallback.get("model")

    def _model_or_default(self, worker: WorkerProgram, model: Optional[str], source: str) -> WorkerModel:
        resolved = self.registry.get_model(worker, model) if model else self.registry.default_model(worker)
        if resolved is None:
            raise ConfigurationError(f"Unknown model '{model}' for {source} worker '{worker.id}'")
        return resolved

    def select(
        self,
        explicit_id: Optional[str] = None,
        explicit_model: Optional[str] = None,
        task: Optional[Task] = None,
    ) -> Selection:
        """
        Resolve (worker, model).

        Raises:
            ConfigurationError: explicit or fallback worker unknown/unavailable, or invalid model
            RoutingUnavailable: a rule matched but its worker is unavailable
        """
        if explicit_id:
            worker = self.registry.get(explicit_id)
            if worker is None:
                raise ConfigurationError(f"Unknown worker '{explicit_id}'")
            reason = self.registry.unavailable_reason(worker)
            if reason:
                raise ConfigurationError(f"Worker '{explicit_id}' is unavailable: {reason}")
            model = self._model_or_default(worker, explicit_model, "explicit")
            return Selection(worker=worker, model=model, reason="explicit")

        rule = evaluate_rules(task, self.rules) if task else None
        if rule:
            worker = self.registry.get(rule.worker)
            reason = self.registry.unavailable_reason(worker) if worker else "not configured"
            if reason:
                raise RoutingUnavailable(
                    f"Rule '{rule.id}' selects worker '{rule.worker}', which is unavailable: {reason}",
                    rule_id=rule.id,
                    worker_id=rule.worker,
                )
            model = None
            if explicit_model:
                model = self.registry.get_model(worker, explicit_model)
                if model is None:
                    logger.warning(
                        f"Ignoring model '{explicit_model}' not valid for worker '{worker.id}', "
                        f"using rule '{rule.id}' model"
                    )
            if model is None:
                model = self._model_or_default(worker, rule.model, "rule")
            return Selection(worker=worker, model=model, matched_rule=rule, reason=f"rule:{rule.id}")

        if not self.fallback_worker:
            raise ConfigurationError("No routing rule matched and no fallback worker is configured")
        worker = self.registry.get(self.fallback_worker)
        if worker is None:
            raise ConfigurationError(f"Fallback worker '{self.fallback_worker}' is not configured")
        reason = self.registry.unavailable_reason(worker)
        if reason:
            raise ConfigurationError(f"Fallback worker '{worker.id}' is unavailable: {reason}")
        model = self._model_or_default(worker, explicit_model or self.fallback_model, "fallback")
        return Selection(worker=worker, model=model, reason="fallback")
