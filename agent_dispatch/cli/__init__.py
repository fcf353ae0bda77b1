"""dispatch CLI tool."""
