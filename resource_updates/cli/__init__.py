"""Command-line interface for the resource update pipeline."""
