"""Command-line interface for phylomix."""
