"""Implementations of the phylomix CLI commands."""
