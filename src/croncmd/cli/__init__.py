"""Command-line interface for croncmd."""
