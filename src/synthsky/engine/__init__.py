"""Command-driven simulation engine."""
