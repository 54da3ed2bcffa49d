"""Command line interface for SQL Console."""
