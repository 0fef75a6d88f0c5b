"""Command-line interface for scrna-workflow."""
