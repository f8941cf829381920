"""Command-line interface for patchkeeper."""
