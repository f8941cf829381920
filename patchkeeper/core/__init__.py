"""Core engine for patchkeeper."""
