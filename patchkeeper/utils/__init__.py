"""Utility helpers for patchkeeper."""
