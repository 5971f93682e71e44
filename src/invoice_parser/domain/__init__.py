"""Extraction target shapes."""
