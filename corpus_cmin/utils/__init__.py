"""Utility helpers for corpus-cmin."""
