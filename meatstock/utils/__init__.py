"""Paths, logging setup and operator error messages."""
