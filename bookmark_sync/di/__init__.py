"""Dependency wiring for the sync engine."""
