"""Concrete collaborators for the sync engine ports."""
