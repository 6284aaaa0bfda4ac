"""Background services driving the sync engine."""
