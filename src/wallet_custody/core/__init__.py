"""Runtime wiring for the custody service."""
