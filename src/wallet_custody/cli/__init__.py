"""Command-line interface for wallet custody."""
