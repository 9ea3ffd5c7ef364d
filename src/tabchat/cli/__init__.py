"""Command-line interface for tabchat."""
