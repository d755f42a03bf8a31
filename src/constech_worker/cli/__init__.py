"""Command-line interface for Constech Worker."""
