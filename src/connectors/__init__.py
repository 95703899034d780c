"""Connectors for government tax services."""
