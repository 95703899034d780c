"""Application configuration: logging and settings."""
