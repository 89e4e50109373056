"""Core configuration, constants and logging."""
