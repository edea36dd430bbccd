"""Core configuration, authentication and request dependencies."""
