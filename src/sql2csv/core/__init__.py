"""Configuration, errors, logging and shared types."""
