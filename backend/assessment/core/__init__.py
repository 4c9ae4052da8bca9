"""Core utilities: configuration, errors, logging, scoring."""
