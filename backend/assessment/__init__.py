"""Attempt lifecycle, scoring and code judging service."""
