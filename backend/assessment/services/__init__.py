"""Domain services built on the repositories."""
