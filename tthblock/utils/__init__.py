"""Helper utilities for the blocklist core."""
