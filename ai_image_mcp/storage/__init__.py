"""Local image cache."""
