"""Tool argument models, definitions and handlers."""
