"""Diagram model: entities, defaults, invariants and errors."""
