"""Mermaid text notation: export and import of swimlane diagrams."""

from .export import HEADER_MARKER, export_diagram
from .parser import import_diagram

__all__ = ["HEADER_MARKER", "export_diagram", "import_diagram"]
