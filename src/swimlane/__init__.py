"""Swimlane Studio - swimlane diagram model, editing store and Mermaid notation."""

from typing import TYPE_CHECKING

__version__ = "0.1.0"

__all__ = ["Diagram", "DiagramStore", "Settings", "export_diagram", "import_diagram"]

if TYPE_CHECKING:
    from .config.settings import Settings
    from .core.diagram import Diagram
    from .notation import export_diagram, import_diagram
    from .store.store import DiagramStore


def __getattr__(name: str):
    if name == "Diagram":
        from .core.diagram import Diagram

        return Diagram
    if name == "DiagramStore":
        from .store.store import DiagramStore

        return DiagramStore
    if name == "Settings":
        from .config.settings import Settings

        return Settings
    if name in ("export_diagram", "import_diagram"):
        from . import notation

        return getattr(notation, name)
    raise AttributeError(f"module {__name__!r} has no attribute {name!r}")
