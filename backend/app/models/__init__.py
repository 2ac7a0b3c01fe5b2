from app.models.entities import (
    GraphEdge,
    GraphNode,
    LibraryItem,
    User,
)

__all__ = [
    "User",
    "LibraryItem",
    "GraphNode",
    "GraphEdge",
]
