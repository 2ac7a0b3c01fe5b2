import enum

from pydantic import BaseModel, Field, model_validator


class EdgeType(str, enum.Enum):
    PREREQUISITE = "PREREQUISITE"
    COMPLEMENTARY = "COMPLEMENTARY"
    CONSTRAINT = "CONSTRAINT"
    EVOLUTIONARY = "EVOLUTIONARY"
    # plain edge drawn by the editor before a relationship is picked
    DEFAULT = "default"


class EdgeTypeOut(BaseModel):
    key: EdgeType
    label: str
    directed: bool
    color: str
    dashed: bool = False


EDGE_TYPES: dict[EdgeType, EdgeTypeOut] = {
    EdgeType.PREREQUISITE: EdgeTypeOut(
        key=EdgeType.PREREQUISITE, label="Prerequisite (前置)", directed=True, color="black"
    ),
    EdgeType.COMPLEMENTARY: EdgeTypeOut(
        key=EdgeType.COMPLEMENTARY, label="Complementary (补充)", directed=False, color="#888", dashed=True
    ),
    EdgeType.CONSTRAINT: EdgeTypeOut(
        key=EdgeType.CONSTRAINT, label="Constraint (约束)", directed=False, color="#ef4444"
    ),
    EdgeType.EVOLUTIONARY: EdgeTypeOut(
        key=EdgeType.EVOLUTIONARY, label="Evolutionary (演化)", directed=True, color="#2563eb"
    ),
}


class Position(BaseModel):
    x: float
    y: float


class NodeData(BaseModel):
    label: str = Field(min_length=1)
    notes: str = ""
    tags: list[str] = Field(default_factory=list)


class GraphNodeIn(BaseModel):
    id: str = Field(min_length=1)
    position: Position
    type: str = "customNode"
    data: NodeData


class GraphEdgeIn(BaseModel):
    id: str = Field(min_length=1)
    source: str
    target: str
    type: EdgeType
    label: str | None = None


class GraphPayload(BaseModel):
    nodes: list[GraphNodeIn] = Field(default_factory=list)
    edges: list[GraphEdgeIn] = Field(default_factory=list)

    @model_validator(mode="after")
    def _ids_unique(self) -> "GraphPayload":
        for kind, items in (("node", self.nodes), ("edge", self.edges)):
            seen: set[str] = set()
            for item in items:
                if item.id in seen:
                    raise ValueError(f"duplicate {kind} id: {item.id}")
                seen.add(item.id)
        return self


class GraphSaveOut(BaseModel):
    success: bool = True
    message: str
