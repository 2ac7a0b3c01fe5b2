import logging

from fastapi import APIRouter, Depends, File, HTTPException, UploadFile
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from app.db.session import get_db
from app.models import GraphEdge, GraphNode, LibraryItem
from app.schemas.graph import (
    EDGE_TYPES,
    EdgeTypeOut,
    GraphEdgeIn,
    GraphNodeIn,
    GraphPayload,
    GraphSaveOut,
    NodeData,
    Position,
)
from app.schemas.library import LibraryItemOut, LibraryListOut, LibrarySaveOut, LibrarySaveRequest
from app.schemas.outline import ProcessPdfOut
from app.services.auth import CurrentUser, get_current_user
from app.services.pipeline import PipelineError, PipelineService

router = APIRouter()
logger = logging.getLogger(__name__)

_PIPELINE_STATUS = {
    "PARSE_FAILED": 422,
    "DOC_TOO_LARGE": 422,
    "LLM_API_ERROR": 502,
}


def _commit(db: Session, action: str) -> None:
    try:
        db.commit()
    except SQLAlchemyError as exc:
        db.rollback()
        logger.exception("Failed to %s", action)
        raise HTTPException(status_code=500, detail="STORAGE_FAILED") from exc


def _library_item_out(item: LibraryItem) -> LibraryItemOut:
    return LibraryItemOut(id=str(item.id), course_id=item.course_id, data=item.data, created_at=item.created_at)


@router.get("/health")
def health():
    return {"status": "ok"}


@router.post("/process-pdf", response_model=ProcessPdfOut, response_model_exclude_none=True)
def process_pdf(file: UploadFile = File(...)):
    filename = (file.filename or "").lower()
    if file.content_type != "application/pdf" and not filename.endswith(".pdf"):
        raise HTTPException(status_code=400, detail="ONLY_PDF_ALLOWED")

    content = file.file.read()
    if not content:
        raise HTTPException(status_code=400, detail="NO_FILE_UPLOADED")

    try:
        outline = PipelineService().run(content)
    except PipelineError as exc:
        logger.warning("PDF processing failed: %s %s", exc.code, exc.detail)
        raise HTTPException(status_code=_PIPELINE_STATUS.get(exc.code, 500), detail=exc.code) from exc

    return ProcessPdfOut(data=outline)


@router.get("/library", response_model=LibraryListOut)
def list_library(db: Session = Depends(get_db), current_user: CurrentUser = Depends(get_current_user)):
    items = (
        db.query(LibraryItem)
        .filter(LibraryItem.user_id == current_user.user_id)
        .order_by(LibraryItem.created_at.desc())
        .all()
    )
    return LibraryListOut(items=[_library_item_out(i) for i in items])


@router.post("/library", response_model=LibrarySaveOut)
def save_library_item(
    payload: LibrarySaveRequest,
    db: Session = Depends(get_db),
    current_user: CurrentUser = Depends(get_current_user),
):
    if not payload.course_id or not isinstance(payload.course_id, str):
        raise HTTPException(status_code=400, detail="MISSING_COURSE_ID")
    if "data" not in payload.model_fields_set:
        raise HTTPException(status_code=400, detail="MISSING_DATA")

    item = (
        db.query(LibraryItem)
        .filter(LibraryItem.user_id == current_user.user_id, LibraryItem.course_id == payload.course_id)
        .first()
    )
    if item:
        item.data = payload.data
    else:
        item = LibraryItem(user_id=current_user.user_id, course_id=payload.course_id, data=payload.data)
        db.add(item)
    _commit(db, f"save library item {payload.course_id}")
    db.refresh(item)

    return LibrarySaveOut(item=_library_item_out(item))


@router.get("/graph", response_model=GraphPayload)
def load_graph(db: Session = Depends(get_db), current_user: CurrentUser = Depends(get_current_user)):
    nodes = db.query(GraphNode).filter(GraphNode.user_id == current_user.user_id).all()
    edges = db.query(GraphEdge).filter(GraphEdge.user_id == current_user.user_id).all()
    return GraphPayload(
        nodes=[
            GraphNodeIn(
                id=n.id,
                position=Position(x=n.position_x, y=n.position_y),
                type=n.type,
                data=NodeData(label=n.label, notes=n.notes, tags=list(n.tags or [])),
            )
            for n in nodes
        ],
        edges=[GraphEdgeIn(id=e.id, source=e.source, target=e.target, type=e.type, label=e.label) for e in edges],
    )


@router.post("/graph", response_model=GraphSaveOut)
def save_graph(
    payload: GraphPayload,
    db: Session = Depends(get_db),
    current_user: CurrentUser = Depends(get_current_user),
):
    # Replace-all: the editor always sends the whole canvas.
    db.query(GraphNode).filter(GraphNode.user_id == current_user.user_id).delete()
    db.query(GraphEdge).filter(GraphEdge.user_id == current_user.user_id).delete()

    db.add_all(
        [
            GraphNode(
                id=n.id,
                user_id=current_user.user_id,
                type=n.type,
                position_x=n.position.x,
                position_y=n.position.y,
                label=n.data.label,
                notes=n.data.notes,
                tags=n.data.tags,
            )
            for n in payload.nodes
        ]
    )
    db.add_all(
        [
            GraphEdge(
                id=e.id,
                user_id=current_user.user_id,
                source=e.source,
                target=e.target,
                type=e.type.value,
                label=e.label,
            )
            for e in payload.edges
        ]
    )
    _commit(db, f"save graph for user {current_user.user_id}")
    logger.info("Saved graph for user %s: %d nodes, %d edges", current_user.user_id, len(payload.nodes), len(payload.edges))

    return GraphSaveOut(message="Graph saved successfully")


@router.get("/edge-types", response_model=list[EdgeTypeOut])
def list_edge_types():
    return list(EDGE_TYPES.values())
