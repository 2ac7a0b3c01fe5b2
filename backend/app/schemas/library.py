from datetime import datetime
from typing import Any

from pydantic import BaseModel

from app.schemas.outline import CamelModel


class LibrarySaveRequest(CamelModel):
    course_id: Any = None
    data: Any = None


class LibraryItemOut(CamelModel):
    id: str
    course_id: str
    data: Any
    created_at: datetime


class LibrarySaveOut(BaseModel):
    success: bool = True
    item: LibraryItemOut


class LibraryListOut(BaseModel):
    items: list[LibraryItemOut]
