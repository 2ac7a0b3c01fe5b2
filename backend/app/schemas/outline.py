from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from app.core.config import settings

# Keys the structuring stage has been seen to use for a concept's one-line explanation.
DESCRIPTION_KEYS = ("description", "definition", "explanation", "summary")


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


# --- structuring-stage output, validated once at the boundary ---

class ConceptCandidate(BaseModel):
    # Raw values; the evidence engine normalizes them.
    name: Any = None
    description: Any = None

    @classmethod
    def from_untrusted(cls, item: dict) -> "ConceptCandidate":
        description = item.get("description")
        for key in DESCRIPTION_KEYS:
            value = item.get(key)
            if isinstance(value, str) and value.strip():
                description = value
                break
        return cls(name=item.get("name"), description=description)


class ModuleCandidate(BaseModel):
    title: str = ""
    concepts: list[ConceptCandidate] = Field(default_factory=list)

    @classmethod
    def from_untrusted(cls, item: dict) -> "ModuleCandidate":
        title = item.get("title")
        raw_concepts = item.get("concepts")
        if not isinstance(raw_concepts, list):
            raw_concepts = []
        return cls(
            title=title if isinstance(title, str) else "",
            concepts=[ConceptCandidate.from_untrusted(c) for c in raw_concepts if isinstance(c, dict)],
        )


class StructuredOutline(CamelModel):
    course_name: str
    lecture_title: str
    modules: list[ModuleCandidate] = Field(default_factory=list)

    @classmethod
    def from_untrusted(cls, payload: Any) -> "StructuredOutline":
        """Apply the defaulting rules to whatever JSON the model returned."""
        if not isinstance(payload, dict):
            payload = {}
        course_name = payload.get("courseName")
        lecture_title = payload.get("lectureTitle")
        raw_modules = payload.get("modules")
        if not isinstance(raw_modules, list):
            raw_modules = []
        return cls(
            course_name=course_name if course_name and isinstance(course_name, str) else settings.default_course_name,
            lecture_title=(
                lecture_title if lecture_title and isinstance(lecture_title, str) else settings.default_lecture_title
            ),
            modules=[ModuleCandidate.from_untrusted(m) for m in raw_modules if isinstance(m, dict)],
        )


# --- response shape ---

class SourceLocation(BaseModel):
    start: int
    end: int


class DefinitionOut(CamelModel):
    text: str
    source: Literal["pdf", "ai"]
    source_quote: str | None = None
    source_location: SourceLocation | None = None


class ConceptOut(BaseModel):
    name: str
    description: str
    definition: DefinitionOut


class ModuleOut(BaseModel):
    title: str
    concepts: list[ConceptOut]


class AnnotatedOutline(CamelModel):
    course_name: str
    lecture_title: str
    modules: list[ModuleOut]


class ProcessPdfOut(BaseModel):
    success: bool = True
    data: AnnotatedOutline
