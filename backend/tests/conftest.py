import os

import pytest

# Set default env vars for tests before any app imports
os.environ.setdefault("LLM_PROVIDER", "mock")
os.environ.setdefault("AUTH_SKIP_VERIFY", "true")
os.environ.setdefault("DATABASE_URL", "sqlite:///./test_lecturetree.db")


LECTURE_LINES = [
    "Computer Organization",
    "Lecture 3: Pipelining",
    "Register file: a small array of CPU registers read in the decode stage",
    "Data hazard: an instruction depends on the result of a previous one",
    "Forwarding: passing a result directly to a later pipeline stage",
    "Control hazard: the next instruction depends on a branch outcome",
]


def make_pdf(lines: list[str], pages: int = 1) -> bytes:
    import pymupdf

    doc = pymupdf.open()
    for _ in range(pages):
        page = doc.new_page()
        if lines:
            page.insert_text((72, 72), "\n".join(lines), fontsize=10)
    data = doc.tobytes()
    doc.close()
    return data


@pytest.fixture
def lecture_pdf() -> bytes:
    return make_pdf(LECTURE_LINES)


@pytest.fixture
def client():
    from fastapi.testclient import TestClient

    from app.db.base import Base
    from app.db.session import engine
    from app.main import app

    Base.metadata.drop_all(bind=engine)
    Base.metadata.create_all(bind=engine)
    with TestClient(app) as c:
        yield c


@pytest.fixture
def pdf_factory():
    return make_pdf
