from __future__ import annotations

import io
import threading
from concurrent.futures import ThreadPoolExecutor

import pytest
from pypdf import PdfWriter

from jobflow.core.ingestion import ResumeIngestor
from jobflow.errors import ExtractionError, NotFoundError, ValidationError
from jobflow.types import ResumeExtraction


class BarrierExtractor:
    """Holds every caller until all of them have missed the hash lookup."""

    def __init__(self, parties: int):
        self.barrier = threading.Barrier(parties, timeout=10)

    def extract_resume(self, resume_text: str) -> ResumeExtraction:
        self.barrier.wait()
        return ResumeExtraction(name="Jane Doe", skills=["python"])


def test_ingest_creates_profile_then_returns_cached(container, resume_bytes: bytes) -> None:
    first = container.ingestor.ingest(resume_bytes, "resume.txt")
    second = container.ingestor.ingest(resume_bytes, "copy.txt")

    assert first.cached is False
    assert first.profile.name == "Jane Doe"
    assert first.profile.email == "jane.doe@example.com"
    assert "python" in first.profile.skills
    assert len(first.profile.content_hash) == 64

    assert second.cached is True
    assert second.profile.id == first.profile.id
    assert second.profile.filename == "resume.txt"
    assert [profile.id for profile in container.ingestor.list_profiles()] == [first.profile.id]


def test_whitespace_differences_do_not_create_new_profile(container, resume_bytes: bytes) -> None:
    first = container.ingestor.ingest(resume_bytes, "resume.txt")
    second = container.ingestor.ingest(b"\n\n" + resume_bytes + b"   \n", "resume.txt")

    assert second.cached is True
    assert second.profile.id == first.profile.id


def test_empty_upload_is_rejected(container) -> None:
    with pytest.raises(ValidationError):
        container.ingestor.ingest(b"", "resume.pdf")


def test_document_without_text_is_rejected(container) -> None:
    writer = PdfWriter()
    writer.add_blank_page(width=200, height=200)
    buffer = io.BytesIO()
    writer.write(buffer)

    with pytest.raises(ExtractionError):
        container.ingestor.ingest(buffer.getvalue(), "blank.pdf")
    with pytest.raises(ExtractionError):
        container.ingestor.ingest(b"   \n  ", "blank.txt")


def test_stored_document_and_delete(container, resume_bytes: bytes) -> None:
    profile = container.ingestor.ingest(resume_bytes, "resume.txt").profile

    assert container.ingestor.get_document(profile.id) == ("resume.txt", resume_bytes)

    container.ingestor.delete_profile(profile.id)

    with pytest.raises(NotFoundError):
        container.ingestor.get_profile(profile.id)


def test_concurrent_ingest_of_same_bytes_keeps_one_profile(container, resume_bytes: bytes) -> None:
    ingestor = ResumeIngestor(container.session_factory, BarrierExtractor(parties=2))

    with ThreadPoolExecutor(max_workers=2) as pool:
        results = list(pool.map(lambda name: ingestor.ingest(resume_bytes, name), ["a.txt", "b.txt"]))

    assert sorted(result.cached for result in results) == [False, True]
    assert results[0].profile.id == results[1].profile.id
    assert [profile.id for profile in container.ingestor.list_profiles()] == [results[0].profile.id]
