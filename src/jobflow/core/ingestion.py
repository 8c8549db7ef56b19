from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Protocol

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session, sessionmaker

from jobflow.core.documents import extract_text
from jobflow.db.repositories import Repository, hash_text, profile_to_data
from jobflow.errors import ExtractionError, NotFoundError, ValidationError
from jobflow.types import CandidateProfileData, ResumeExtraction

logger = logging.getLogger(__name__)


class StructuredExtractor(Protocol):
    def extract_resume(self, resume_text: str) -> ResumeExtraction: ...


@dataclass(slots=True)
class IngestResult:
    profile: CandidateProfileData
    cached: bool


class ResumeIngestor:
    def __init__(self, session_factory: sessionmaker[Session], extractor: StructuredExtractor):
        self.session_factory = session_factory
        self.extractor = extractor

    def ingest(self, raw: bytes, filename: str = "resume.pdf") -> IngestResult:
        if not raw:
            raise ValidationError("uploaded document is empty")

        text = extract_text(raw, filename)
        if not text:
            raise ExtractionError(f"no text could be extracted from {filename or 'upload'}")

        content_hash = hash_text(text)
        with self.session_factory() as db:
            existing = Repository(db).get_profile_by_hash(content_hash)
            if existing is not None:
                logger.info("Resume already ingested profile_id=%s hash=%s", existing.id, content_hash[:12])
                return IngestResult(profile=profile_to_data(existing), cached=True)

        extraction = self.extractor.extract_resume(text)

        with self.session_factory() as db:
            repo = Repository(db)
            try:
                profile = repo.create_profile(
                    content_hash=content_hash,
                    filename=filename,
                    resume_text=text,
                    document=raw,
                    extraction=extraction,
                )
            except IntegrityError:
                db.rollback()
                winner = repo.get_profile_by_hash(content_hash)
                if winner is None:
                    raise
                logger.info("Concurrent ingest resolved to profile_id=%s", winner.id)
                return IngestResult(profile=profile_to_data(winner), cached=True)

            logger.info("Ingested resume profile_id=%s skills=%d", profile.id, len(extraction.skills))
            return IngestResult(profile=profile_to_data(profile), cached=False)

    def list_profiles(self) -> list[CandidateProfileData]:
        with self.session_factory() as db:
            return [profile_to_data(row) for row in Repository(db).list_profiles()]

    def get_profile(self, profile_id: int) -> CandidateProfileData:
        with self.session_factory() as db:
            return profile_to_data(Repository(db).require_profile(profile_id))

    def get_document(self, profile_id: int) -> tuple[str, bytes]:
        with self.session_factory() as db:
            profile = Repository(db).require_profile(profile_id)
            if not profile.document:
                raise NotFoundError(f"profile {profile_id} has no stored document")
            return profile.filename, profile.document

    def delete_profile(self, profile_id: int) -> None:
        with self.session_factory() as db:
            Repository(db).delete_profile(profile_id)
        logger.info("Deleted profile_id=%s", profile_id)
