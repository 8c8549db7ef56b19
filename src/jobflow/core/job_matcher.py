from __future__ import annotations

import asyncio
import logging
from collections.abc import Sequence
from dataclasses import dataclass

from sqlalchemy.orm import Session, sessionmaker

from jobflow.core.relevance import RelevanceEngine
from jobflow.core.sources import JobSource
from jobflow.db.repositories import Repository, posting_to_data, profile_to_data
from jobflow.types import CandidateProfileData, MatchResult, PostingData

logger = logging.getLogger(__name__)

MAX_QUERIES = 2
OPEN_LOCATION_MARKERS = ("remote", "anywhere", "worldwide")


@dataclass(slots=True)
class ScoredPosting:
    posting: PostingData
    match: MatchResult


def build_queries(profile: CandidateProfileData) -> list[str]:
    primary = profile.keywords[0] if profile.keywords else "developer"
    candidates = [
        primary.split()[0] if primary.split() else "",
        "developer",
        profile.skills[0] if profile.skills else "software",
    ]
    queries = [query.strip() for query in candidates if query and query.strip()]
    return list(dict.fromkeys(queries))[:MAX_QUERIES]


def dedupe_postings(postings: Sequence[PostingData]) -> list[PostingData]:
    unique: dict[tuple[str, str], PostingData] = {}
    for posting in postings:
        unique[(posting.title.strip().lower(), posting.company.strip().lower())] = posting
    return list(unique.values())


def location_allowed(posting: PostingData, preferred: Sequence[str]) -> bool:
    if not preferred:
        return True
    location = posting.location.lower()
    return any(marker in location for marker in (*preferred, *OPEN_LOCATION_MARKERS))


class JobMatcher:
    def __init__(
        self,
        session_factory: sessionmaker[Session],
        sources: Sequence[JobSource],
        engine: RelevanceEngine,
        *,
        location: str = "",
        preferred_locations: Sequence[str] = (),
    ):
        self.session_factory = session_factory
        self.sources = list(sources)
        self.engine = engine
        self.location = location
        self.preferred_locations = [item.lower() for item in preferred_locations]

    async def search(self, queries: Sequence[str], location: str | None = None) -> list[PostingData]:
        where = self.location if location is None else location
        calls = [(source, query) for query in queries for source in self.sources]
        if not calls:
            return []

        results = await asyncio.gather(
            *(asyncio.to_thread(source.search, query, where) for source, query in calls),
            return_exceptions=True,
        )

        found: list[PostingData] = []
        for (source, query), result in zip(calls, results):
            if isinstance(result, BaseException):
                logger.warning("Job source %s failed for query=%r: %s", source.name, query, result)
                continue
            found.extend(result)
        return dedupe_postings(found)

    async def match(self, profile_id: int) -> list[ScoredPosting]:
        profile = await asyncio.to_thread(self._load_profile, profile_id)
        queries = build_queries(profile)
        logger.info("Matching jobs for profile_id=%s queries=%s", profile_id, queries)

        postings = await self.search(queries)
        postings = [posting for posting in postings if location_allowed(posting, self.preferred_locations)]
        logger.info("Scoring %d postings for profile_id=%s", len(postings), profile_id)

        scored: list[ScoredPosting] = []
        for posting in postings:
            match = await asyncio.to_thread(self.engine.score_posting, profile, posting)
            posting = posting.model_copy(
                update={"relevance_score": match.score, "recommendation": match.recommendation}
            )
            try:
                stored = await asyncio.to_thread(self._store, posting)
            except Exception as exc:
                logger.warning("Failed to store posting %r: %s", posting.title, exc)
                stored = posting
            scored.append(ScoredPosting(posting=stored, match=match))

        return sorted(scored, key=lambda item: item.match.score, reverse=True)

    async def refresh(self, keywords: Sequence[str], location: str | None = None) -> dict[str, int]:
        postings = await self.search(list(keywords) or ["developer"], location)
        stored = await asyncio.to_thread(self._store_new, postings)
        logger.info("Refreshed job postings found=%d stored=%d", len(postings), stored)
        return {"found": len(postings), "stored": stored}

    def _load_profile(self, profile_id: int) -> CandidateProfileData:
        with self.session_factory() as db:
            return profile_to_data(Repository(db).require_profile(profile_id))

    def _store(self, posting: PostingData) -> PostingData:
        with self.session_factory() as db:
            return posting_to_data(Repository(db).upsert_posting(posting))

    def _store_new(self, postings: Sequence[PostingData]) -> int:
        stored = 0
        with self.session_factory() as db:
            repo = Repository(db)
            for posting in postings:
                if posting.url and repo.find_posting_by_url(posting.source, posting.url) is not None:
                    continue
                repo.upsert_posting(posting)
                stored += 1
        return stored
