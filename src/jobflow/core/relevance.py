from __future__ import annotations

import logging
from collections.abc import Iterable, Sequence
from typing import Protocol

from jobflow.core.matcher import LexicalScorer, clamp_score, recommend, round_half_up
from jobflow.core.tech_stack import TechStackScorer
from jobflow.errors import ScoringDegraded
from jobflow.types import CandidateProfileData, MatchResult, PostingData

logger = logging.getLogger(__name__)

LEXICAL_WEIGHT = 0.7
TECH_WEIGHT = 0.3


class AIScorer(Protocol):
    def score_match(self, keywords: Sequence[str], posting_text: str) -> MatchResult: ...


def _ordered_union(*groups: Iterable[str]) -> list[str]:
    seen: dict[str, None] = {}
    for group in groups:
        for item in group:
            seen.setdefault(item, None)
    return list(seen)


class RelevanceEngine:
    def __init__(
        self,
        *,
        lexical: LexicalScorer | None = None,
        tech: TechStackScorer | None = None,
        ai_scorer: AIScorer | None = None,
    ):
        self.lexical = lexical or LexicalScorer()
        self.tech = tech or TechStackScorer()
        self.ai_scorer = ai_scorer

    def score(self, keywords: Sequence[str], posting_text: str) -> MatchResult:
        if self.ai_scorer is not None:
            try:
                result = self.ai_scorer.score_match(keywords, posting_text)
                result.details.setdefault("strategy", "ai")
                return result
            except ScoringDegraded as exc:
                logger.info("AI scorer unavailable, using local composite: %s", exc)
            except Exception as exc:
                logger.warning("AI scorer failed, using local composite: %s", exc)
        return self.composite_score(keywords, posting_text)

    def score_posting(self, profile: CandidateProfileData, posting: PostingData) -> MatchResult:
        return self.score(profile.search_terms, posting.match_text)

    def composite_score(self, keywords: Sequence[str], posting_text: str) -> MatchResult:
        user_skills = [keyword.lower() for keyword in keywords]
        lexical = self.lexical.score(" ".join(user_skills), posting_text)
        tech = self.tech.score(user_skills, posting_text)

        weighted = clamp_score(lexical.score * LEXICAL_WEIGHT + tech.score * TECH_WEIGHT)
        matching = _ordered_union(lexical.matching_skills, tech.matched_stacks, tech.transferable_skills)
        missing = _ordered_union(lexical.missing_skills, tech.missing_stacks)

        return MatchResult(
            score=round_half_up(weighted),
            recommendation=recommend(weighted, len(missing), len(matching)),
            matching_skills=matching,
            missing_skills=missing,
            details={
                "strategy": "composite",
                "tfidf_score": lexical.score,
                "tech_score": tech.score,
                "job_stacks": tech.job_stacks,
                "user_stacks": tech.user_stacks,
                **lexical.details,
            },
        )
