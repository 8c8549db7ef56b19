from __future__ import annotations

from collections.abc import Sequence

from jobflow.core.relevance import RelevanceEngine
from jobflow.errors import ScoringDegraded
from jobflow.types import CandidateProfileData, MatchResult, PostingData


class FixedScorer:
    def __init__(self, result: MatchResult | None = None, error: Exception | None = None):
        self.result = result
        self.error = error
        self.calls: list[tuple[list[str], str]] = []

    def score_match(self, keywords: Sequence[str], posting_text: str) -> MatchResult:
        self.calls.append((list(keywords), posting_text))
        if self.error is not None:
            raise self.error
        return self.result


def test_composite_score_without_ai() -> None:
    result = RelevanceEngine().score(["Python", "Django"], "Python Django developer")

    assert result.details["strategy"] == "composite"
    assert result.details["tech_score"] == 40
    assert result.score == 12
    assert result.recommendation == "Skip"
    assert "python" in result.matching_skills


def test_ai_scorer_preferred() -> None:
    scorer = FixedScorer(MatchResult(score=88, recommendation="Apply"))
    result = RelevanceEngine(ai_scorer=scorer).score(["python"], "Python developer")

    assert result.score == 88
    assert result.details["strategy"] == "ai"
    assert scorer.calls == [(["python"], "Python developer")]


def test_degraded_ai_scorer_falls_back_to_composite() -> None:
    engine = RelevanceEngine(ai_scorer=FixedScorer(error=ScoringDegraded("no provider")))

    result = engine.score(["python"], "Python developer")

    assert result.details["strategy"] == "composite"


def test_unexpected_ai_error_falls_back_to_composite() -> None:
    engine = RelevanceEngine(ai_scorer=FixedScorer(error=RuntimeError("boom")))

    assert engine.score(["python"], "Python developer").details["strategy"] == "composite"


def test_score_posting_uses_keywords_then_skills() -> None:
    scorer = FixedScorer(MatchResult(score=50, recommendation="Maybe"))
    profile = CandidateProfileData(id=1, content_hash="h", keywords=["python"], skills=["python", "docker"])
    posting = PostingData(title="Engineer", company="Acme", description="Docker")

    RelevanceEngine(ai_scorer=scorer).score_posting(profile, posting)

    assert scorer.calls == [(["python", "docker"], "Engineer Acme Docker")]


def test_empty_keywords_score_zero() -> None:
    result = RelevanceEngine().score([], "")

    assert result.score == 0
    assert result.recommendation == "Skip"
