from __future__ import annotations

from types import SimpleNamespace
from typing import Any

import pytest

from jobflow.config import Settings
from jobflow.errors import ScoringDegraded
from jobflow.llm.providers import parse_json
from jobflow.llm.router import LLMRouter, heuristic_resume_extraction, match_result_from_payload
from jobflow.types import CandidateProfileData, PostingData

RESUME = (
    "Jane Doe\n"
    "jane.doe@example.com\n"
    "+1 555 123 4567\n"
    "Senior Python developer with 6 years of experience in Django, FastAPI, PostgreSQL, Docker and AWS.\n"
    "Bachelor of Science in Computer Science, State University\n"
)


class FakeProvider:
    def __init__(self, name: str, payload: dict[str, Any] | None = None, error: Exception | None = None):
        self.config = SimpleNamespace(name=name)
        self.payload = payload or {}
        self.error = error
        self.models: list[str] = []

    def complete_json(self, *, model: str, prompt: str) -> dict[str, Any]:
        self.models.append(model)
        if self.error is not None:
            raise self.error
        return self.payload


class FakePool:
    def __init__(self, *providers: FakeProvider):
        self.providers = list(providers)

    def ordered(self, preferred: str) -> list[FakeProvider]:
        return list(self.providers)


def offline_settings(**overrides: Any) -> Settings:
    return Settings(openai_api_key="", local_llm_enabled=False, **overrides)


def test_heuristic_extraction() -> None:
    extraction = heuristic_resume_extraction(RESUME)

    assert extraction.name == "Jane Doe"
    assert extraction.email == "jane.doe@example.com"
    assert extraction.phone == "+1 555 123 4567"
    assert extraction.years_of_experience == 6.0
    assert extraction.education.startswith("Bachelor of Science")
    assert {"python", "django", "docker", "aws", "postgresql", "fastapi"} <= set(extraction.skills)
    assert extraction.keywords == extraction.skills[:5]


def test_router_without_providers_uses_heuristics() -> None:
    router = LLMRouter(settings=offline_settings())

    assert router.available is False
    assert router.extract_resume(RESUME).name == "Jane Doe"
    profile = CandidateProfileData(id=1, content_hash="x")
    assert router.draft_cover_letter(profile, PostingData(title="Engineer")) == ""
    with pytest.raises(ScoringDegraded):
        router.score_match(["python"], "Python developer")


def test_disabled_ai_scoring_is_degraded() -> None:
    router = LLMRouter(settings=offline_settings(ai_scoring_enabled=False), pool=FakePool(FakeProvider("openai")))

    with pytest.raises(ScoringDegraded):
        router.score_match(["python"], "Python developer")


def test_score_match_uses_first_answering_provider() -> None:
    failing = FakeProvider("local", error=RuntimeError("offline"))
    answering = FakeProvider(
        "openai",
        {"score": 82.5, "matchingSkills": ["python"], "missing_skills": [], "recommendation": "Apply"},
    )
    router = LLMRouter(settings=offline_settings(local_llm_model="mistral"), pool=FakePool(failing, answering))

    result = router.score_match(["python"], "Python developer")

    assert result.score == 83
    assert result.recommendation == "Apply"
    assert result.matching_skills == ["python"]
    assert result.details["strategy"] == "ai"
    assert failing.models == ["mistral"]


def test_score_match_without_json_is_degraded() -> None:
    router = LLMRouter(settings=offline_settings(), pool=FakePool(FakeProvider("openai", {})))

    with pytest.raises(ScoringDegraded):
        router.score_match(["python"], "Python developer")


def test_match_payload_is_clamped_and_recommendation_recomputed() -> None:
    result = match_result_from_payload({"score": 140, "recommendation": "Definitely"})

    assert result.score == 100
    assert result.recommendation == "Apply"

    assert match_result_from_payload({"score": "n/a"}).score == 50


def test_invalid_structured_extraction_falls_back() -> None:
    provider = FakeProvider("openai", {"skills": "not-a-list"})
    router = LLMRouter(settings=offline_settings(), pool=FakePool(provider))

    assert router.extract_resume(RESUME).name == "Jane Doe"


def test_parse_json_extracts_embedded_object() -> None:
    assert parse_json('Here you go: {"score": 70} thanks') == {"score": 70}
    assert parse_json("no json") == {}
    assert parse_json("[1, 2]") == {}
