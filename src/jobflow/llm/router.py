from __future__ import annotations

import logging
import re
from collections import Counter
from collections.abc import Sequence
from typing import Any

from jobflow.config import Settings, get_settings
from jobflow.core.matcher import LexicalScorer, clamp_score, recommend, round_half_up
from jobflow.core.vocabulary import SKILL_BOOSTS, TECH_STACKS, TRANSFERABLE_SKILLS
from jobflow.errors import ScoringDegraded
from jobflow.llm.prompts import COVER_LETTER_PROMPT, MATCH_SCORING_PROMPT, RESUME_EXTRACTION_PROMPT
from jobflow.llm.providers import LLMProvider, ProviderPool
from jobflow.types import CandidateProfileData, MatchResult, PostingData, ResumeExtraction

logger = logging.getLogger(__name__)

_EMAIL = re.compile(r"[\w.+-]+@[\w-]+(?:\.[\w-]+)+")
_PHONE = re.compile(r"\+?\d[\d\s().-]{7,}\d")
_YEARS = re.compile(r"(\d{1,2})\+?\s*(?:years|yrs)", re.IGNORECASE)
_EDUCATION_MARKERS = ("phd", "master", "bachelor", "university", "college", "b.sc", "m.sc", "degree")
_KNOWN_SKILLS: tuple[str, ...] = tuple(
    dict.fromkeys(
        [
            *SKILL_BOOSTS,
            *(keyword for stack in TECH_STACKS for keyword in stack.keywords),
            *TRANSFERABLE_SKILLS,
        ]
    )
)


class LLMRouter:
    """Routes extraction, writing and scoring prompts to the configured providers."""

    def __init__(self, settings: Settings | None = None, pool: ProviderPool | None = None):
        self.settings = settings or get_settings()
        self.pool = pool or ProviderPool(self.settings)

    @property
    def available(self) -> bool:
        return bool(self.pool.ordered(self.settings.llm_router_default))

    def extract_resume(self, resume_text: str) -> ResumeExtraction:
        prompt = RESUME_EXTRACTION_PROMPT.format(resume_text=resume_text[:20000])
        data = self._call_json(task="extract", prompt=prompt)
        if not data:
            return heuristic_resume_extraction(resume_text)

        try:
            extraction = ResumeExtraction.model_validate(data)
        except Exception:
            logger.warning("Invalid structured resume output; falling back to heuristic")
            return heuristic_resume_extraction(resume_text)

        if not extraction.keywords:
            extraction.keywords = extraction.skills[:5]
        return extraction

    def draft_cover_letter(self, profile: CandidateProfileData, posting: PostingData) -> str:
        prompt = COVER_LETTER_PROMPT.format(
            name=profile.name or "the candidate",
            email=profile.email or "not specified",
            skills=", ".join(profile.skills) or "not specified",
            experience=profile.experience_summary or "not specified",
            title=posting.title,
            company=posting.company or "the company",
            description=posting.description[:6000],
        )
        return self._call_text(task="writer", prompt=prompt).strip()

    def score_match(self, keywords: Sequence[str], posting_text: str) -> MatchResult:
        if not self.settings.ai_scoring_enabled:
            raise ScoringDegraded("AI scoring disabled")
        if not self.pool.ordered(self.settings.llm_router_scorer_provider):
            raise ScoringDegraded("no LLM provider configured")

        prompt = MATCH_SCORING_PROMPT.format(keywords=", ".join(keywords), posting_text=posting_text[:12000])
        data = self._call_json(task="scorer", prompt=prompt)
        if not data:
            raise ScoringDegraded("scorer returned no usable JSON")
        return match_result_from_payload(data)

    def _provider_preference(self, task: str) -> str:
        return {
            "extract": self.settings.llm_router_extract_provider,
            "writer": self.settings.llm_router_writer_provider,
            "scorer": self.settings.llm_router_scorer_provider,
        }.get(task, self.settings.llm_router_default)

    def _model_for(self, provider: LLMProvider, task: str) -> str:
        if provider.config.name == "local":
            return self.settings.local_llm_model
        return {
            "extract": self.settings.openai_model_extractor,
            "writer": self.settings.openai_model_writer,
            "scorer": self.settings.openai_model_scorer,
        }.get(task, self.settings.openai_model_writer)

    def _call_json(self, *, task: str, prompt: str) -> dict[str, Any]:
        for provider in self.pool.ordered(self._provider_preference(task)):
            try:
                data = provider.complete_json(model=self._model_for(provider, task), prompt=prompt)
            except Exception as exc:
                logger.warning("LLM JSON call failed provider=%s task=%s error=%s", provider.config.name, task, exc)
                continue
            if data:
                return data
        return {}

    def _call_text(self, *, task: str, prompt: str) -> str:
        for provider in self.pool.ordered(self._provider_preference(task)):
            try:
                text = provider.complete_text(model=self._model_for(provider, task), prompt=prompt).content
            except Exception as exc:
                logger.warning("LLM text call failed provider=%s task=%s error=%s", provider.config.name, task, exc)
                continue
            if text.strip():
                return text
        return ""


def match_result_from_payload(data: dict[str, Any]) -> MatchResult:
    try:
        raw_score = float(data.get("score", 50))
    except (TypeError, ValueError):
        raw_score = 50.0
    score = clamp_score(raw_score)

    matching = [str(item) for item in data.get("matching_skills") or data.get("matchingSkills") or []]
    missing = [str(item) for item in data.get("missing_skills") or data.get("missingSkills") or []]
    recommendation = data.get("recommendation")
    if recommendation not in {"Apply", "Maybe", "Skip"}:
        recommendation = recommend(score, len(missing), len(matching))

    return MatchResult(
        score=round_half_up(score),
        recommendation=recommendation,
        matching_skills=matching,
        missing_skills=missing,
        details={"strategy": "ai", "reasoning": str(data.get("reasoning", ""))},
    )


def heuristic_resume_extraction(resume_text: str) -> ResumeExtraction:
    lines = [line.strip() for line in resume_text.splitlines() if line.strip()]
    lower = resume_text.lower()

    name = ""
    if lines and len(lines[0]) <= 60 and "@" not in lines[0]:
        name = lines[0]

    email_match = _EMAIL.search(resume_text)
    phone_match = _PHONE.search(resume_text)

    skills = [
        skill for skill in _KNOWN_SKILLS if re.search(rf"(?<![\w.]){re.escape(skill)}(?![\w+#])", lower)
    ]

    years = [int(value) for value in _YEARS.findall(resume_text)]
    education = next((line for line in lines if any(marker in line.lower() for marker in _EDUCATION_MARKERS)), "")

    keywords = skills[:5]
    if not keywords:
        tokens = LexicalScorer().tokenize(resume_text)
        keywords = [token for token, _count in Counter(tokens).most_common(5)]

    return ResumeExtraction(
        name=name,
        email=email_match.group(0) if email_match else "",
        phone=phone_match.group(0).strip() if phone_match else "",
        skills=skills,
        experience="",
        education=education,
        years_of_experience=float(max(years)) if years else None,
        keywords=keywords,
    )
