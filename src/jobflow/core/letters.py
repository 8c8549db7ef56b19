from __future__ import annotations

import logging
from typing import Protocol

from jobflow.types import CandidateProfileData, PostingData

logger = logging.getLogger(__name__)


class TextGenerator(Protocol):
    def draft_cover_letter(self, profile: CandidateProfileData, posting: PostingData) -> str: ...


def _format_years(years: float | None) -> str:
    if years is None or years <= 0:
        return "several years"
    value = int(years) if float(years).is_integer() else years
    return f"{value} year" if value == 1 else f"{value} years"


def template_cover_letter(profile: CandidateProfileData, posting: PostingData) -> str:
    name = profile.name or "Applicant"
    company = posting.company or "your company"
    top_skills = ", ".join(profile.skills[:3]) or "relevant skills"
    background = "\n".join(f"- {skill}" for skill in profile.skills[:5])

    paragraphs = [
        "Dear Hiring Manager,",
        (
            f"I am writing to express my strong interest in the {posting.title} position at {company}. "
            f"With {_format_years(profile.years_of_experience)} of experience in software development "
            f"and expertise in {top_skills}, I am confident I would be a valuable addition to your team."
        ),
    ]
    if background:
        paragraphs.append(f"My background includes:\n{background}")
    paragraphs.extend(
        [
            (
                f"I am particularly drawn to this opportunity at {company} because it aligns with my "
                "technical skills and career goals."
            ),
            (
                "Thank you for considering my application. I look forward to discussing how my skills "
                f"and experience can contribute to {company}'s continued success."
            ),
            f"Best regards,\n{name}",
        ]
    )
    return "\n\n".join(paragraphs)


class CoverLetterWriter:
    def __init__(self, generator: TextGenerator | None = None):
        self.generator = generator

    def write(self, profile: CandidateProfileData, posting: PostingData) -> tuple[str, str]:
        if self.generator is not None:
            try:
                text = self.generator.draft_cover_letter(profile, posting)
            except Exception as exc:
                logger.warning("Cover letter generation failed posting=%s: %s", posting.id, exc)
            else:
                if text.strip():
                    return text.strip(), "ai"
                logger.info("Generator returned no text for posting=%s; using template", posting.id)

        return template_cover_letter(profile, posting), "template"
