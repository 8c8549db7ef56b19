from __future__ import annotations

import re
from collections.abc import Sequence
from functools import lru_cache

from jobflow.core.vocabulary import STACKS_BY_NAME, TECH_STACKS, TRANSFERABLE_SKILLS
from jobflow.types import Recommendation, StackDetection, TechStackResult

EXACT_STACK_POINTS = 40
COMPATIBLE_STACK_POINTS = 15
TRANSFERABLE_POINTS = 5
MISSING_STACK_PENALTY = 20
MULTI_MISSING_CAP = 30
MIN_TRANSFERABLE_FOR_MAYBE = 3


@lru_cache(maxsize=None)
def _keyword_pattern(keyword: str) -> re.Pattern[str]:
    return re.compile(rf"\b{re.escape(keyword)}\b", re.IGNORECASE)


class TechStackScorer:
    def detect(self, text: str) -> list[StackDetection]:
        lower = text.lower()
        detected: list[StackDetection] = []
        for stack in TECH_STACKS:
            matches = [keyword for keyword in stack.keywords if _keyword_pattern(keyword).search(lower)]
            if matches:
                detected.append(StackDetection(stack=stack.name, confidence=len(matches), matches=matches))
        return sorted(detected, key=lambda item: item.confidence, reverse=True)

    def score(self, user_skills: Sequence[str], posting_text: str) -> TechStackResult:
        job_stacks = self.detect(posting_text)
        user_stacks = self.detect(" ".join(user_skills))
        user_stack_names = {item.stack for item in user_stacks}

        result = TechStackResult(
            job_stacks=[item.stack for item in job_stacks],
            user_stacks=[item.stack for item in user_stacks],
        )
        points = 0

        for job_stack in job_stacks:
            if job_stack.stack in user_stack_names:
                points += EXACT_STACK_POINTS
                result.primary_match = True
                result.matched_stacks.append(job_stack.stack)
                continue

            compatible = any(
                tech in job_stack.matches
                for user_stack in user_stacks
                for tech in STACKS_BY_NAME[user_stack.stack].compatible
            )
            if compatible:
                points += COMPATIBLE_STACK_POINTS
                result.compatible_match = True
            else:
                points -= MISSING_STACK_PENALTY
                result.missing_stacks.append(job_stack.stack)
                result.warnings.append(f"Job requires {job_stack.stack} experience")

        posting_lower = posting_text.lower()
        lowered_skills = [skill.lower() for skill in user_skills]
        result.transferable_skills = [
            skill
            for skill in TRANSFERABLE_SKILLS
            if skill in posting_lower and any(skill in user_skill for user_skill in lowered_skills)
        ]
        points += len(result.transferable_skills) * TRANSFERABLE_POINTS

        score = max(0, min(100, points))
        recommendation: Recommendation = "Skip"
        if result.primary_match and not result.missing_stacks:
            recommendation = "Apply"
        elif result.primary_match or (
            result.compatible_match and len(result.transferable_skills) >= MIN_TRANSFERABLE_FOR_MAYBE
        ):
            recommendation = "Maybe"
        elif len(result.missing_stacks) > 1:
            score = min(score, MULTI_MISSING_CAP)

        result.score = score
        result.recommendation = recommendation
        return result
