from __future__ import annotations

import math
import re
from collections import Counter
from collections.abc import Iterable, Mapping, Sequence

from jobflow.core.vocabulary import (
    EXPERIENCE_LEVELS,
    KEY_PHRASE_PATTERNS,
    LEVELS_BY_NAME,
    SKILL_BOOSTS,
    STOP_WORDS,
)
from jobflow.types import MatchResult, Recommendation

_STRIP_PATTERN = re.compile(r"[^\w\s+#]", re.ASCII)
_PHRASE_PATTERNS = tuple(re.compile(pattern, re.IGNORECASE) for pattern in KEY_PHRASE_PATTERNS)

APPLY_THRESHOLD = 70
MAYBE_THRESHOLD = 40
WEAK_MAYBE_THRESHOLD = 30
MAX_MISSING_FOR_APPLY = 2
MIN_MATCHING_FOR_WEAK_MAYBE = 5
IMPORTANT_TOKEN_COUNT = 20
PHRASE_POINTS = 2
PHRASE_BONUS_CAP = 10
SENIORITY_BONUS = 1.1
SHORTFALL_PENALTY_PER_YEAR = 0.1
PENALTY_FLOOR = 0.7


def round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


def clamp_score(value: float) -> float:
    return min(100.0, max(0.0, value))


def recommend(score: float, missing_count: int, matching_count: int) -> Recommendation:
    if score >= APPLY_THRESHOLD and missing_count <= MAX_MISSING_FOR_APPLY:
        return "Apply"
    if score >= MAYBE_THRESHOLD or (
        score >= WEAK_MAYBE_THRESHOLD and matching_count >= MIN_MATCHING_FOR_WEAK_MAYBE
    ):
        return "Maybe"
    return "Skip"


def cosine_similarity(vec1: Mapping[str, float], vec2: Mapping[str, float]) -> float:
    dot = 0.0
    norm1 = 0.0
    norm2 = 0.0
    for key in set(vec1) | set(vec2):
        a = vec1.get(key, 0.0)
        b = vec2.get(key, 0.0)
        dot += a * b
        norm1 += a * a
        norm2 += b * b

    denominator = math.sqrt(norm1) * math.sqrt(norm2)
    if denominator == 0:
        return 0.0
    return dot / denominator


def detect_experience_level(text: str) -> str | None:
    lower = text.lower()
    for level in EXPERIENCE_LEVELS:
        if any(marker in lower for marker in level.markers):
            return level.name
    return None


def extract_key_phrases(text: str) -> list[str]:
    phrases: list[str] = []
    for pattern in _PHRASE_PATTERNS:
        for match in pattern.finditer(text):
            phrases.append(match.group(1).lower().strip())
    return phrases


class LexicalScorer:
    """TF-IDF cosine scorer with experience and key-phrase adjustments.

    Stateless: all lookup tables come from :mod:`jobflow.core.vocabulary`.
    """

    def tokenize(self, text: str) -> list[str]:
        cleaned = _STRIP_PATTERN.sub(" ", text.lower())
        return [token for token in cleaned.split() if len(token) > 1 and token not in STOP_WORDS]

    def term_frequency(self, tokens: Sequence[str]) -> dict[str, float]:
        total = len(tokens)
        tf: dict[str, float] = {}
        for token, count in Counter(tokens).items():
            tf[token] = (count / total) * SKILL_BOOSTS.get(token, 1.0)
        return tf

    def inverse_document_frequency(self, documents: Sequence[Iterable[str]]) -> dict[str, float]:
        token_sets = [set(tokens) for tokens in documents]
        total_docs = len(token_sets)
        idf: dict[str, float] = {}
        for token_set in token_sets:
            for token in token_set:
                if token in idf:
                    continue
                docs_with_token = sum(1 for other in token_sets if token in other)
                idf[token] = math.log(total_docs / (docs_with_token or 1))
        return idf

    def tfidf(self, tf: Mapping[str, float], idf: Mapping[str, float]) -> dict[str, float]:
        return {token: value * idf.get(token, 0.0) for token, value in tf.items()}

    def experience_factor(self, candidate_text: str, posting_text: str) -> tuple[float, str]:
        posting_level = detect_experience_level(posting_text)
        candidate_level = detect_experience_level(candidate_text)
        if not posting_level or not candidate_level:
            return 1.0, "N/A"

        required = LEVELS_BY_NAME[posting_level].years
        offered = LEVELS_BY_NAME[candidate_level].years
        label = f"{candidate_level} vs {posting_level} required"
        if offered >= required:
            return SENIORITY_BONUS, label
        penalty = 1 - (required - offered) * SHORTFALL_PENALTY_PER_YEAR
        return max(PENALTY_FLOOR, penalty), label

    def phrase_matches(self, candidate_text: str, posting_text: str) -> int:
        candidate_phrases = extract_key_phrases(candidate_text)
        return sum(
            1
            for phrase in extract_key_phrases(posting_text)
            if any(other in phrase or phrase in other for other in candidate_phrases)
        )

    def score(self, candidate_text: str, posting_text: str) -> MatchResult:
        candidate_tokens = self.tokenize(candidate_text)
        posting_tokens = self.tokenize(posting_text)

        idf = self.inverse_document_frequency([candidate_tokens, posting_tokens])
        candidate_vector = self.tfidf(self.term_frequency(candidate_tokens), idf)
        posting_vector = self.tfidf(self.term_frequency(posting_tokens), idf)

        similarity = cosine_similarity(candidate_vector, posting_vector)
        factor, experience_match = self.experience_factor(candidate_text, posting_text)
        phrase_matches = self.phrase_matches(candidate_text, posting_text)

        raw_score = similarity * 100 * factor
        raw_score += min(PHRASE_BONUS_CAP, phrase_matches * PHRASE_POINTS)
        final_score = clamp_score(raw_score)

        candidate_set = set(candidate_tokens)
        ranked = sorted(posting_vector.items(), key=lambda item: item[1], reverse=True)
        matching: list[str] = []
        missing: list[str] = []
        for token, _weight in ranked[:IMPORTANT_TOKEN_COUNT]:
            if token in candidate_set:
                matching.append(token)
            elif token in SKILL_BOOSTS:
                missing.append(token)

        return MatchResult(
            score=round_half_up(final_score),
            recommendation=recommend(final_score, len(missing), len(matching)),
            matching_skills=matching,
            missing_skills=missing,
            details={
                "tfidf_similarity": round_half_up(similarity * 100),
                "experience_match": experience_match,
                "key_phrase_matches": phrase_matches,
            },
        )
