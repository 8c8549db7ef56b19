from __future__ import annotations

from jobflow.core.tech_stack import TechStackScorer


def test_detect_orders_stacks_by_confidence() -> None:
    detected = TechStackScorer().detect("Python developer with Django and React")

    assert [item.stack for item in detected] == ["python", "javascript"]
    assert detected[0].matches == ["python", "django"]


def test_primary_match_recommends_apply() -> None:
    result = TechStackScorer().score(["python", "django"], "Python Django developer")

    assert result.primary_match is True
    assert result.matched_stacks == ["python"]
    assert result.score == 40
    assert result.recommendation == "Apply"


def test_transferable_skills_add_points() -> None:
    result = TechStackScorer().score(["python", "docker", "aws"], "Python developer, Docker, AWS")

    assert result.transferable_skills == ["docker", "aws"]
    assert result.score == 50


def test_compatible_stack_scores_without_primary_match() -> None:
    result = TechStackScorer().score(["python"], "React frontend role")

    assert result.compatible_match is True
    assert result.primary_match is False
    assert result.score == 15
    assert result.recommendation == "Skip"


def test_missing_stack_penalized_and_warned() -> None:
    result = TechStackScorer().score(["java"], "PHP Laravel developer")

    assert result.missing_stacks == ["php"]
    assert result.warnings == ["Job requires php experience"]
    assert result.score == 0
    assert result.recommendation == "Skip"


def test_several_missing_stacks() -> None:
    result = TechStackScorer().score(["python"], "Java Spring and Ruby on Rails")

    assert sorted(result.missing_stacks) == ["java", "ruby"]
    assert result.score <= 30
    assert result.recommendation == "Skip"
