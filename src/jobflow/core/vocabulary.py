"""Fixed lookup tables for the relevance scorers.

Everything here is built once at import time and exposed through read-only
types (``frozenset``, ``MappingProxyType``, frozen dataclasses).
"""

from __future__ import annotations

from dataclasses import dataclass
from types import MappingProxyType

STOP_WORDS: frozenset[str] = frozenset(
    """
    a an and are as at be by for from has he in is it its of on that the to was will with
    we our you your able about across after all almost also am among any been but can
    cannot could did do does either else ever every get got had have her him how however
    if into just least let like likely may me might most must my neither no nor not off
    often only or other own rather said say says she should since so some than their them
    then there these they this those through too under until up very way well were what
    where which while who whom why would yet
    """.split()
)

SKILL_BOOSTS: MappingProxyType[str, float] = MappingProxyType(
    {
        # core languages
        "javascript": 1.5,
        "python": 1.5,
        "java": 1.5,
        "c++": 1.5,
        "php": 1.5,
        # frameworks
        "react": 1.4,
        "angular": 1.4,
        "vue": 1.4,
        "node": 1.4,
        "django": 1.4,
        "spring": 1.4,
        "laravel": 1.4,
        "flask": 1.4,
        "express": 1.4,
        # infrastructure and data
        "docker": 1.3,
        "kubernetes": 1.3,
        "aws": 1.3,
        "azure": 1.3,
        "gcp": 1.3,
        "sql": 1.3,
        "nosql": 1.3,
        "mongodb": 1.3,
        "postgresql": 1.3,
        "mysql": 1.3,
        # practices
        "git": 1.2,
        "ci/cd": 1.2,
        "agile": 1.2,
        "scrum": 1.2,
        "api": 1.2,
    }
)


@dataclass(frozen=True, slots=True)
class ExperienceLevel:
    name: str
    years: int
    weight: float
    markers: tuple[str, ...]


# Checked in order; the first level with a marker present wins.
EXPERIENCE_LEVELS: tuple[ExperienceLevel, ...] = (
    ExperienceLevel("senior", 5, 1.0, ("senior", "sr.", "lead", "principal", "5+ years", "7+ years")),
    ExperienceLevel("mid", 3, 0.8, ("mid-level", "mid level", "3+ years", "2-5 years")),
    ExperienceLevel("junior", 1, 0.6, ("junior", "jr.", "1+ year", "1-2 years")),
    ExperienceLevel("entry", 0, 0.4, ("entry", "graduate", "intern", "0-1 year")),
)

LEVELS_BY_NAME: MappingProxyType[str, ExperienceLevel] = MappingProxyType(
    {level.name: level for level in EXPERIENCE_LEVELS}
)

KEY_PHRASE_PATTERNS: tuple[str, ...] = (
    r"\b(?:experience with|proficient in|expert in|knowledge of|familiar with)\s+([^,.]+)",
    r"\b(\w+(?:\s+\w+)?)\s+(?:developer|engineer|programmer|architect)",
    r"\b(?:certified|certification in)\s+([^,.]+)",
)


@dataclass(frozen=True, slots=True)
class TechStack:
    name: str
    core: tuple[str, ...]
    frameworks: tuple[str, ...] = ()
    frontend: tuple[str, ...] = ()
    related: tuple[str, ...] = ()
    databases: tuple[str, ...] = ()
    compatible: tuple[str, ...] = ()

    @property
    def keywords(self) -> tuple[str, ...]:
        return (*self.core, *self.frameworks, *self.frontend, *self.related)


TECH_STACKS: tuple[TechStack, ...] = (
    TechStack(
        "php",
        core=("php",),
        frameworks=("laravel", "symfony", "codeigniter", "yii", "slim"),
        related=("composer", "artisan", "eloquent", "blade"),
        databases=("mysql", "postgresql", "mariadb"),
        compatible=("javascript", "vue", "react", "html", "css", "sql"),
    ),
    TechStack(
        "python",
        core=("python",),
        frameworks=("django", "flask", "fastapi", "pyramid"),
        related=("pip", "pandas", "numpy", "scipy", "matplotlib", "jupyter"),
        databases=("postgresql", "mongodb", "redis"),
        compatible=("javascript", "react", "vue", "sql"),
    ),
    TechStack(
        "javascript",
        core=("javascript", "nodejs", "node.js", "typescript"),
        frameworks=("express", "nestjs", "next.js", "nuxt", "gatsby"),
        frontend=("react", "vue", "angular", "svelte"),
        related=("npm", "yarn", "webpack", "babel", "jest"),
        databases=("mongodb", "postgresql", "mysql"),
        compatible=("html", "css", "sql"),
    ),
    TechStack(
        "java",
        core=("java",),
        frameworks=("spring", "spring boot", "hibernate", "struts"),
        related=("maven", "gradle", "junit", "tomcat"),
        databases=("oracle", "postgresql", "mysql"),
        compatible=("sql", "javascript"),
    ),
    TechStack(
        "dotnet",
        core=("c#", "csharp", ".net", "dotnet"),
        frameworks=("asp.net", "entity framework", "blazor", ".net core"),
        related=("visual studio", "nuget", "linq"),
        databases=("sql server", "postgresql", "mysql"),
        compatible=("javascript", "typescript", "sql"),
    ),
    TechStack(
        "ruby",
        core=("ruby",),
        frameworks=("rails", "ruby on rails", "sinatra"),
        related=("bundler", "rspec", "activerecord"),
        databases=("postgresql", "mysql", "redis"),
        compatible=("javascript", "react", "vue", "sql"),
    ),
    TechStack(
        "go",
        core=("go", "golang"),
        frameworks=("gin", "echo", "fiber", "beego"),
        related=("goroutines", "channels"),
        databases=("postgresql", "mongodb", "redis"),
        compatible=("javascript", "sql"),
    ),
)

STACKS_BY_NAME: MappingProxyType[str, TechStack] = MappingProxyType({stack.name: stack for stack in TECH_STACKS})

TRANSFERABLE_SKILLS: tuple[str, ...] = (
    "sql",
    "database",
    "api",
    "rest",
    "graphql",
    "git",
    "docker",
    "kubernetes",
    "aws",
    "azure",
    "gcp",
    "linux",
    "agile",
    "scrum",
    "testing",
    "ci/cd",
    "devops",
    "microservices",
    "design patterns",
    "data structures",
    "algorithms",
    "web development",
    "full stack",
    "backend",
    "frontend",
    "security",
    "performance",
    "optimization",
)
