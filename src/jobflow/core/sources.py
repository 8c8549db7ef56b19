from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Any, Protocol
from urllib.parse import urlparse

import requests
from bs4 import BeautifulSoup

from jobflow.errors import TransientInfraError, ValidationError
from jobflow.types import PostingData

logger = logging.getLogger(__name__)


USER_AGENT = (
    "Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) "
    "AppleWebKit/537.36 (KHTML, like Gecko) Chrome/124.0.0.0 Safari/537.36"
)


class JobSource(Protocol):
    name: str

    def search(self, query: str, location: str = "") -> list[PostingData]: ...


def clean_html(value: str) -> str:
    if "<" not in value:
        return value.strip()

    soup = BeautifulSoup(value, "html.parser")
    for tag in soup(["script", "style", "noscript"]):
        tag.extract()

    text = soup.get_text("\n")
    lines = [line.strip() for line in text.splitlines() if line.strip()]
    return "\n".join(lines)


def posting_from_item(item: dict[str, Any], *, source: str) -> PostingData | None:
    title = str(item.get("title") or "").strip()
    if not title:
        return None

    contact = item.get("contact_email") or item.get("email") or item.get("hr_email")
    return PostingData(
        title=title,
        company=str(item.get("company") or "").strip(),
        location=str(item.get("location") or "").strip(),
        description=clean_html(str(item.get("description") or "")),
        url=str(item.get("url") or "").strip(),
        source=str(item.get("source") or source),
        contact_email=str(contact).strip() if contact else None,
    )


def _matches_query(posting: PostingData, query: str) -> bool:
    needle = query.strip().lower()
    if not needle:
        return True
    return needle in posting.title.lower() or needle in posting.description.lower()


class StaticJobSource:
    def __init__(self, postings: list[PostingData], *, name: str = "static"):
        self.name = name
        self.postings = list(postings)

    @classmethod
    def from_file(cls, path: Path) -> StaticJobSource:
        try:
            payload = json.loads(path.read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError) as exc:
            raise ValidationError(f"cannot load job source file {path}: {exc}") from exc

        items = payload.get("jobs", []) if isinstance(payload, dict) else payload
        postings = [posting_from_item(item, source="file") for item in items if isinstance(item, dict)]
        return cls([posting for posting in postings if posting is not None], name=path.stem)

    def search(self, query: str, location: str = "") -> list[PostingData]:
        return [posting.model_copy() for posting in self.postings if _matches_query(posting, query)]


class JsonFeedJobSource:
    def __init__(self, url: str, *, timeout_sec: int = 10, session: requests.Session | None = None):
        self.url = url
        self.name = urlparse(url).netloc or url
        self.timeout_sec = timeout_sec
        self.session = session or requests.Session()

    def search(self, query: str, location: str = "") -> list[PostingData]:
        params = {"q": query}
        if location:
            params["location"] = location

        try:
            response = self.session.get(
                self.url,
                params=params,
                timeout=self.timeout_sec,
                headers={"User-Agent": USER_AGENT, "Accept": "application/json"},
            )
            response.raise_for_status()
            payload = response.json()
        except (requests.Timeout, requests.ConnectionError) as exc:
            raise TransientInfraError(f"job feed {self.name} unreachable: {exc}") from exc
        except (requests.RequestException, ValueError) as exc:
            raise TransientInfraError(f"job feed {self.name} failed: {exc}") from exc

        items = payload.get("jobs", []) if isinstance(payload, dict) else payload
        postings = [posting_from_item(item, source=self.name) for item in items if isinstance(item, dict)]
        found = [posting for posting in postings if posting is not None]
        logger.info("Job feed %s returned %d postings for query=%r", self.name, len(found), query)
        return found
