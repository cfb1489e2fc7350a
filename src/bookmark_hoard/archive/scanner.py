"""Heuristic scanning of the agent-authored markdown archive.

The archive prose is written by the agent and only loosely structured, so
everything here is pattern based: entries start at ``## @author`` headings,
candidate links are matched against known content hosts, and a
``**Filed:**`` line marks an entry that already has a knowledge file.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path

ENTRY_START = "## @"

_ENTRY_PATTERN = re.compile(r"^## @.*?(?=\n## @|\n# |\n---\n# |\Z)", re.DOTALL | re.MULTILINE)
_ENTRY_COUNT_PATTERN = re.compile(r"^## @", re.MULTILINE)
_FILED_PATTERN = re.compile(r"\*\*Filed:\*\*", re.IGNORECASE)
_AUTHOR_PATTERN = re.compile(r"## @(\w+)")
_TWEET_PATTERN = re.compile(r"\*\*Tweet:\*\*\s*(https?://\S+)")
_LINK_FIELD_PATTERN = re.compile(r"\*\*Link:\*\*\s*(https?://\S+)")
_QUOTE_PATTERN = re.compile(r"^## @\w+[^\n]*\n>\s*([^\n]+)", re.MULTILINE)
_TRAILING_PUNCTUATION = re.compile(r"[.,;:!?)>\]]+$")
_FRONT_MATTER_SOURCE = re.compile(r"^source:\s*[\"']?([^\"'\n]+?)[\"']?\s*$", re.MULTILINE)


class SourceType(str, Enum):
    """Kind of content a candidate link points at."""

    CODE_REPOSITORY = "code-repository"
    ARTICLE = "article"


_CONTENT_PATTERNS: tuple[tuple[re.Pattern[str], SourceType], ...] = (
    (
        re.compile(r"(?<![\w.])github\.com/[\w-]+/[\w-]+(?:/[^\s)\]]*)?", re.IGNORECASE),
        SourceType.CODE_REPOSITORY,
    ),
    (re.compile(r"[\w-]+\.medium\.com/[^\s)\]]+", re.IGNORECASE), SourceType.ARTICLE),
    (re.compile(r"(?<![\w.])medium\.com/@?[\w-]+/[^\s)\]]+", re.IGNORECASE), SourceType.ARTICLE),
    (re.compile(r"[\w-]+\.substack\.com/p/[^\s)\]]+", re.IGNORECASE), SourceType.ARTICLE),
    (re.compile(r"(?<![\w.])substack\.com/[^\s)\]]+", re.IGNORECASE), SourceType.ARTICLE),
    (re.compile(r"(?<![\w.])dev\.to/[\w-]+/[^\s)\]]+", re.IGNORECASE), SourceType.ARTICLE),
)

_IGNORED_PATTERNS: tuple[re.Pattern[str], ...] = (
    re.compile(r"github\.com/.*/commit/", re.IGNORECASE),
    re.compile(r"github\.com/.*/issues/", re.IGNORECASE),
    re.compile(r"github\.com/.*/pull/", re.IGNORECASE),
    re.compile(r"(?:^|[/.])t\.co/", re.IGNORECASE),
    re.compile(r"(?:^|[/.])x\.com/", re.IGNORECASE),
    re.compile(r"twitter\.com/", re.IGNORECASE),
)

_HOST_TYPES: tuple[tuple[re.Pattern[str], SourceType], ...] = (
    (re.compile(r"github\.com", re.IGNORECASE), SourceType.CODE_REPOSITORY),
    (re.compile(r"medium\.com", re.IGNORECASE), SourceType.ARTICLE),
    (re.compile(r"substack\.com", re.IGNORECASE), SourceType.ARTICLE),
    (re.compile(r"dev\.to", re.IGNORECASE), SourceType.ARTICLE),
)

KNOWLEDGE_SUBDIRS = {
    SourceType.CODE_REPOSITORY: "tools",
    SourceType.ARTICLE: "articles",
}


@dataclass(slots=True, frozen=True)
class CandidateLink:
    """A knowledge-worthy link found inside one archive entry."""

    url: str
    source_type: SourceType
    origin: str


@dataclass(slots=True)
class ArchiveEntry:
    """One ``## @author`` block of the archive."""

    raw: str
    author: str
    tweet_url: str | None
    text: str
    filed: bool
    links: list[CandidateLink] = field(default_factory=list)


def split_entries(content: str) -> list[str]:
    """Return the raw text of every bookmark entry in document order."""

    return [match.group(0) for match in _ENTRY_PATTERN.finditer(content)]


def count_entries(content: str) -> int:
    return len(_ENTRY_COUNT_PATTERN.findall(content))


def is_filed(entry_text: str) -> bool:
    return _FILED_PATTERN.search(entry_text) is not None


def parse_entries(content: str) -> list[ArchiveEntry]:
    """Parse the archive into entries with their candidate links and filed status."""

    entries: list[ArchiveEntry] = []
    for raw in split_entries(content):
        author_match = _AUTHOR_PATTERN.search(raw)
        tweet_match = _TWEET_PATTERN.search(raw)
        quote_match = _QUOTE_PATTERN.search(raw)
        entries.append(
            ArchiveEntry(
                raw=raw,
                author=author_match.group(1) if author_match else "unknown",
                tweet_url=tweet_match.group(1) if tweet_match else None,
                text=quote_match.group(1)[:100] if quote_match else "",
                filed=is_filed(raw),
                links=extract_candidate_links(raw),
            ),
        )
    return entries


def extract_candidate_links(entry_text: str) -> list[CandidateLink]:
    """Find knowledge-worthy links in one entry.

    The ``**Link:**`` field comes first, then every content-host match in the
    entry body. Ignored hosts and sub-paths are dropped and duplicates are
    collapsed, keeping the first occurrence.
    """

    found: list[CandidateLink] = []
    seen: set[str] = set()

    def _add(url: str, source_type: SourceType | None, origin: str) -> None:
        if any(pattern.search(url) for pattern in _IGNORED_PATTERNS):
            return
        resolved = source_type or classify_url(url)
        if resolved is None or url in seen:
            return
        seen.add(url)
        found.append(CandidateLink(url=url, source_type=resolved, origin=origin))

    link_field = _LINK_FIELD_PATTERN.search(entry_text)
    if link_field:
        _add(_clean_url(link_field.group(1)), None, "link_field")

    for pattern, source_type in _CONTENT_PATTERNS:
        for match in pattern.finditer(entry_text):
            _add(_clean_url(match.group(0)), source_type, "text")

    return found


def classify_url(url: str) -> SourceType | None:
    for pattern, source_type in _HOST_TYPES:
        if pattern.search(url):
            return source_type
    return None


def url_slug(url: str) -> str:
    """Last path segment of the URL reduced to ``[A-Za-z0-9-]``."""

    tail = url.rstrip("/").rsplit("/", 1)[-1]
    return re.sub(r"[^a-zA-Z0-9-]", "", tail)


def has_completion_evidence(
    *,
    url: str,
    source_type: SourceType,
    archive_content: str,
    knowledge_dir: Path,
) -> bool:
    """Return True if the archive or knowledge files show this link was filed.

    Evidence is either an archive entry mentioning the link (or its slug) that
    carries a filed marker, or a knowledge file whose front matter ``source``
    is the link, or whose filename contains the link slug.
    """

    slug = url_slug(url)
    for raw in split_entries(archive_content):
        if not is_filed(raw):
            continue
        if url in raw or (slug and slug in raw):
            return True

    subdir = knowledge_dir / KNOWLEDGE_SUBDIRS[source_type]
    if not subdir.is_dir():
        return False
    short_slug = slug[:20].lower()
    for path in sorted(subdir.iterdir()):
        if not path.is_file():
            continue
        if short_slug and short_slug in path.name.lower():
            return True
        if knowledge_source(path) == url:
            return True
    return False


def knowledge_source(path: Path) -> str | None:
    """Read the ``source:`` value from a knowledge file's front matter."""

    try:
        text = path.read_text("utf-8")
    except (OSError, UnicodeDecodeError):
        return None
    if not text.startswith("---"):
        return None
    end = text.find("\n---", 3)
    front_matter = text[3:end] if end >= 0 else text[3:]
    match = _FRONT_MATTER_SOURCE.search(front_matter)
    return match.group(1).strip() if match else None


def _clean_url(value: str) -> str:
    url = _TRAILING_PUNCTUATION.sub("", value)
    if not url.startswith("http"):
        url = f"https://{url}"
    return url
