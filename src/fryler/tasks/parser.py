"""Extract FRYLER_TASK, FRYLER_MEMORY and FRYLER_SAY markers from AI responses."""

from __future__ import annotations

import json
import logging
import re
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any

logger = logging.getLogger(__name__)

MARKER_KINDS = ("TASK", "MEMORY", "SAY")

# The payload ends at the first "}" that is followed by the marker close, so a
# "}" inside a JSON string value does not truncate the directive.
_MARKER_PATTERN = re.compile(r"<!--\s*FRYLER_(TASK|MEMORY|SAY)\s*:\s*(\{.*?\})\s*-->", re.DOTALL)
_BLANK_RUN_PATTERN = re.compile(r"\n{3,}")

DEFAULT_PRIORITY = 3


@dataclass(slots=True)
class ParsedTask:
    title: str
    description: str = ""
    priority: int = DEFAULT_PRIORITY
    scheduled_at: str | None = None
    cwd: str | None = None


@dataclass(slots=True)
class ParsedMemory:
    category: str
    content: str


@dataclass(slots=True)
class ParsedSay:
    text: str
    voice: str | None = None


@dataclass(slots=True)
class ParseResult:
    clean_text: str
    tasks: list[ParsedTask] = field(default_factory=list)
    memories: list[ParsedMemory] = field(default_factory=list)
    says: list[ParsedSay] = field(default_factory=list)

    @property
    def has_directives(self) -> bool:
        return bool(self.tasks or self.memories or self.says)


@dataclass(slots=True)
class MarkerMatch:
    kind: str
    payload: str
    full_match: str


def extract_markers(text: str, kind: str | None = None) -> list[MarkerMatch]:
    """Return recognized marker shells in document order, optionally filtered by kind."""
    out: list[MarkerMatch] = []
    for match in _MARKER_PATTERN.finditer(text):
        if kind is not None and match.group(1) != kind:
            continue
        out.append(MarkerMatch(kind=match.group(1), payload=match.group(2), full_match=match.group(0)))
    return out


def _non_empty_str(value: Any) -> str | None:
    if not isinstance(value, str):
        return None
    text = value.strip()
    return text or None


def normalize_priority(value: Any) -> int:
    """Priority is an integer in [1, 5]; anything else becomes the default."""
    if isinstance(value, bool):
        return DEFAULT_PRIORITY
    if isinstance(value, float) and value.is_integer():
        value = int(value)
    if isinstance(value, int) and 1 <= value <= 5:
        return value
    return DEFAULT_PRIORITY


def _normalize_scheduled_at(value: Any) -> str | None:
    """Rewrite any ISO 8601 form to the store's UTC ``YYYY-MM-DD HH:MM:SS`` text.

    Naive values are taken as UTC, matching the database's ``datetime()``.
    """
    text = _non_empty_str(value)
    if text is None:
        return None
    try:
        parsed = datetime.fromisoformat(text[:-1] + "+00:00" if text.endswith("Z") else text)
        if parsed.tzinfo is not None:
            parsed = parsed.astimezone(timezone.utc).replace(tzinfo=None)
    except (ValueError, OverflowError):
        logger.warning("task marker has unparseable scheduled_at; running next tick", extra={"scheduled_at": text})
        return None
    return parsed.isoformat(sep=" ", timespec="seconds")


def _validate_task(raw: dict[str, Any]) -> ParsedTask | None:
    title = _non_empty_str(raw.get("title"))
    if title is None:
        logger.warning("task marker missing required title", extra={"raw": raw})
        return None
    description = raw.get("description")
    return ParsedTask(
        title=title,
        description=description if isinstance(description, str) else "",
        priority=normalize_priority(raw.get("priority")),
        scheduled_at=_normalize_scheduled_at(raw.get("scheduled_at")),
        cwd=_non_empty_str(raw.get("cwd")),
    )


def _validate_memory(raw: dict[str, Any]) -> ParsedMemory | None:
    category = _non_empty_str(raw.get("category"))
    content = _non_empty_str(raw.get("content"))
    if category is None or content is None:
        logger.warning("memory marker missing category or content", extra={"raw": raw})
        return None
    return ParsedMemory(category=category, content=content)


def _validate_say(raw: dict[str, Any]) -> ParsedSay | None:
    text = _non_empty_str(raw.get("text"))
    if text is None:
        logger.warning("say marker missing required text", extra={"raw": raw})
        return None
    return ParsedSay(text=text, voice=_non_empty_str(raw.get("voice")))


_VALIDATORS = {
    "TASK": _validate_task,
    "MEMORY": _validate_memory,
    "SAY": _validate_say,
}


def strip_markers(text: str) -> str:
    """Remove marker shells until none are left.

    Removing one marker can join the text around it into a new shell; those
    are dropped too, without being parsed.
    """
    clean = _MARKER_PATTERN.sub("", text)
    while _MARKER_PATTERN.search(clean):
        clean = _MARKER_PATTERN.sub("", clean)
    return clean


def visible_prefix(partial_text: str) -> str:
    """Display-safe part of a response that is still streaming in.

    Complete markers are removed and anything from a trailing unclosed
    ``<!--`` onward is held back until it closes.
    """
    clean = strip_markers(partial_text)
    opening = clean.rfind("<!--")
    if opening != -1 and "-->" not in clean[opening:]:
        clean = clean[:opening]
    return clean


def parse_response(raw_text: str) -> ParseResult:
    """Split a raw response into display text and validated directives.

    Every recognized marker is removed from the text, including markers whose
    JSON is malformed or whose fields fail validation. Text without any marker
    is returned verbatim.
    """
    result = ParseResult(clean_text=raw_text)
    markers = extract_markers(raw_text)
    if not markers:
        return result

    for marker in markers:
        try:
            payload = json.loads(marker.payload)
        except json.JSONDecodeError:
            logger.warning("failed to parse %s marker JSON", marker.kind.lower(), extra={"json": marker.payload})
            continue
        if not isinstance(payload, dict):
            logger.warning("%s marker JSON is not an object", marker.kind.lower())
            continue
        parsed = _VALIDATORS[marker.kind](payload)
        if parsed is None:
            continue
        if isinstance(parsed, ParsedTask):
            result.tasks.append(parsed)
        elif isinstance(parsed, ParsedMemory):
            result.memories.append(parsed)
        else:
            result.says.append(parsed)

    clean = strip_markers(raw_text)
    result.clean_text = _BLANK_RUN_PATTERN.sub("\n\n", clean).strip()
    return result
