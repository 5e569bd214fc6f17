"""Countable entity keys shared by the in-process counter and Redis."""

from __future__ import annotations

from dataclasses import dataclass

VIEW_KEY_PREFIX = "view:"
PROGRESS_KEY_PREFIX = "progress:"

_SEP = ":"


@dataclass(frozen=True)
class ViewKey:
    """A work, optionally narrowed to one of its sections (chapters)."""

    work_id: str
    section_id: str | None = None

    @property
    def is_section(self) -> bool:
        return self.section_id is not None

    def __str__(self) -> str:
        return build_view_key(self.work_id, self.section_id)


def _check_id(value: str, field: str) -> None:
    if not value:
        raise ValueError(f"{field} must not be empty")
    if _SEP in value:
        raise ValueError(f"{field} must not contain '{_SEP}': {value!r}")


def build_view_key(work_id: str, section_id: str | None = None) -> str:
    """Build ``view:<work>`` or ``view:<work>:<section>``."""
    _check_id(work_id, "work_id")
    if section_id is None:
        return f"{VIEW_KEY_PREFIX}{work_id}"
    _check_id(section_id, "section_id")
    return f"{VIEW_KEY_PREFIX}{work_id}{_SEP}{section_id}"


def parse_view_key(key: str) -> ViewKey | None:
    """Inverse of build_view_key. Returns None for anything malformed."""
    if not key.startswith(VIEW_KEY_PREFIX):
        return None
    parts = key[len(VIEW_KEY_PREFIX):].split(_SEP)
    if not all(parts):
        return None
    if len(parts) == 1:
        return ViewKey(parts[0])
    if len(parts) == 2:
        return ViewKey(parts[0], parts[1])
    return None


def build_progress_key(user_id: str, work_id: str, section_id: str) -> str:
    return f"{PROGRESS_KEY_PREFIX}{user_id}{_SEP}{work_id}{_SEP}{section_id}"
