# ABOUTME: Counts bullets, words and table rows in slide bodies and enforces per-slide density limits.
# ABOUTME: Truncates overflowing content into speaker-note overflow and decides when model review can be skipped.

from __future__ import annotations

from dataclasses import dataclass, replace
import re

from deckforge.runtime.contracts import StrategyProfile


MAX_WORDS_PER_BULLET = 15

_BULLET_PATTERN = re.compile(r"^\s*(?:[-*]|\d+[.)])\s")
_BLOCKQUOTE_PATTERN = re.compile(r"^\s*>\s?")
_TABLE_SEPARATOR_PATTERN = re.compile(r"^\|[\s\-|:]+\|$")
_SOURCES_PATTERN = re.compile(r"^sources?:", re.IGNORECASE)
_HEADING_PATTERN = re.compile(r"#{1,3}\s")
_NON_WORD_PATTERN = re.compile(r"[^\w\s]")


@dataclass(frozen=True)
class DensityLimits:
    max_bullets: int = 4
    max_words: int = 50
    max_table_rows: int = 4
    max_words_per_bullet: int = MAX_WORDS_PER_BULLET
    max_concepts: int = 1
    max_nesting_depth: int = 1

    @classmethod
    def for_profile(cls, profile: StrategyProfile | None) -> DensityLimits:
        limits = cls()
        if profile is None:
            return limits
        overrides = {
            name: value
            for name, value in (
                ("max_bullets", profile.max_bullets),
                ("max_words", profile.max_words),
                ("max_table_rows", profile.max_table_rows),
            )
            if value is not None
        }
        return replace(limits, **overrides) if overrides else limits


@dataclass
class TruncationResult:
    body: str
    overflow: str
    was_truncated: bool


def _is_bullet(line: str) -> bool:
    return bool(_BULLET_PATTERN.match(line))


def _is_table_line(stripped: str) -> bool:
    return stripped.startswith("|") and stripped.endswith("|")


def _strip_bullet(line: str) -> str:
    return _BULLET_PATTERN.sub("", line, count=1).strip()


def count_words(text: str) -> int:
    kept = [
        _BLOCKQUOTE_PATTERN.sub("", line)
        for line in text.split("\n")
        if not _TABLE_SEPARATOR_PATTERN.match(line.strip()) and not _SOURCES_PATTERN.match(line.strip())
    ]
    cleaned = _HEADING_PATTERN.sub("", " ".join(kept).replace("*", "")).replace("|", " ")
    return len(_NON_WORD_PATTERN.sub(" ", cleaned).split())


def count_bullets(body: str) -> int:
    return sum(1 for line in body.split("\n") if _is_bullet(line))


def count_table_rows(body: str) -> int:
    rows = [
        line.strip()
        for line in body.split("\n")
        if _is_table_line(line.strip()) and not _TABLE_SEPARATOR_PATTERN.match(line.strip())
    ]
    # The first row is the header.
    return max(0, len(rows) - 1)


def max_nesting_depth(body: str) -> int:
    depth = 0
    for line in body.split("\n"):
        if not re.match(r"^\s*[-*]\s", line):
            continue
        indent = len(line) - len(line.lstrip(" \t"))
        leading = line[:indent].replace("\t", "  ")
        depth = max(depth, len(leading) // 2)
    return depth


def density_violations(title: str, body: str, limits: DensityLimits) -> list[str]:
    violations: list[str] = []
    bullets = count_bullets(body)
    if bullets > limits.max_bullets:
        violations.append(f"Slide has {bullets} bullets (max {limits.max_bullets}).")
    for line in body.split("\n"):
        if not _is_bullet(line):
            continue
        words = count_words(_strip_bullet(line))
        if words > limits.max_words_per_bullet:
            violations.append(f"Bullet has {words} words (max {limits.max_words_per_bullet}).")
    total_words = count_words(title) + count_words(body)
    if total_words > limits.max_words:
        violations.append(f"Slide has {total_words} words (max {limits.max_words}).")
    rows = count_table_rows(body)
    if rows > limits.max_table_rows:
        violations.append(f"Table has {rows} rows (max {limits.max_table_rows}).")
    depth = max_nesting_depth(body)
    if depth > limits.max_nesting_depth:
        violations.append(f"List nesting depth is {depth} (max {limits.max_nesting_depth}).")
    return violations


def truncate_to_limits(body: str, limits: DensityLimits) -> TruncationResult:
    """Keep the first bullets and table rows that fit; move the rest to an overflow note.

    Prose lines always pass through. A body that is still over the word limit
    is reported as truncated but never cut mid-sentence.
    """
    kept: list[str] = []
    overflow: list[str] = []
    bullets = 0
    table_rows = 0
    in_table = False
    was_truncated = False

    for line in body.split("\n"):
        stripped = line.strip()
        if _is_table_line(stripped):
            if _TABLE_SEPARATOR_PATTERN.match(stripped) or not in_table:
                in_table = True
                kept.append(line)
                continue
            table_rows += 1
            if table_rows <= limits.max_table_rows:
                kept.append(line)
            else:
                overflow.append(line)
                was_truncated = True
            continue
        in_table = False
        if _is_bullet(line):
            bullets += 1
            if bullets <= limits.max_bullets:
                kept.append(line)
            else:
                overflow.append(line)
                was_truncated = True
            continue
        kept.append(line)

    result_body = "\n".join(kept)
    if count_words(result_body) > limits.max_words:
        was_truncated = True
    overflow_note = ""
    if overflow:
        overflow_note = "Additional details: " + "; ".join(_strip_bullet(line) for line in overflow)
    return TruncationResult(body=result_body, overflow=overflow_note, was_truncated=was_truncated)


def passes_density_check(body: str, limits: DensityLimits) -> bool:
    return (
        count_bullets(body) <= limits.max_bullets
        and count_table_rows(body) <= limits.max_table_rows
        and count_words(body) <= limits.max_words
    )
