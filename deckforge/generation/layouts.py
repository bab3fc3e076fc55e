# ABOUTME: Lists the slide types whose layout the user may switch before content is written.
# ABOUTME: Builds the option list shown on layout selection requests.

from __future__ import annotations


SKIP_LAYOUT_TYPES = frozenset({"TITLE", "CTA", "QUOTE", "VISUAL_HUMOR", "SECTION_DIVIDER", "OUTLINE"})

LAYOUT_ALTERNATIVES: dict[str, tuple[str, ...]] = {
    "CONTENT": ("COMPARISON", "PROCESS"),
    "DATA_METRICS": ("CONTENT",),
    "PROBLEM": ("CONTENT", "COMPARISON"),
    "SOLUTION": ("PROCESS", "ARCHITECTURE"),
    "ARCHITECTURE": ("PROCESS", "CONTENT"),
    "PROCESS": ("CONTENT", "COMPARISON"),
    "COMPARISON": ("CONTENT", "DATA_METRICS"),
}

MAX_LAYOUT_ALTERNATIVES = 2


def layout_options(slide_type: str) -> list[str]:
    """Return the outline's type followed by its alternatives, or [] when no choice applies."""
    if slide_type in SKIP_LAYOUT_TYPES:
        return []
    alternatives = LAYOUT_ALTERNATIVES.get(slide_type, ())
    if not alternatives:
        return []
    return [slide_type, *alternatives[:MAX_LAYOUT_ALTERNATIVES]]
