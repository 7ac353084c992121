"""Final text transforms applied once when an answer closes."""

from __future__ import annotations

import re
from collections.abc import Callable, Iterable
from urllib.parse import quote_plus

TextTransform = Callable[[str], str]

_DISPLAY_MATH = re.compile(r"\\\[(.*?)\\\]", re.DOTALL)
_INLINE_MATH = re.compile(r"\\\((.*?)\\\)", re.DOTALL)

_ADDRESS = re.compile(
    r"(?<![\[\w])"
    r"(\d{1,6}\s+(?:[A-Z][\w.]*\s+){1,4}"
    r"(?:St|Street|Ave|Avenue|Blvd|Boulevard|Rd|Road|Dr|Drive|Ln|Lane|Way|Ct|Court|Pl|Place)\b\.?"
    r"(?:,\s*[A-Z][a-zA-Z]+(?:\s[A-Z][a-zA-Z]+)*)?"
    r"(?:,\s*[A-Z]{2}(?:\s+\d{5})?)?)"
    r"(?!\]\()"
)


def inline_equations(text: str) -> str:
    """Rewrite ``\\[..\\]`` and ``\\(..\\)`` LaTeX as markdown math."""
    text = _DISPLAY_MATH.sub(lambda m: f"$${m.group(1).strip()}$$", text)
    return _INLINE_MATH.sub(lambda m: f"${m.group(1).strip()}$", text)


def address_links(text: str) -> str:
    """Link street addresses to a maps search."""

    def link(match: re.Match) -> str:
        address = match.group(1)
        return f"[{address}](https://maps.apple.com/?q={quote_plus(address)})"

    return _ADDRESS.sub(link, text)


DEFAULT_TRANSFORMS: tuple[TextTransform, ...] = (inline_equations, address_links)


def apply_all(text: str, transforms: Iterable[TextTransform] = DEFAULT_TRANSFORMS) -> str:
    for transform in transforms:
        text = transform(text)
    return text
