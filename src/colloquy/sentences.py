"""Incremental sentence splitting for spoken answers."""

from __future__ import annotations

import re
from collections.abc import Callable, Iterable

DEFAULT_ABBREVIATIONS = frozenset(
    {"st", "mr", "mrs", "dr", "ms", "jr", "sr", "prof", "vs"}
)

TERMINATORS = ".!?"

_WORD_EDGE = re.compile(r"^\W+|\W+$")


class SentenceBoundaryScanner:
    """Emits completed sentences from a growing text stream.

    Feed only the new increment of text on each call.  A terminator
    (``.``, ``!``, ``?``) closes the sentence unless the word before it
    is a known abbreviation or the character before it is a digit; in
    that case it is kept in the sentence and scanning continues.

    Args:
        on_sentence: Called with each completed sentence, in order.
        abbreviations: Lower-case abbreviations that never end a sentence.
    """

    def __init__(
        self,
        on_sentence: Callable[[str], None] | None = None,
        abbreviations: Iterable[str] = DEFAULT_ABBREVIATIONS,
    ) -> None:
        self.on_sentence = on_sentence
        self.abbreviations = frozenset(a.lower() for a in abbreviations)
        self._current = ""

    @property
    def pending(self) -> str:
        return self._current

    def feed(self, delta: str) -> list[str]:
        """Scan ``delta`` and return the sentences it completed."""
        completed = []
        for char in delta:
            if char in TERMINATORS and self._closes_sentence():
                self._current += char
                sentence = self._current.strip()
                self._current = ""
                if sentence.strip(TERMINATORS):
                    completed.append(sentence)
                    self._emit(sentence)
            else:
                self._current += char
        return completed

    def flush(self) -> str | None:
        """Emit whatever unterminated text remains at end of stream."""
        sentence = self._current.strip()
        self._current = ""
        if not sentence:
            return None
        self._emit(sentence)
        return sentence

    def _closes_sentence(self) -> bool:
        if not self._current:
            return True
        if self._current[-1].isdigit():
            return False
        words = self._current.split()
        if not words:
            return True
        word = _WORD_EDGE.sub("", words[-1]).lower()
        return word not in self.abbreviations

    def _emit(self, sentence: str) -> None:
        if self.on_sentence is not None:
            self.on_sentence(sentence)
