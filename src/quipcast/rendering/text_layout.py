"""Width-constrained text wrapping driven by measured glyph widths.

All decisions use a ``measure`` callable (typically ``ImageFont.getlength``)
rather than character counts, so proportional fonts and arbitrary Unicode wrap
correctly.
"""

from __future__ import annotations

from typing import Callable, Iterator

Measure = Callable[[str], float]

ELLIPSIS = "…"


def split_word_to_fit(word: str, max_width: float, measure: Measure) -> list[str]:
    """Split *word* into the fewest pieces whose measured width fits.

    Each piece is the longest prefix that fits, found by binary search over the
    prefix length. A single glyph wider than *max_width* still forms a piece of
    its own so the split always makes progress.
    """
    if not word:
        return []
    if measure(word) <= max_width:
        return [word]

    pieces: list[str] = []
    remaining = word
    while remaining:
        low, high, best = 1, len(remaining), 1
        while low <= high:
            mid = (low + high) // 2
            if measure(remaining[:mid]) <= max_width:
                best = mid
                low = mid + 1
            else:
                high = mid - 1
        pieces.append(remaining[:best])
        remaining = remaining[best:]
    return pieces


def _pieces(words: list[str], max_width: float, measure: Measure) -> Iterator[tuple[bool, str]]:
    for word in words:
        for index, piece in enumerate(split_word_to_fit(word, max_width, measure)):
            yield index == 0, piece


def ellipsize(line: str, max_width: float, measure: Measure) -> str:
    """Trim *line* one character at a time until ``line + ELLIPSIS`` fits."""
    trimmed = line.rstrip()
    while trimmed and measure(trimmed + ELLIPSIS) > max_width:
        trimmed = trimmed[:-1].rstrip()
    return trimmed + ELLIPSIS


def wrap_text(text: str, max_width: float, measure: Measure, max_lines: int = 3) -> list[str]:
    """Greedy word wrap capped at *max_lines*.

    When content remains after the last allowed line, that line is shortened
    and suffixed with an ellipsis.
    """
    if max_lines <= 0:
        return []
    words = text.split()
    if not words:
        return []

    lines: list[str] = []
    current = ""
    overflow = False
    for starts_word, piece in _pieces(words, max_width, measure):
        if not current:
            current = piece
            continue
        candidate = f"{current} {piece}" if starts_word else current + piece
        if measure(candidate) <= max_width:
            current = candidate
            continue
        lines.append(current)
        if len(lines) == max_lines:
            overflow = True
            break
        current = piece

    if not overflow:
        lines.append(current)
    else:
        lines[-1] = ellipsize(lines[-1], max_width, measure)
    return lines


__all__ = ["ELLIPSIS", "Measure", "ellipsize", "split_word_to_fit", "wrap_text"]
