from __future__ import annotations

import math

import pytest

from quipcast.rendering.text_layout import ELLIPSIS, ellipsize, split_word_to_fit, wrap_text


def mono(text: str) -> float:
    return 10.0 * len(text)


def proportional(text: str) -> float:
    """Wide glyphs (W, M, emoji) cost double, everything else one unit of 10px."""
    total = 0.0
    for ch in text:
        total += 20.0 if ch in "WM" or ord(ch) > 0xFFFF else 10.0
    return total


def test_empty_and_blank_text_yield_no_lines() -> None:
    assert wrap_text("", 100, mono) == []
    assert wrap_text("   \n\t ", 100, mono) == []


def test_zero_line_budget_yields_no_lines() -> None:
    assert wrap_text("hello", 100, mono, max_lines=0) == []


def test_greedy_packing_never_exceeds_width() -> None:
    text = "the quick brown fox jumps over the lazy dog"
    lines = wrap_text(text, 100, mono, max_lines=10)
    assert lines == ["the quick", "brown fox", "jumps over", "the lazy", "dog"]
    assert all(mono(line) <= 100 for line in lines)


def test_text_that_fits_is_returned_verbatim() -> None:
    assert wrap_text("short one", 1000, mono) == ["short one"]


def test_long_single_word_is_split_by_measured_width() -> None:
    word = "x" * 25
    lines = wrap_text(word, 100, mono, max_lines=10)
    assert lines == ["x" * 10, "x" * 10, "x" * 5]
    assert len(lines) == math.ceil(mono(word) / 100)


def test_split_uses_glyph_widths_not_character_budget() -> None:
    pieces = split_word_to_fit("WWWWaaaa", 60, proportional)
    assert pieces == ["WWW", "Waaaa"]
    assert all(proportional(p) <= 60 for p in pieces)


def test_split_always_progresses_on_oversized_glyph() -> None:
    assert split_word_to_fit("WW", 15, proportional) == ["W", "W"]


def test_capped_output_ends_with_ellipsis_that_fits() -> None:
    word = "y" * 95
    lines = wrap_text(word, 100, mono, max_lines=3)
    assert len(lines) == 3
    assert lines[-1].endswith(ELLIPSIS)
    assert all(mono(line) <= 100 for line in lines)


def test_overflow_on_word_boundary_is_ellipsized() -> None:
    lines = wrap_text("alpha beta gamma delta epsilon", 110, mono, max_lines=2)
    assert lines[0] == "alpha beta"
    assert lines[1].endswith(ELLIPSIS)
    assert mono(lines[1]) <= 110


def test_exact_fit_at_cap_has_no_ellipsis() -> None:
    lines = wrap_text("aaaa bbbb", 40, mono, max_lines=2)
    assert lines == ["aaaa", "bbbb"]


def test_unicode_content_wraps() -> None:
    text = "héllo wörld 😀😀😀😀😀😀"
    lines = wrap_text(text, 60, proportional, max_lines=10)
    assert "".join(lines).replace(" ", "") == text.replace(" ", "")
    assert all(proportional(line) <= 60 for line in lines)


def test_ellipsize_trims_until_suffix_fits() -> None:
    out = ellipsize("abcdefghij", 60, mono)
    assert out == "abcde" + ELLIPSIS
    assert mono(out) <= 60


@pytest.mark.parametrize("width", [35, 50, 73, 128])
def test_every_line_respects_width(width: int) -> None:
    text = "supercalifragilistic expialidocious is a word wider than most boxes"
    for line in wrap_text(text, width, mono, max_lines=50):
        assert mono(line) <= width
