"""Section-sign (§) formatting code scanner.

Turns string-literal text carrying legacy chat formatting codes into a flat
list of style annotations over character ranges:
  [Annotation(start=1, end=3, foreground=(255, 85, 85), background=LOWLIGHT_BG), ...]
"""

from __future__ import annotations

import logging
from bisect import bisect_right
from dataclasses import dataclass, field
from enum import Enum, IntFlag
from types import MappingProxyType
from typing import Any, Iterable, Mapping

logger = logging.getLogger(__name__)

Rgb = tuple[int, int, int]

MARKER = "§"
RESET_CODE = "r"
RESET_TOKEN = MARKER + RESET_CODE
NEWLINE = "\n"
ESCAPED_NEWLINE = "\\n"
HEREDOC_QUOTE = '"""'
QUOTE = '"'

DEFAULT_COLOR: Rgb = (0, 0, 0)
LOWLIGHT_BG: Rgb = (0x3C, 0x3F, 0x41)


class FontStyle(IntFlag):
    PLAIN = 0
    BOLD = 1
    ITALIC = 2


class Effect(str, Enum):
    STRIKEOUT = "strikeout"
    UNDERLINE = "underline"


COLORS: Mapping[str, Rgb] = MappingProxyType({
    "0": (0, 0, 0),
    "1": (0, 0, 170),
    "2": (0, 170, 0),
    "3": (0, 170, 170),
    "4": (170, 0, 0),
    "5": (170, 0, 170),
    "6": (255, 170, 0),
    "7": (170, 170, 170),
    "8": (85, 85, 85),
    "9": (85, 85, 255),
    "a": (85, 255, 85),
    "b": (85, 255, 255),
    "c": (255, 85, 85),
    "d": (255, 85, 255),
    "e": (255, 255, 85),
    "f": (255, 255, 255),
    "g": (221, 214, 5),
})

# "k" (obfuscated) is deliberately unassigned.
EFFECTS: Mapping[str, Effect] = MappingProxyType({
    "m": Effect.STRIKEOUT,
    "n": Effect.UNDERLINE,
})

FONTS: Mapping[str, FontStyle] = MappingProxyType({
    "l": FontStyle.BOLD,
    "o": FontStyle.ITALIC,
})


@dataclass(frozen=True)
class Palette:
    colors: Mapping[str, Rgb] = field(default_factory=lambda: COLORS)
    effects: Mapping[str, Effect] = field(default_factory=lambda: EFFECTS)
    fonts: Mapping[str, FontStyle] = field(default_factory=lambda: FONTS)


DEFAULT_PALETTE = Palette()


def _hex(rgb: Rgb) -> str:
    r, g, b = rgb
    return f"#{r:02x}{g:02x}{b:02x}"


@dataclass(frozen=True)
class Annotation:
    start: int
    end: int
    foreground: Rgb | None = None
    background: Rgb | None = None
    effect_color: Rgb | None = None
    effect: Effect | None = None
    font: FontStyle = FontStyle.PLAIN

    def to_dict(self) -> dict[str, Any]:
        """Build a compact dict, omitting unset fields."""
        out: dict[str, Any] = {"start": self.start, "end": self.end}
        if self.foreground is not None:
            out["fg"] = _hex(self.foreground)
        if self.background is not None:
            out["bg"] = _hex(self.background)
        if self.effect is not None:
            out["effect"] = self.effect.value
            if self.effect_color is not None:
                out["effectColor"] = _hex(self.effect_color)
        if self.font & FontStyle.BOLD:
            out["b"] = True
        if self.font & FontStyle.ITALIC:
            out["i"] = True
        return out


class _Emitter:
    __slots__ = ("offset", "annotations")

    def __init__(self, offset: int = 0) -> None:
        self.offset = offset
        self.annotations: list[Annotation] = []

    def emit(
        self,
        start: int,
        end: int,
        foreground: Rgb | None = None,
        background: Rgb | None = None,
        effect_color: Rgb | None = None,
        effect: Effect | None = None,
        font: FontStyle = FontStyle.PLAIN,
    ) -> None:
        self.annotations.append(
            Annotation(
                self.offset + start,
                self.offset + end,
                foreground,
                background,
                effect_color,
                effect,
                font,
            )
        )

    def lowlight(self, index: int, color: Rgb | None = None) -> None:
        """Dim the two-character control sequence at ``index``."""
        self.emit(index, index + 2, color, LOWLIGHT_BG)


def literal_context(text: str) -> tuple[bool, int]:
    """Return ``(is_heredoc, effective_end)`` for a literal's raw text.

    The closing delimiter is excluded from the styled region so trailing
    quotes never pick up an annotation.
    """
    if text.endswith(HEREDOC_QUOTE):
        return True, len(text) - 3
    if text.endswith(QUOTE):
        return False, len(text) - 1
    return False, len(text)


def effective_end(text: str) -> int:
    return literal_context(text)[1]


def find_all(text: str, token: str) -> list[int]:
    """Start index of every occurrence of ``token``, stepping one char past each hit."""
    hits: list[int] = []
    start = 0
    while True:
        index = text.find(token, start)
        if index == -1:
            return hits
        hits.append(index)
        start = index + 1


def reset_positions(text: str) -> list[int]:
    return find_all(text, RESET_TOKEN)


def boundary_positions(text: str, is_heredoc: bool) -> list[int]:
    """Sorted positions where active styling stops.

    Reset tokens and raw newlines always end a run. Outside heredocs a
    backslash has escape meaning, so ``\\n`` ends a run as well.
    """
    found = set(reset_positions(text))
    found.update(find_all(text, NEWLINE))
    if not is_heredoc:
        found.update(find_all(text, ESCAPED_NEWLINE))
    return sorted(found)


def _next_boundary(boundaries: list[int], index: int, default: int) -> int:
    pos = bisect_right(boundaries, index)
    if pos < len(boundaries):
        return boundaries[pos]
    return default


def _combine_font(current: FontStyle, code: FontStyle) -> FontStyle:
    # Bold and italic stack; re-applying a set bit is a no-op.
    if current & code:
        return current
    if current in (FontStyle.BOLD, FontStyle.ITALIC):
        return current | code
    return code


def _decode_effect(
    emitter: _Emitter,
    text: str,
    index: int,
    end: int,
    effect: Effect,
    color: Rgb,
    font: FontStyle,
    palette: Palette,
) -> None:
    """Underline/strike the region after ``index`` up to ``end``.

    Embedded color codes switch the effect color for the following sub-span
    without ending the effect.
    """
    search = index + 2
    effect_color = color
    while search < end:
        found = text.find(MARKER, search, end)
        if found == -1:
            emitter.emit(search, end, None, None, effect_color, effect, font)
            return
        if found > search:
            emitter.emit(search, found, None, None, effect_color, effect, font)
        key = text[found + 1] if found + 1 < len(text) else None
        if key is not None and key in palette.colors:
            effect_color = palette.colors[key]
        search = found + 2


def decode(
    text: str,
    boundaries: Iterable[int],
    *,
    end_of_content: int | None = None,
    base_offset: int = 0,
    palette: Palette = DEFAULT_PALETTE,
) -> list[Annotation]:
    """Decode control sequences into annotations, given precomputed boundaries."""
    emitter = _Emitter(base_offset)
    _decode_into(emitter, text, sorted(set(boundaries)), end_of_content, palette)
    return emitter.annotations


def _decode_into(
    emitter: _Emitter,
    text: str,
    boundaries: list[int],
    end_of_content: int | None,
    palette: Palette,
) -> None:
    if end_of_content is None:
        end_of_content = effective_end(text)
    boundary_set = frozenset(boundaries)

    color = DEFAULT_COLOR
    font = FontStyle.PLAIN
    start = 0
    while True:
        index = text.find(MARKER, start)
        if index == -1:
            break
        start = index + 1
        if index in boundary_set:
            color = DEFAULT_COLOR
            font = FontStyle.PLAIN
            continue
        if index + 1 >= len(text):
            logger.debug("Trailing marker at %d, scan truncated", index)
            break

        key = text[index + 1]
        end = _next_boundary(boundaries, index, end_of_content)

        if key in palette.colors:
            color = palette.colors[key]
            emitter.lowlight(index, color)
            if index + 2 < end:
                emitter.emit(index + 2, end, color, font=font)
        elif key in palette.effects:
            emitter.lowlight(index)
            _decode_effect(emitter, text, index, end, palette.effects[key], color, font, palette)
        elif key in palette.fonts:
            font = _combine_font(font, palette.fonts[key])
            emitter.lowlight(index)
            if index + 2 < end:
                emitter.emit(index + 2, end, font=font)


def annotate(
    text: str,
    is_heredoc: bool = False,
    base_offset: int = 0,
    palette: Palette = DEFAULT_PALETTE,
) -> list[Annotation]:
    """Annotate one literal's text.

    Reset-token lowlights come first, followed by the decode pass in
    left-to-right order. Never raises for any input string.
    """
    if MARKER not in text:
        return []

    emitter = _Emitter(base_offset)
    for index in reset_positions(text):
        emitter.lowlight(index)
    boundaries = boundary_positions(text, is_heredoc)
    _decode_into(emitter, text, boundaries, effective_end(text), palette)
    return emitter.annotations


def annotate_literal(text: str, base_offset: int = 0, palette: Palette = DEFAULT_PALETTE) -> list[Annotation]:
    """Annotate a literal, telling heredocs apart by their closing ``\"\"\"``."""
    is_heredoc, _ = literal_context(text)
    return annotate(text, is_heredoc, base_offset, palette)


def palette_dict(palette: Palette = DEFAULT_PALETTE) -> dict[str, Any]:
    return {
        "marker": MARKER,
        "reset": RESET_CODE,
        "colors": {code: _hex(rgb) for code, rgb in palette.colors.items()},
        "effects": {code: effect.value for code, effect in palette.effects.items()},
        "fonts": {code: font.name.lower() for code, font in palette.fonts.items()},
        "lowlight": _hex(LOWLIGHT_BG),
        "default": _hex(DEFAULT_COLOR),
    }
