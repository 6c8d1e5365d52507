#!/usr/bin/env python3
"""Preview § formatting codes in a literal, as ANSI truecolor or JSON."""

from __future__ import annotations

import argparse
import json
import logging
import os
import sys
from pathlib import Path
from typing import Any, Sequence

from section_codes import Annotation, Effect, FontStyle, Rgb, annotate, literal_context

logger = logging.getLogger(__name__)

FORMATS = ("ansi", "json")
DEFAULT_FORMAT = "ansi"
SGR_RESET = "\x1b[0m"


def env_choice(name: str, choices: Sequence[str], fallback: str) -> str:
    raw = os.environ.get(name, "").strip().lower()
    if raw in choices:
        return raw
    return fallback


class _CellStyle:
    __slots__ = ("fg", "bg", "line", "effects", "font")

    def __init__(self) -> None:
        self.fg: Rgb | None = None
        self.bg: Rgb | None = None
        self.line: Rgb | None = None
        self.effects: set[Effect] = set()
        self.font = FontStyle.PLAIN

    def apply(self, ann: Annotation) -> None:
        if ann.foreground is not None:
            self.fg = ann.foreground
        if ann.background is not None:
            self.bg = ann.background
        if ann.effect is not None:
            self.effects.add(ann.effect)
            if ann.effect_color is not None:
                self.line = ann.effect_color
        if ann.font:
            self.font = ann.font

    def sgr(self) -> str:
        params: list[str] = []
        if self.font & FontStyle.BOLD:
            params.append("1")
        if self.font & FontStyle.ITALIC:
            params.append("3")
        if Effect.UNDERLINE in self.effects:
            params.append("4")
        if Effect.STRIKEOUT in self.effects:
            params.append("9")
        if self.fg is not None:
            params.append("38;2;{};{};{}".format(*self.fg))
        if self.bg is not None:
            params.append("48;2;{};{};{}".format(*self.bg))
        if self.line is not None:
            params.append("58;2;{};{};{}".format(*self.line))
        if not params:
            return ""
        return f"\x1b[{';'.join(params)}m"


def render_ansi(text: str, annotations: list[Annotation], base_offset: int = 0) -> str:
    """Render ``text`` with SGR escapes; later annotations win per character."""
    cells = [_CellStyle() for _ in text]
    for ann in annotations:
        lo = max(0, ann.start - base_offset)
        hi = min(len(text), ann.end - base_offset)
        for i in range(lo, hi):
            cells[i].apply(ann)

    out: list[str] = []
    prev = ""
    for ch, cell in zip(text, cells):
        code = cell.sgr()
        if code != prev:
            out.append(SGR_RESET if prev else "")
            out.append(code)
            prev = code
        out.append(ch)
    if prev:
        out.append(SGR_RESET)
    return "".join(out)


def to_json(annotations: list[Annotation]) -> str:
    rows: list[dict[str, Any]] = [ann.to_dict() for ann in annotations]
    return json.dumps(rows, separators=(",", ":"))


def parse_args(argv: Sequence[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Preview § formatting codes in a string literal")
    parser.add_argument("path", nargs="?", default="-", help="File holding the literal, '-' for stdin")
    parser.add_argument(
        "--format",
        choices=FORMATS,
        default=None,
        help="Output format (default: $SH_PREVIEW_FORMAT or ansi)",
    )
    heredoc = parser.add_mutually_exclusive_group()
    heredoc.add_argument("--heredoc", dest="heredoc", action="store_true", default=None, help="Treat as triple-quoted")
    heredoc.add_argument("--no-heredoc", dest="heredoc", action="store_false", help="Treat \\n as a line break")
    parser.set_defaults(heredoc=None)
    parser.add_argument("--offset", type=int, default=0, help="Base offset added to every range")
    parser.add_argument("--strip-newline", action="store_true", help="Drop one trailing newline from the input")
    return parser.parse_args(argv)


def read_text(path: str) -> str:
    if path == "-":
        return sys.stdin.read()
    return Path(path).read_text(encoding="utf-8")


def main(argv: Sequence[str] | None = None) -> int:
    args = parse_args(argv)
    try:
        text = read_text(args.path)
    except (OSError, UnicodeDecodeError) as exc:
        print(f"preview: cannot read {args.path}: {exc}", file=sys.stderr)
        return 1

    if args.strip_newline and text.endswith("\n"):
        text = text[:-1]

    is_heredoc = args.heredoc
    if is_heredoc is None:
        is_heredoc, _ = literal_context(text)

    fmt = args.format or env_choice("SH_PREVIEW_FORMAT", FORMATS, DEFAULT_FORMAT)
    annotations = annotate(text, is_heredoc, args.offset)
    logger.debug("%d annotations for %d chars", len(annotations), len(text))

    if fmt == "json":
        print(to_json(annotations))
    else:
        print(render_ansi(text, annotations, args.offset))
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
