"""Drawing a QR bitmap in the terminal with ANSI background colours."""

from __future__ import annotations

import math
import os
import random
from typing import Iterable, Mapping, Sequence

BLACK_BLOCK = "\033[40m  \033[0m"
WHITE_BLOCK = "\033[47m  \033[0m"


def detect_true_color(environ: Mapping[str, str] | None = None) -> bool:
    """Whether the terminal announces 24-bit colour support."""
    env = os.environ if environ is None else environ
    return env.get("COLORTERM") == "truecolor"


def rainbow(freq: float, i: float) -> tuple[int, int, int]:
    """The lolcat rainbow colour at position ``i``."""
    red = int(math.sin(freq * i + 0) * 128 + 128)
    green = int(math.sin(freq * i + 2 * math.pi / 3) * 127 + 128)
    blue = int(math.sin(freq * i + 4 * math.pi / 3) * 127 + 128)
    return red, green, blue


def _round_half_away(value: float) -> int:
    return math.floor(value + 0.5) if value >= 0 else math.ceil(value - 0.5)


def rgb_to_256(red: int, green: int, blue: int, content: str) -> str:
    """Paint ``content`` with the nearest colour of the 256-colour palette."""
    sep = 42.5
    while not (red < sep or green < sep or blue < sep):
        sep += 42.5
    gray = red < sep and green < sep and blue < sep
    if gray:
        code = 232 + _round_half_away((red + green + blue) / 33)
    else:
        code = 16 + (
            int(6 * red / 256) * 36 + int(6 * green / 256) * 6 + int(6 * blue / 256)
        )
    return f"\033[48;5;{code}m{content}\033[0m"


def rgb_to_true_color(red: int, green: int, blue: int, content: str) -> str:
    """Paint ``content`` with a 24-bit background colour."""
    return f"\033[48;2;{red};{green};{blue}m{content}\033[0m"


def render_bitmap(
    bitmap: Iterable[Sequence[bool]],
    rainbow_mode: bool = False,
    true_color: bool = False,
    spread: float = 3.0,
    freq: float = 0.1,
    seed: int | None = None,
) -> str:
    """Render rows of dark (True) and light (False) modules, one line per row."""
    if seed is None:
        seed = random.randrange(256)
    paint = rgb_to_true_color if true_color else rgb_to_256
    lines = []
    for row in bitmap:
        offset = 0.0
        cells = []
        for dark in row:
            if dark:
                if rainbow_mode:
                    cells.append(paint(*rainbow(freq, seed + offset / spread), " "))
                    offset += 1
                    cells.append(paint(*rainbow(freq, seed + offset / spread), " "))
                else:
                    cells.append(BLACK_BLOCK)
            else:
                cells.append(rgb_to_true_color(255, 255, 255, "  ") if true_color else WHITE_BLOCK)
                if rainbow_mode:
                    offset += 1
            if rainbow_mode:
                offset += 1
        if rainbow_mode:
            seed += 1
        lines.append("".join(cells) + "\n")
    return "".join(lines)