"""Text fitting helpers for the clip canvas."""

import math
from functools import lru_cache

from PIL import ImageFont

CREATOR_MAX_CHARS = 30
EPISODE_MAX_CHARS = 80
EPISODE_LINE_CHARS = 40

_REGULAR_FONTS = [
    "/usr/share/fonts/truetype/dejavu/DejaVuSans.ttf",
    "/usr/share/fonts/truetype/liberation/LiberationSans-Regular.ttf",
    "/usr/share/fonts/opentype/noto/NotoSansCJK-Regular.ttc",
    "/System/Library/Fonts/Helvetica.ttc",
]
_BOLD_FONTS = [
    "/usr/share/fonts/truetype/dejavu/DejaVuSans-Bold.ttf",
    "/usr/share/fonts/truetype/liberation/LiberationSans-Bold.ttf",
    "/usr/share/fonts/opentype/noto/NotoSansCJK-Bold.ttc",
    "/System/Library/Fonts/Helvetica.ttc",
]


def truncate_middle(text: str, max_length: int, ellipsis: str = "...") -> str:
    """Shorten ``text`` to ``max_length`` by cutting out the middle.

    The kept budget is split 60/40 in favour of the start.
    """
    if not text or len(text) <= max_length:
        return text
    budget = max(0, max_length - len(ellipsis))
    front_len = math.ceil(budget * 0.6)
    back_len = math.floor(budget * 0.4)
    front = text[:front_len].strip()
    back = text[len(text) - back_len:].strip() if back_len else ""
    return f"{front}{ellipsis}{back}"


def wrap_two_lines(text: str, width: int = EPISODE_LINE_CHARS) -> list[str]:
    """Split at the last space at or before ``width``; at most two lines."""
    if len(text) <= width:
        return [text]
    split_at = text.rfind(" ", 0, width + 1)
    if split_at == -1:
        return [text]
    return [text[:split_at].strip(), text[split_at + 1:].strip()]


def wrap_caption(text: str, max_chars: int) -> list[str]:
    """Greedy word wrap for caption boxes."""
    lines: list[str] = []
    current = ""
    for word in text.split():
        candidate = f"{current} {word}" if current else word
        if len(candidate) <= max_chars or not current:
            current = candidate
        else:
            lines.append(current)
            current = word
    if current:
        lines.append(current)
    return lines


@lru_cache(maxsize=16)
def get_font(size: int, bold: bool = False) -> ImageFont.FreeTypeFont | ImageFont.ImageFont:
    """Try to load a good font, fall back to default."""
    for path in _BOLD_FONTS if bold else _REGULAR_FONTS:
        try:
            return ImageFont.truetype(path, size)
        except OSError:
            continue
    try:
        return ImageFont.truetype("DejaVuSans-Bold.ttf" if bold else "DejaVuSans.ttf", size)
    except OSError:
        return ImageFont.load_default(size)
