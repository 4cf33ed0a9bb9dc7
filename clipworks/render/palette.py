"""Waveform colours derived from episode artwork."""

import colorsys

import numpy as np
from PIL import Image

RGB = tuple[int, int, int]

FALLBACK_COLOR: RGB = (248, 76, 31)
SHADE_STEP = 40
# Artwork is downsampled before counting; exact colours are kept
SAMPLE_SIZE = 200


def hex_to_rgb(hex_color: str) -> RGB:
    hex_color = hex_color.strip().lstrip("#")
    if len(hex_color) == 3:
        hex_color = "".join(c * 2 for c in hex_color)
    return (int(hex_color[0:2], 16), int(hex_color[2:4], 16), int(hex_color[4:6], 16))


def rgb_to_hsl(r: int, g: int, b: int) -> tuple[float, float, float]:
    """Hue in degrees, saturation and lightness in percent."""
    h, l, s = colorsys.rgb_to_hls(r / 255, g / 255, b / 255)
    return h * 360, s * 100, l * 100


def is_brown(h: float, l: float) -> bool:
    return 15 <= h <= 50 and l < 45


def is_vibrant(r: int, g: int, b: int) -> bool:
    """Saturated, not grey, not too dark or light, not brown."""
    if r == g == b:
        return False
    h, s, l = rgb_to_hsl(r, g, b)
    return s > 30 and 15 < l < 85 and not is_brown(h, l)


def dominant_color(image: Image.Image | None) -> RGB:
    """Most frequent vibrant pixel colour, or the fallback orange-red."""
    if image is None:
        return FALLBACK_COLOR
    sample = image.convert("RGB")
    if max(sample.size) > SAMPLE_SIZE:
        sample.thumbnail((SAMPLE_SIZE, SAMPLE_SIZE), Image.Resampling.NEAREST)

    pixels = np.asarray(sample, dtype=np.uint8).reshape(-1, 3)
    if pixels.size == 0:
        return FALLBACK_COLOR
    colors, counts = np.unique(pixels, axis=0, return_counts=True)

    # Most frequent first; np.unique order breaks ties deterministically
    for index in np.argsort(-counts, kind="stable"):
        r, g, b = (int(c) for c in colors[index])
        if is_vibrant(r, g, b):
            return (r, g, b)
    return FALLBACK_COLOR


def resolve_base_color(
    creator: str,
    artwork: Image.Image | None,
    overrides: dict[str, str] | None = None,
) -> RGB:
    """Creator override if configured, otherwise the artwork's dominant colour."""
    key = (creator or "").strip().lower()
    if overrides and key in overrides:
        return hex_to_rgb(overrides[key])
    return dominant_color(artwork)


def gradient_stops(base: RGB) -> tuple[RGB, RGB, RGB]:
    """(lighter, base, darker) for stops 0, 0.5 and 1."""
    lighter = tuple(min(c + SHADE_STEP, 255) for c in base)
    darker = tuple(max(c - SHADE_STEP, 0) for c in base)
    return lighter, base, darker  # type: ignore[return-value]


def vertical_gradient(width: int, height: int, stops: tuple[RGB, RGB, RGB]) -> Image.Image:
    """RGB image filled top-to-bottom with a three-stop linear gradient."""
    top, mid, bottom = (np.array(c, dtype=np.float32) for c in stops)
    t = np.linspace(0.0, 1.0, max(height, 1), dtype=np.float32)[:, None]
    upper = top + (mid - top) * np.clip(t * 2, 0, 1)
    lower = mid + (bottom - mid) * np.clip(t * 2 - 1, 0, 1)
    column = np.where(t <= 0.5, upper, lower)
    rows = np.repeat(column[:, None, :], max(width, 1), axis=1)
    return Image.fromarray(rows.round().astype(np.uint8), "RGB")
