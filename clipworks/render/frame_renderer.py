"""Pure rasterisation of one clip frame.

Everything a frame needs is carried by an immutable FrameAssets (shared by
all frames of a clip) and a FrameInput (per frame). ``render_frame`` touches
no shared state, so frames can be drawn in parallel on a thread pool.
"""

from dataclasses import dataclass

import numpy as np
from PIL import Image, ImageDraw, ImageOps

from clipworks.render.palette import RGB, gradient_stops, vertical_gradient
from clipworks.render.text import (
    CREATOR_MAX_CHARS,
    EPISODE_MAX_CHARS,
    get_font,
    truncate_middle,
    wrap_caption,
    wrap_two_lines,
)
from clipworks.services.subtitles import Subtitle, subtitle_at

BACKGROUND = (0, 0, 0)
TEXT_COLOR = (255, 255, 255)

PROFILE_SCALE = 0.4
PROFILE_RADIUS = 50
PROFILE_BORDER_COLOR = (0x33, 0x33, 0x33)
PROFILE_BORDER_WIDTH = 4
PROFILE_Y_OFFSET = -20

WATERMARK_WIDTH = 160
WATERMARK_PADDING = 10

TITLE_FONT_SIZE = 32
EPISODE_FONT_SIZE = 24
TITLE_GAP = 40
EPISODE_GAP = 40
EPISODE_LINE_HEIGHT = 30

WAVE_AMPLIFICATION = 2.0
WAVE_SMOOTHING = 0.4
WAVE_HEIGHT_RATIO = 0.4
CURVE_STEPS = 8

CAPTION_FONT_SIZE = 26
CAPTION_MAX_CHARS = 38
CAPTION_MARGIN = 30
CAPTION_PADDING = 14
CAPTION_RADIUS = 16
CAPTION_FILL = (0, 0, 0, 170)
CAPTION_LINE_HEIGHT = 32


@dataclass(frozen=True)
class FrameAssets:
    width: int
    height: int
    profile: Image.Image  # RGBA, rounded and bordered
    watermark: Image.Image | None  # RGBA, WATERMARK_WIDTH wide
    gradient_fill: Image.Image  # RGB, full canvas
    title: str
    episode_lines: tuple[str, ...]
    subtitles: tuple[Subtitle, ...] = ()

    @property
    def wave_center_y(self) -> float:
        return self.height / 2 + self.height / 4

    @property
    def max_wave_height(self) -> float:
        return (self.height / 2) * WAVE_HEIGHT_RATIO


@dataclass(frozen=True, eq=False)
class FrameInput:
    index: int
    time_s: float
    levels: np.ndarray  # band RMS values for this frame


# -----------------------------------------------------------------------------
# Static asset preparation
# -----------------------------------------------------------------------------


def rounded_profile(
    image: Image.Image,
    size: int,
    radius: int = PROFILE_RADIUS,
    border_color: RGB = PROFILE_BORDER_COLOR,
    border_width: int = PROFILE_BORDER_WIDTH,
) -> Image.Image:
    fitted = ImageOps.fit(image.convert("RGBA"), (size, size), Image.Resampling.LANCZOS)
    mask = Image.new("L", (size, size), 0)
    ImageDraw.Draw(mask).rounded_rectangle((0, 0, size - 1, size - 1), radius=radius, fill=255)
    out = Image.new("RGBA", (size, size), (0, 0, 0, 0))
    out.paste(fitted, (0, 0), mask)
    if border_width > 0:
        ImageDraw.Draw(out).rounded_rectangle(
            (0, 0, size - 1, size - 1), radius=radius, outline=border_color, width=border_width
        )
    return out


def scale_watermark(image: Image.Image, width: int = WATERMARK_WIDTH) -> Image.Image:
    image = image.convert("RGBA")
    height = max(1, round(image.height / image.width * width))
    return image.resize((width, height), Image.Resampling.LANCZOS)


def text_watermark(text: str, width: int = WATERMARK_WIDTH) -> Image.Image:
    font = get_font(20, bold=True)
    image = Image.new("RGBA", (width, 32), (0, 0, 0, 0))
    ImageDraw.Draw(image).text((width - 1, 16), text, font=font, fill=(255, 255, 255, 200), anchor="rm")
    return image


def placeholder_artwork(color: RGB = (60, 60, 60), size: int = 400) -> Image.Image:
    return Image.new("RGB", (size, size), color)


def gradient_fill(width: int, height: int, base: RGB) -> Image.Image:
    """Full-canvas fill whose gradient spans the waveform band only."""
    center = height / 2 + height / 4
    max_wave = (height / 2) * WAVE_HEIGHT_RATIO
    top = int(round(center - max_wave))
    band_height = int(round(2 * max_wave))
    lighter, mid, darker = gradient_stops(base)

    fill = Image.new("RGB", (width, height), lighter)
    below = height - top - band_height
    if below > 0:
        fill.paste(Image.new("RGB", (width, below), darker), (0, top + band_height))
    fill.paste(vertical_gradient(width, band_height, (lighter, mid, darker)), (0, top))
    return fill


def build_frame_assets(
    *,
    width: int,
    height: int,
    artwork: Image.Image,
    watermark: Image.Image | None,
    base_color: RGB,
    creator: str,
    episode_title: str,
    subtitles: list[Subtitle] | tuple[Subtitle, ...] = (),
) -> FrameAssets:
    episode = truncate_middle(episode_title or "", EPISODE_MAX_CHARS)
    return FrameAssets(
        width=width,
        height=height,
        profile=rounded_profile(artwork, int(width * PROFILE_SCALE)),
        watermark=scale_watermark(watermark) if watermark is not None else None,
        gradient_fill=gradient_fill(width, height, base_color),
        title=truncate_middle(creator or "", CREATOR_MAX_CHARS),
        episode_lines=tuple(wrap_two_lines(episode)),
        subtitles=tuple(subtitles),
    )


# -----------------------------------------------------------------------------
# Waveform geometry
# -----------------------------------------------------------------------------


def _cubic(p0, c1, c2, p3, steps: int) -> np.ndarray:
    t = np.linspace(0, 1, steps + 1)[1:, None]
    mt = 1 - t
    return (
        mt**3 * np.asarray(p0)
        + 3 * mt**2 * t * np.asarray(c1)
        + 3 * mt * t**2 * np.asarray(c2)
        + t**3 * np.asarray(p3)
    )


def _quadratic(p0, c, p2, steps: int) -> np.ndarray:
    t = np.linspace(0, 1, steps + 1)[1:, None]
    mt = 1 - t
    return mt**2 * np.asarray(p0) + 2 * mt * t * np.asarray(c) + t**2 * np.asarray(p2)


def _smooth_through(points: np.ndarray, current: np.ndarray, smoothing: float, steps: int) -> list[np.ndarray]:
    """Bezier segments through ``points`` starting from ``current``."""
    segments = []
    n = len(points)
    for i in range(1, n - 2):
        p_prev, p, p_next = points[i - 1], points[i], points[i + 1]
        mid = (p + p_next) / 2
        ctrl1 = p - (p - p_prev) * smoothing
        ctrl2 = mid - (mid - p) * smoothing
        segment = _cubic(current, ctrl1, ctrl2, mid, steps)
        segments.append(segment)
        current = mid
    if n >= 2:
        segments.append(_quadratic(current, points[n - 2], points[n - 1], steps))
    return segments


def waveform_outline(
    levels: np.ndarray,
    width: int,
    center_y: float,
    max_height: float,
    *,
    amplification: float = WAVE_AMPLIFICATION,
    smoothing: float = WAVE_SMOOTHING,
    steps: int = CURVE_STEPS,
) -> list[tuple[float, float]]:
    """Closed outline of the mirrored waveform."""
    count = len(levels)
    if count < 2:
        return []
    xs = np.arange(count) * (width / (count - 1))
    amplitude = np.minimum(np.asarray(levels, dtype=np.float64) * amplification, 1.0) * max_height
    top = np.column_stack([xs, center_y - amplitude])
    bottom = np.column_stack([xs, center_y + amplitude])[::-1]

    parts = [top[:1]]
    parts += _smooth_through(top, top[0], smoothing, steps)
    parts += _smooth_through(bottom, top[-1], smoothing, steps)
    outline = np.vstack(parts)
    return [(float(x), float(y)) for x, y in outline]


# -----------------------------------------------------------------------------
# Frame
# -----------------------------------------------------------------------------


def _draw_caption(frame: Image.Image, subtitle: Subtitle) -> Image.Image:
    lines = wrap_caption(subtitle.text, CAPTION_MAX_CHARS)
    if not lines:
        return frame
    font = get_font(CAPTION_FONT_SIZE, bold=True)
    width, height = frame.size

    measure = ImageDraw.Draw(frame)
    text_width = max(measure.textlength(line, font=font) for line in lines)
    box_w = min(width - 2 * CAPTION_MARGIN, int(text_width) + 2 * CAPTION_PADDING)
    box_h = len(lines) * CAPTION_LINE_HEIGHT + 2 * CAPTION_PADDING
    x0 = (width - box_w) // 2
    y1 = height - CAPTION_MARGIN
    y0 = y1 - box_h

    overlay = Image.new("RGBA", frame.size, (0, 0, 0, 0))
    draw = ImageDraw.Draw(overlay)
    draw.rounded_rectangle((x0, y0, x0 + box_w, y1), radius=CAPTION_RADIUS, fill=CAPTION_FILL)
    for i, line in enumerate(lines):
        y = y0 + CAPTION_PADDING + i * CAPTION_LINE_HEIGHT + CAPTION_LINE_HEIGHT / 2
        draw.text((width / 2, y), line, font=font, fill=TEXT_COLOR + (255,), anchor="mm")
    return Image.alpha_composite(frame.convert("RGBA"), overlay).convert("RGB")


def render_frame(frame: FrameInput, assets: FrameAssets) -> Image.Image:
    width, height = assets.width, assets.height
    image = Image.new("RGB", (width, height), BACKGROUND)

    # Profile image, centred in the top half
    size = assets.profile.width
    profile_x = (width - size) // 2
    profile_y = int((height / 2 - size) / 2 + PROFILE_Y_OFFSET)
    image.paste(assets.profile, (profile_x, profile_y), assets.profile)

    if assets.watermark is not None:
        image.paste(
            assets.watermark,
            (width - assets.watermark.width - WATERMARK_PADDING, WATERMARK_PADDING),
            assets.watermark,
        )

    draw = ImageDraw.Draw(image)
    title_y = profile_y + size + TITLE_GAP
    draw.text((width / 2, title_y), assets.title, font=get_font(TITLE_FONT_SIZE, bold=True), fill=TEXT_COLOR, anchor="ms")
    episode_font = get_font(EPISODE_FONT_SIZE)
    for i, line in enumerate(assets.episode_lines[:2]):
        draw.text(
            (width / 2, title_y + EPISODE_GAP + i * EPISODE_LINE_HEIGHT),
            line,
            font=episode_font,
            fill=TEXT_COLOR,
            anchor="ms",
        )

    outline = waveform_outline(frame.levels, width, assets.wave_center_y, assets.max_wave_height)
    if outline:
        mask = Image.new("L", (width, height), 0)
        ImageDraw.Draw(mask).polygon(outline, fill=255)
        image.paste(assets.gradient_fill, (0, 0), mask)

    subtitle = subtitle_at(assets.subtitles, frame.time_s)
    if subtitle is not None:
        image = _draw_caption(image, subtitle)
    return image
