"""Subtitle timing for clips and edits."""

import logging
import math
from collections.abc import Iterable, Sequence
from dataclasses import dataclass
from typing import Any

logger = logging.getLogger(__name__)

# A first cue later than this is taken as an absolute source timestamp. This is a
# guess: clip-relative cues whose first line starts after 10s are shifted wrongly.
ABSOLUTE_TIMESTAMP_THRESHOLD_S = 10.0


@dataclass(frozen=True)
class Subtitle:
    start: float
    end: float
    text: str


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool) and math.isfinite(value)


def parse_subtitles(raw: Iterable[Any] | None) -> list[Subtitle]:
    """Keep well-formed entries: numeric start/end with start <= end and string text."""
    if not raw:
        return []
    valid: list[Subtitle] = []
    skipped = 0
    for entry in raw:
        if isinstance(entry, Subtitle):
            valid.append(entry)
            continue
        if not isinstance(entry, dict):
            skipped += 1
            continue
        start, end, text = entry.get("start"), entry.get("end"), entry.get("text")
        if not (_is_number(start) and _is_number(end) and isinstance(text, str)) or start > end:
            skipped += 1
            continue
        valid.append(Subtitle(start=float(start), end=float(end), text=text))
    if skipped:
        logger.warning(f"[SUBTITLES] Skipping {skipped} invalid subtitles")
    return valid


def adjust_subtitles(
    subtitles: Iterable[Any] | None,
    clip_start: float,
    clip_duration: float,
) -> list[Subtitle]:
    """Convert cues to clip-relative time.

    Cues are treated as absolute source timestamps when the earliest one
    starts after ``ABSOLUTE_TIMESTAMP_THRESHOLD_S``, and are then shifted by
    ``clip_start``. Every surviving cue satisfies
    ``0 <= start <= end <= clip_duration``; cues that fall entirely outside the
    window are dropped.
    """
    cues = sorted(parse_subtitles(subtitles), key=lambda s: s.start)
    if not cues:
        return []

    offset = clip_start if cues[0].start > ABSOLUTE_TIMESTAMP_THRESHOLD_S else 0.0
    if offset:
        logger.info(f"[SUBTITLES] Shifting absolute timestamps by {offset:g}s (first start: {cues[0].start:g})")

    adjusted: list[Subtitle] = []
    for cue in cues:
        start = max(0.0, cue.start - offset)
        end = min(clip_duration, cue.end - offset)
        if start < clip_duration and end > 0:
            adjusted.append(Subtitle(start=start, end=end, text=cue.text))
    return adjusted


def subtitle_at(subtitles: Sequence[Subtitle], t: float) -> Subtitle | None:
    for cue in subtitles:
        if cue.start <= t <= cue.end:
            return cue
    return None


def subtitles_text(subtitles: Iterable[Subtitle]) -> str:
    return " ".join(cue.text.strip() for cue in subtitles if cue.text.strip())


def format_srt_time(seconds: float) -> str:
    """Seconds as ``HH:MM:SS,mmm``."""
    total_ms = max(0, int(round(seconds * 1000)))
    hours, rem = divmod(total_ms, 3_600_000)
    minutes, rem = divmod(rem, 60_000)
    secs, millis = divmod(rem, 1000)
    return f"{hours:02d}:{minutes:02d}:{secs:02d},{millis:03d}"


def to_srt(subtitles: Iterable[Subtitle]) -> str:
    blocks = []
    for index, cue in enumerate(subtitles, start=1):
        blocks.append(f"{index}\n{format_srt_time(cue.start)} --> {format_srt_time(cue.end)}\n{cue.text}\n")
    return "\n".join(blocks)
