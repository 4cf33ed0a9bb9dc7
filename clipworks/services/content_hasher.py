"""Deterministic fingerprints for clip and edit requests.

The fingerprint is the SHA-256 hex digest of the request fields joined with a
literal ``-``. It is the dedup key for work items and part of every storage
key, so the encoding must stay bit-exact across releases.
"""

import hashlib
import math


def normalize_seconds(value: float) -> int:
    """Round a time to whole seconds, half away from zero for positives."""
    return math.floor(float(value) + 0.5)


def _digest(parts: list[str]) -> str:
    return hashlib.sha256("-".join(parts).encode("utf-8")).hexdigest()


def clip_fingerprint(
    feed_id: str,
    episode_guid: str,
    start_time: float | None = None,
    end_time: float | None = None,
    share_token: str | None = None,
) -> str:
    """Fingerprint of a clip synthesis request.

    The rounded time window identifies the clip when both ends are given;
    otherwise the share token does. One of the two must be present.
    """
    if start_time is not None and end_time is not None:
        window = f"{normalize_seconds(start_time)}-{normalize_seconds(end_time)}"
    elif share_token:
        window = share_token
    else:
        raise ValueError("clip fingerprint needs a time window or a share token")
    return _digest([str(feed_id), str(episode_guid), window])


def edit_fingerprint(
    source_url: str,
    start_time: float,
    end_time: float,
    use_subtitles: bool,
) -> str:
    """Fingerprint of a video edit request."""
    return _digest(
        [
            source_url.strip(),
            str(normalize_seconds(start_time)),
            str(normalize_seconds(end_time)),
            "true" if use_subtitles else "false",
        ]
    )
