"""Fast-fail checks on a source URL before any heavy work starts."""

import hashlib
import logging
from dataclasses import dataclass
from urllib.parse import unquote, urlparse

import httpx

from clipworks.config import Settings, get_settings
from clipworks.exceptions import (
    SourceTooLargeError,
    SourceUnavailableError,
    UnsupportedMediaTypeError,
    UntrustedSourceError,
)

logger = logging.getLogger(__name__)

HLS_CONTENT_TYPES = frozenset({"application/vnd.apple.mpegurl", "application/x-mpegurl"})
DASH_CONTENT_TYPES = frozenset({"application/dash+xml"})


@dataclass(frozen=True)
class SourceMetadata:
    content_type: str
    size_bytes: int
    is_video: bool
    is_audio: bool
    is_hls: bool
    is_dash: bool

    @property
    def is_streaming(self) -> bool:
        return self.is_hls or self.is_dash


@dataclass(frozen=True)
class ParentIdentity:
    """Identity of the asset an edit is cut from.

    ``file_base`` groups children in storage and in the derived-asset cache.
    """

    file_name: str
    file_base: str
    is_external: bool


def _host_matches(host: str, domains: list[str]) -> bool:
    host = host.lower()
    return any(host == d.lower() or host.endswith("." + d.lower()) for d in domains)


def source_host(url: str) -> str:
    return (urlparse(url).hostname or "").lower()


def is_own_host(url: str, settings: Settings | None = None) -> bool:
    settings = settings or get_settings()
    return _host_matches(source_host(url), settings.own_media_hosts)


def ensure_trusted_source(url: str, settings: Settings | None = None) -> None:
    """Raise UntrustedSourceError unless the URL is ours or a known podcast CDN."""
    settings = settings or get_settings()
    parsed = urlparse(url)
    host = (parsed.hostname or "").lower()
    if parsed.scheme not in ("http", "https") or not host:
        raise UntrustedSourceError(url)
    if not _host_matches(host, settings.own_media_hosts + settings.trusted_media_hosts):
        raise UntrustedSourceError(host)


def derive_parent_identity(url: str, settings: Settings | None = None) -> ParentIdentity:
    """Derive the parent key for an edit source.

    Files in our own buckets keep their base name so clients can predict it.
    External URLs get ``ext-`` plus the first 16 hex chars of the MD5 of the
    URL without its query string.
    """
    without_query = url.split("?", 1)[0]
    file_name = unquote(without_query.rstrip("/").rsplit("/", 1)[-1])
    if is_own_host(url, settings):
        base = file_name.rsplit(".", 1)[0] if "." in file_name else file_name
        return ParentIdentity(file_name=file_name, file_base=base, is_external=False)

    digest = hashlib.md5(without_query.encode("utf-8")).hexdigest()[:16]
    return ParentIdentity(file_name=file_name, file_base=f"ext-{digest}", is_external=True)


def classify_content_type(content_type: str, size_bytes: int) -> SourceMetadata:
    mime = content_type.split(";", 1)[0].strip().lower()
    return SourceMetadata(
        content_type=mime,
        size_bytes=size_bytes,
        is_video=mime.startswith("video/"),
        is_audio=mime.startswith("audio/"),
        is_hls=mime in HLS_CONTENT_TYPES,
        is_dash=mime in DASH_CONTENT_TYPES,
    )


async def probe_source(
    url: str,
    *,
    client: httpx.AsyncClient | None = None,
    settings: Settings | None = None,
) -> SourceMetadata:
    """HEAD the source and validate its type and size.

    Raises:
        SourceUnavailableError: Unreachable or non-200.
        UnsupportedMediaTypeError: Not video, audio, HLS or DASH.
        SourceTooLargeError: Larger than ``max_source_size_bytes`` (not applied to streams).
    """
    settings = settings or get_settings()
    owns_client = client is None
    client = client or httpx.AsyncClient(follow_redirects=True)
    try:
        response = await client.head(url, timeout=settings.probe_timeout_s)
    except httpx.HTTPError as e:
        logger.warning(f"[PROBE] HEAD {url} failed: {e}")
        raise SourceUnavailableError(f"Media URL is not accessible: {e}")
    finally:
        if owns_client:
            await client.aclose()

    if response.status_code != 200:
        raise SourceUnavailableError(f"Media URL returned HTTP {response.status_code}")

    try:
        size = int(response.headers.get("content-length") or 0)
    except ValueError:
        size = 0
    meta = classify_content_type(response.headers.get("content-type", ""), size)

    if not (meta.is_video or meta.is_audio or meta.is_streaming):
        raise UnsupportedMediaTypeError(meta.content_type or "unknown")
    if not meta.is_streaming and meta.size_bytes > settings.max_source_size_bytes:
        raise SourceTooLargeError(meta.size_bytes, settings.max_source_size_bytes)

    logger.info(
        f"[PROBE] {meta.content_type}, {meta.size_bytes} bytes"
        f"{' (streaming format)' if meta.is_streaming else ''}"
    )
    return meta
