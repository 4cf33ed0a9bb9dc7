import asyncio
import io
import logging

import httpx
from PIL import Image, UnidentifiedImageError

from clipworks.config import Settings, get_settings
from clipworks.render.frame_renderer import placeholder_artwork

logger = logging.getLogger(__name__)


async def fetch_artwork(
    url: str | None,
    *,
    client: httpx.AsyncClient | None = None,
    settings: Settings | None = None,
) -> Image.Image:
    """Download episode artwork, falling back to a plain placeholder.

    Retries with a short backoff; an unusable image after the last attempt is
    not an error for the clip.
    """
    settings = settings or get_settings()
    if not url:
        return placeholder_artwork()

    owns_client = client is None
    client = client or httpx.AsyncClient(follow_redirects=True)
    delay = 0.5
    try:
        for attempt in range(1, settings.artwork_max_attempts + 1):
            try:
                response = await client.get(url, timeout=settings.artwork_timeout_s)
                response.raise_for_status()
                image = Image.open(io.BytesIO(response.content))
                image.load()
                return image.convert("RGB")
            except (httpx.HTTPError, UnidentifiedImageError, OSError) as e:
                logger.warning(
                    f"[CLIP] Artwork download attempt {attempt}/{settings.artwork_max_attempts} failed: {e}"
                )
                if attempt < settings.artwork_max_attempts:
                    await asyncio.sleep(delay)
                    delay *= 2
    finally:
        if owns_client:
            await client.aclose()

    logger.warning("[CLIP] Using placeholder artwork")
    return placeholder_artwork()
