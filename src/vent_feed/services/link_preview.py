"""Link previews for URLs embedded in thoughts.

Known services get a static preview card. Spotify cards are upgraded with
the page's Open Graph image, fetched once per URL and cached.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, replace

import httpx

from vent_feed.core.settings import settings

# Configure logger for this module
logger = logging.getLogger(__name__)

URL_PATTERN = re.compile(r"https?://\S+")
YOUTUBE_PATTERN = re.compile(
    r"(?:youtube\.com/(?:[^/]+/.+/|(?:v|e(?:mbed)?|shorts)/|.*[?&]v=)|youtu\.be/)"
    r"([^\"&?/\s]{11})"
)
OG_IMAGE_PATTERN = re.compile(r'<meta property="og:image" content="([^"]+)"/?>', re.IGNORECASE)


@dataclass(frozen=True)
class LinkPreview:
    type: str
    title: str
    thumbnail: str
    brand_color: str
    url: str


# (type, host pattern, title, thumbnail, brand color)
_STATIC_PREVIEWS = (
    (
        "spotify", re.compile(r"open\.spotify\.com"), "Spotify Link",
        "https://storage.googleapis.com/pr-newsroom-wp/1/2018/11/Spotify_Logo_CMYK_Green.png",
        "#1DB954",
    ),
    (
        "applemusic", re.compile(r"music\.apple\.com"), "Apple Music Link",
        "https://upload.wikimedia.org/wikipedia/commons/1/19/Apple_Music_logo.png",
        "#FA233B",
    ),
    (
        "instagram", re.compile(r"instagram\.com"), "Instagram Post",
        "https://upload.wikimedia.org/wikipedia/commons/a/a5/Instagram_icon.png",
        "#C13584",
    ),
    (
        "facebook", re.compile(r"facebook\.com"), "Facebook Post",
        "https://upload.wikimedia.org/wikipedia/commons/5/51/Facebook_f_logo_%282019%29.svg",
        "#1877F3",
    ),
)


def extract_first_url(text: str) -> str | None:
    match = URL_PATTERN.search(text or "")
    return match.group(0) if match else None


def youtube_thumbnail(url: str) -> str | None:
    match = YOUTUBE_PATTERN.search(url)
    return f"https://img.youtube.com/vi/{match.group(1)}/hqdefault.jpg" if match else None


def get_link_preview(url: str) -> LinkPreview | None:
    """Return a static preview card for ``url`` if it belongs to a known service."""
    thumbnail = youtube_thumbnail(url)
    if thumbnail is not None:
        return LinkPreview("youtube", "YouTube Video", thumbnail, "#FF0000", url)
    for kind, pattern, title, image, color in _STATIC_PREVIEWS:
        if pattern.search(url):
            return LinkPreview(kind, title, image, color, url)
    return None


def parse_og_image(html: str) -> str | None:
    match = OG_IMAGE_PATTERN.search(html)
    return match.group(1) if match else None


class LinkPreviewResolver:
    """Resolves previews for post bodies, fetching Open Graph images lazily."""

    def __init__(
        self,
        client: httpx.AsyncClient | None = None,
        timeout: float | None = None,
    ) -> None:
        self._client = client
        self._owns_client = client is None
        self._timeout = timeout or settings.link_preview_timeout_seconds
        self._og_images: dict[str, str | None] = {}

    async def fetch_og_image(self, url: str) -> str | None:
        """Return the page's og:image, or None when it cannot be fetched."""
        if url in self._og_images:
            return self._og_images[url]
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=self._timeout, follow_redirects=True)
        try:
            response = await self._client.get(url)
            image = parse_og_image(response.text) if response.is_success else None
        except httpx.HTTPError as e:
            # Previews are cosmetic; fall back to the static card.
            logger.info("Could not fetch Open Graph image for %s: %s", url, e)
            image = None
        self._og_images[url] = image
        return image

    async def preview_for(self, body: str) -> LinkPreview | None:
        url = extract_first_url(body)
        if url is None:
            return None
        preview = get_link_preview(url)
        if preview is not None and preview.type == "spotify":
            image = await self.fetch_og_image(url)
            if image:
                preview = replace(preview, thumbnail=image)
        return preview

    async def close(self) -> None:
        if self._client is not None and self._owns_client:
            await self._client.aclose()
        self._client = None
