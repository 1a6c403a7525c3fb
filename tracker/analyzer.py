"""
Store URL analysis: kind detection, URL validation and display name resolution.
"""

import re
from datetime import datetime
from typing import Optional
from urllib.parse import parse_qs, urlparse

import httpx
import structlog
from bs4 import BeautifulSoup

from .exceptions import ValidationError
from .models import StoreKind, utc_now

logger = structlog.get_logger(__name__)

MAX_TITLE_LENGTH = 60

STORE_SUFFIXES = [
    r" - Android Apps on Google Play$",
    r" - Apps on Google Play$",
    r" - Google Play$",
    r" on the App Store$",
    r" - App Store$",
    r"^Android Apps by ",
    r"^Apps by ",
    r"^Games by ",
]

CATEGORY_SUFFIX = re.compile(
    r"\s+(Education|Games|Productivity|Entertainment|Social|Business|Utilities|Finance|Health|"
    r"Travel|Shopping|News|Sports|Weather|Music|Photo|Reference|Medical|Navigation|Lifestyle|"
    r"Food|Books)$",
    re.IGNORECASE
)


def detect_store_kind(url: str) -> Optional[StoreKind]:
    """Detect the store kind from a URL's host, or None if unsupported."""
    url_lower = url.lower()
    if "play.google.com" in url_lower:
        return StoreKind.PLAYSTORE
    if "apps.apple.com" in url_lower or "itunes.apple.com" in url_lower:
        return StoreKind.APPSTORE
    return None


def validate_store_url(url: str) -> StoreKind:
    """
    Validate a store page URL.

    Returns:
        The detected store kind

    Raises:
        ValidationError: Malformed URL or unsupported host
    """
    parsed = urlparse(url.strip())
    if parsed.scheme not in ("http", "https") or not parsed.netloc:
        raise ValidationError(f"Invalid URL format: {url}")

    host = parsed.netloc.lower()
    kind = detect_store_kind(host)
    if kind is None:
        raise ValidationError("URL must be from Google Play Store or Apple App Store")
    return kind


def _title_words(text: str, separator: str) -> str:
    return " ".join(word.capitalize() for word in text.split(separator) if word)


def name_from_url(url: str, kind: StoreKind) -> Optional[str]:
    """Derive a readable name from the URL structure alone."""
    parsed = urlparse(url)
    path = parsed.path

    if kind == StoreKind.PLAYSTORE:
        if "/category/" in path:
            category = path.split("/category/")[1].split("/")[0]
            return f"Play Store {_title_words(category, '_')} Category"
        if "/collection/" in path:
            collection = path.split("/collection/")[1].split("/")[0]
            return f"Play Store {_title_words(collection, '_')} Collection"
        if parse_qs(parsed.query).get("id"):
            return "Play Store Developer Page"
    elif kind == StoreKind.APPSTORE:
        if "/genre/" in path:
            genre = path.split("/genre/")[1].split("/")[0]
            return f"App Store {_title_words(genre, '-')} Genre"
        parts = path.split("/")
        if "developer" in parts and parts.index("developer") + 1 < len(parts):
            return "App Store Developer Page"
    return None


def fallback_name(kind: StoreKind, today: Optional[datetime] = None) -> str:
    today = today or utc_now()
    label = "Play Store" if kind == StoreKind.PLAYSTORE else "App Store"
    return f"{label} - {today.strftime('%Y-%m-%d')}"


def clean_store_title(title: str) -> Optional[str]:
    """
    Strip store-specific prefixes and suffixes from a page title.

    Returns None when nothing meaningful is left.
    """
    for pattern in STORE_SUFFIXES:
        title = re.sub(pattern, "", title, flags=re.IGNORECASE)
    title = CATEGORY_SUFFIX.sub("", title)
    title = re.sub(r"\s+", " ", title).strip()

    if len(title) > MAX_TITLE_LENGTH:
        title = title[:MAX_TITLE_LENGTH - 3] + "..."
    if len(title) < 3:
        return None
    return title


def extract_page_title(html: str) -> Optional[str]:
    """Pick the best title candidate from store page markup."""
    soup = BeautifulSoup(html, "html.parser")
    for attrs in ({"property": "og:title"}, {"name": "twitter:title"}, {"name": "title"}):
        meta = soup.find("meta", attrs=attrs)
        if meta and meta.get("content"):
            return meta["content"].strip()

    heading = soup.find("h1")
    if heading and heading.get_text(strip=True):
        return heading.get_text(strip=True)

    if soup.title and soup.title.string:
        return soup.title.string.strip()
    return None


class SourceNameResolver:
    """
    Resolves a display name for a source registered without one.
    Tries the page title first, then the URL structure, then a dated fallback.
    """

    def __init__(self, timeout: float = 15.0, transport: Optional[httpx.AsyncBaseTransport] = None):
        self.timeout = timeout
        self.transport = transport
        self.logger = logger.bind(component="name_resolver")

    async def scrape_title(self, url: str, kind: StoreKind) -> Optional[str]:
        headers = {
            "User-Agent": (
                "Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) AppleWebKit/537.36 "
                "(KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36"
            )
        }
        try:
            async with httpx.AsyncClient(
                timeout=self.timeout,
                headers=headers,
                follow_redirects=True,
                transport=self.transport
            ) as client:
                response = await client.get(url)
                response.raise_for_status()
        except httpx.HTTPError as e:
            self.logger.warning("Failed to scrape page title", url=url, error=str(e))
            return None

        title = extract_page_title(response.text)
        return clean_store_title(title) if title else None

    async def resolve(self, url: str, kind: StoreKind) -> str:
        name = await self.scrape_title(url, kind)
        if name:
            return name
        return name_from_url(url, kind) or fallback_name(kind)
