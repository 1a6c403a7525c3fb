"""
Webhook notifications for newly discovered apps.

This module provides:
- Category hints derived from app links
- One best-effort webhook POST per new app
- Per-app result collection instead of raised errors
"""

from typing import List, Optional
from urllib.parse import parse_qs, urlparse

import httpx
import structlog

from scheduler.models import NotificationResult, NotifierConfig
from tracker.exceptions import NotificationError
from tracker.models import AppItem, StoreKind

logger = structlog.get_logger(__name__)

CATEGORY_NAMES = {
    'GAME': 'Games',
    'SOCIAL': 'Social',
    'PRODUCTIVITY': 'Productivity',
    'ENTERTAINMENT': 'Entertainment',
    'EDUCATION': 'Education',
    'BUSINESS': 'Business',
    'LIFESTYLE': 'Lifestyle',
    'TOOLS': 'Tools',
    'COMMUNICATION': 'Communication',
    'PHOTOGRAPHY': 'Photography',
    'MUSIC_AND_AUDIO': 'Music & Audio',
    'VIDEO_PLAYERS': 'Video Players & Editors',
    'HEALTH_AND_FITNESS': 'Health & Fitness',
    'TRAVEL_AND_LOCAL': 'Travel & Local',
    'SHOPPING': 'Shopping',
    'NEWS_AND_MAGAZINES': 'News & Magazines',
    'FINANCE': 'Finance',
    'SPORTS': 'Sports',
    'BOOKS_AND_REFERENCE': 'Books & Reference',
    'MEDICAL': 'Medical',
    'AUTO_AND_VEHICLES': 'Auto & Vehicles',
    'WEATHER': 'Weather',
    'HOUSE_AND_HOME': 'House & Home',
    'COMICS': 'Comics',
    'LIBRARIES_AND_DEMO': 'Libraries & Demo',
    'DATING': 'Dating',
    'FOOD_AND_DRINK': 'Food & Drink',
    'MAPS_AND_NAVIGATION': 'Maps & Navigation',
    'BEAUTY': 'Beauty',
    'EVENTS': 'Events',
    'PARENTING': 'Parenting',
    'ART_AND_DESIGN': 'Art & Design',
}

# Checked in order; the first keyword found in the link wins
KEYWORD_CATEGORIES = [
    ('game', 'Games'),
    ('social', 'Social'),
    ('productivity', 'Productivity'),
    ('entertainment', 'Entertainment'),
    ('education', 'Education'),
    ('business', 'Business'),
]


def format_category(code: str) -> str:
    """Readable name for a Play Store category code."""
    if code in CATEGORY_NAMES:
        return CATEGORY_NAMES[code]
    return code.replace('_', ' ').title()


def classify_category(link: Optional[str], kind: StoreKind) -> str:
    """Best-effort category hint from an app link; "Unknown" when nothing matches."""
    if not link:
        return 'Unknown'

    if kind == StoreKind.PLAYSTORE:
        codes = parse_qs(urlparse(link).query).get('category')
        if codes and codes[0]:
            return format_category(codes[0])

    link_lower = link.lower()
    for keyword, category in KEYWORD_CATEGORIES:
        if keyword in link_lower:
            if kind == StoreKind.APPSTORE and keyword == 'social':
                return 'Social Networking'
            return category
    return 'Unknown'


class WebhookNotifier:
    """Sends one webhook notification per newly discovered app."""

    def __init__(self, config: NotifierConfig, transport: Optional[httpx.AsyncBaseTransport] = None):
        """
        Initialize notifier.

        Args:
            config: Notifier configuration
            transport: Optional httpx transport (used to fake the webhook in tests)
        """
        self.config = config
        self.transport = transport
        self.logger = logger.bind(component="webhook_notifier")

    @property
    def active(self) -> bool:
        return self.config.enabled and bool(self.config.webhook_url)

    @staticmethod
    def build_payload(name: str, category: str, link: Optional[str]) -> dict:
        return {
            "appName": name,
            "appCategory": category,
            "appUrl": link,
        }

    async def _post(self, client: httpx.AsyncClient, payload: dict) -> int:
        """
        POST one payload.

        Raises:
            NotificationError: timeout, transport failure or error status
        """
        try:
            response = await client.post(self.config.webhook_url, json=payload)
            response.raise_for_status()
            return response.status_code
        except httpx.TimeoutException as e:
            raise NotificationError("Webhook request timed out") from e
        except httpx.HTTPStatusError as e:
            raise NotificationError(f"Webhook returned status {e.response.status_code}") from e
        except httpx.HTTPError as e:
            raise NotificationError(f"Webhook request failed: {e}") from e

    async def notify_all(self, items: List[AppItem], kind: StoreKind, source_name: str = "") -> List[NotificationResult]:
        """
        Notify about each new app independently.

        A failed send is recorded in its result and does not stop later sends.
        """
        results: List[NotificationResult] = []
        if not items:
            return results

        if not self.active:
            self.logger.debug("Notifications disabled, skipping", items=len(items))
            return [
                NotificationResult(
                    app_id=item.app_id,
                    app_name=item.name,
                    category=classify_category(item.link, kind),
                    skipped=True
                )
                for item in items
            ]

        async with httpx.AsyncClient(timeout=self.config.timeout, transport=self.transport) as client:
            for item in items:
                category = classify_category(item.link, kind)
                result = NotificationResult(app_id=item.app_id, app_name=item.name, category=category)
                try:
                    result.status_code = await self._post(
                        client, self.build_payload(item.name, category, item.link)
                    )
                    result.success = True
                    self.logger.info("Webhook sent", app_id=item.app_id, app_name=item.name)
                except NotificationError as e:
                    result.error = str(e)
                    self.logger.error(
                        "Failed to send webhook",
                        app_id=item.app_id,
                        app_name=item.name,
                        error=str(e)
                    )
                results.append(result)

        failed = sum(1 for r in results if not r.success)
        self.logger.info(
            "Webhook processing completed",
            source_name=source_name,
            sent=len(results) - failed,
            failed=failed
        )
        return results

    async def send_test(self) -> NotificationResult:
        """Send a fixed test payload to the configured webhook."""
        result = NotificationResult(app_id="test", app_name="Test App", category="Testing")
        if not self.active:
            result.skipped = True
            result.error = "No webhook configured"
            return result

        async with httpx.AsyncClient(timeout=self.config.timeout, transport=self.transport) as client:
            try:
                result.status_code = await self._post(
                    client, self.build_payload("Test App", "Testing", "https://example.com")
                )
                result.success = True
            except NotificationError as e:
                result.error = str(e)
                self.logger.error("Webhook test failed", error=str(e))
        return result
