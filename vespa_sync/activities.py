"""Activity-of-the-week selection from the published activity catalogue."""

from __future__ import annotations

import json
import logging
import random
from datetime import datetime, timedelta, timezone
from typing import Any, Awaitable, Callable, Dict, List, Literal, Optional

import httpx
from pydantic import BaseModel, ConfigDict, Field

from .cache.local_store import LocalStore
from .retry import RequestExecutor

logger = logging.getLogger(__name__)

HISTORY_KEY = "vespa_activity_history"
RECENT_WINDOW = timedelta(days=7)
HISTORY_RETENTION = timedelta(days=30)

IMAGE_SUFFIXES = (".jpg", ".jpeg", ".png", ".gif")

CatalogueFetch = Callable[[], Awaitable[Any]]


class ActivityOfTheWeek(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    id: str
    title: Optional[str] = None
    category: str = "N/A"
    level: Optional[str] = None
    media_url: str = Field(..., alias="mediaUrl")
    media_kind: Literal["slides", "video", "image"] = Field(..., alias="mediaKind")
    pdf_link: Optional[str] = Field(None, alias="pdfLink")
    background_content: str = Field("", alias="backgroundContent")


def activity_history_key(prefix: str, user_key: str) -> str:
    """Recently shown activities are remembered per user."""
    return f"{prefix}:activity_history:{user_key}"


def catalogue_fetcher(
    url: str,
    executor: RequestExecutor,
    client: httpx.AsyncClient,
) -> CatalogueFetch:
    async def fetch() -> Any:
        async def attempt() -> Any:
            response = await client.get(url)
            response.raise_for_status()
            return response.json()

        return await executor.execute(attempt, label=f"GET {url}")

    return fetch


def _section_links(activity: Dict[str, Any], section: str) -> List[str]:
    sections = activity.get("sections") or {}
    links = (sections.get(section) or {}).get("links") or []
    return [link for link in links if isinstance(link, str)]


def _first(links: List[str], predicate: Callable[[str], bool]) -> Optional[str]:
    return next((link for link in links if predicate(link)), None)


def select_media(activity: Dict[str, Any]) -> Optional[tuple[str, str]]:
    """Slides from "think", then a YouTube embed from "think", then an image from "learn"."""
    think = _section_links(activity, "think")
    slides = _first(think, lambda link: "docs.google.com/presentation" in link)
    if slides:
        return slides, "slides"
    video = _first(think, lambda link: "youtube.com/embed" in link)
    if video:
        return video, "video"
    image = _first(
        _section_links(activity, "learn"),
        lambda link: any(suffix in link.lower() for suffix in IMAGE_SUFFIXES),
    )
    if image:
        return image, "image"
    return None


def _category_name(activity: Dict[str, Any]) -> str:
    category = activity.get("category")
    if isinstance(category, dict):
        category = category.get("name")
    return str(category) if category else "N/A"


class ActivitySelector:
    def __init__(
        self,
        fetch: CatalogueFetch,
        local_store: LocalStore,
        rng: Optional[random.Random] = None,
        clock: Optional[Callable[[], datetime]] = None,
        *,
        history_key: str = HISTORY_KEY,
    ) -> None:
        self._fetch = fetch
        self._local_store = local_store
        self.history_key = history_key
        self._rng = rng or random.Random()
        self._clock = clock or (lambda: datetime.now(timezone.utc))

    async def pick(self) -> Optional[ActivityOfTheWeek]:
        try:
            catalogue = await self._fetch()
        except Exception as exc:  # noqa: BLE001
            logger.warning("Activity catalogue unavailable: %s", exc)
            return None
        if not isinstance(catalogue, list) or not catalogue:
            logger.info("Activity catalogue is empty")
            return None

        active = [item for item in catalogue if isinstance(item, dict) and item.get("active") is True]
        if not active:
            logger.info("No active activities in catalogue")
            return None

        now_ms = self._now_ms()
        history = self._load_history()
        recent_cutoff = now_ms - RECENT_WINDOW.total_seconds() * 1000
        recent_ids = {entry["id"] for entry in history if entry["timestamp"] > recent_cutoff}
        pool = [item for item in active if item.get("id") not in recent_ids]
        if not pool:
            logger.debug("Every active activity shown recently; resetting pool")
            pool = active

        chosen = self._rng.choice(pool)
        self._record(history, chosen.get("id"), now_ms)

        media = select_media(chosen)
        if media is None:
            logger.info("Activity %s has no usable media", chosen.get("id"))
            return None
        media_url, media_kind = media
        pdf_link = _first(_section_links(chosen, "do"), lambda link: ".pdf" in link)
        learn = (chosen.get("sections") or {}).get("learn") or {}
        return ActivityOfTheWeek(
            id=str(chosen.get("id")),
            title=chosen.get("activity_name"),
            category=_category_name(chosen),
            level=chosen.get("level"),
            media_url=media_url,
            media_kind=media_kind,
            pdf_link=pdf_link,
            background_content=learn.get("text") or "",
        )

    def _now_ms(self) -> int:
        return int(self._clock().timestamp() * 1000)

    def _load_history(self) -> List[Dict[str, Any]]:
        try:
            raw = self._local_store.get(self.history_key)
            entries = json.loads(raw) if raw else []
        except Exception as exc:  # noqa: BLE001
            logger.debug("Activity history unreadable: %s", exc)
            return []
        if not isinstance(entries, list):
            return []
        return [
            entry
            for entry in entries
            if isinstance(entry, dict) and "id" in entry and isinstance(entry.get("timestamp"), (int, float))
        ]

    def _record(self, history: List[Dict[str, Any]], activity_id: Any, now_ms: int) -> None:
        retention_cutoff = now_ms - HISTORY_RETENTION.total_seconds() * 1000
        kept = [entry for entry in history if entry["timestamp"] > retention_cutoff]
        kept.append({"id": activity_id, "timestamp": now_ms})
        try:
            self._local_store.set(self.history_key, json.dumps(kept))
        except Exception as exc:  # noqa: BLE001
            logger.debug("Activity history not saved: %s", exc)


__all__ = [
    "ActivityOfTheWeek",
    "ActivitySelector",
    "CatalogueFetch",
    "HISTORY_KEY",
    "activity_history_key",
    "catalogue_fetcher",
    "select_media",
]
