"""Due-card counts for the five Leitner boxes of a flashcard record."""

from __future__ import annotations

import logging
from datetime import date
from typing import Any, Mapping, Optional

from ..parsing import decode_percent_encoded, parse_day, safe_parse_json
from ..records import FLASHCARD_FIELDS
from .models import LEITNER_BOXES, BoxCount, LeitnerSummary

logger = logging.getLogger(__name__)


def _count_box(raw: Any, today: date) -> BoxCount:
    if isinstance(raw, str):
        raw = decode_percent_encoded(raw)
    cards = safe_parse_json(raw, default=[])
    if not isinstance(cards, list):
        logger.debug("Flashcard box payload is not a list: %.100r", cards)
        return BoxCount()

    due = 0
    for card in cards:
        if not isinstance(card, Mapping):
            continue
        review_day = parse_day(card.get("nextReviewDate"))
        if review_day is not None and review_day <= today:
            due += 1
    return BoxCount(due=due, total=len(cards))


def summarize_flashcards(
    record: Optional[Mapping[str, Any]],
    today: Optional[date] = None,
) -> LeitnerSummary:
    """Count total and due cards per box; a card is due once its review day has arrived."""
    if not record:
        return LeitnerSummary()
    today = today or date.today()

    boxes = {
        box: _count_box(record.get(field_id), today)
        for box, field_id in zip(LEITNER_BOXES, FLASHCARD_FIELDS.boxes)
    }
    summary = LeitnerSummary(
        total_due=sum(count.due for count in boxes.values()),
        boxes=boxes,
    )
    logger.debug("Flashcard summary: %s", summary.model_dump(by_alias=True))
    return summary


__all__ = ["summarize_flashcards"]
