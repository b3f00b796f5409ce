"""
recommendation_service.py — Course recommendations
Tags each unenrolled, published track with a priority and a reason, then keeps the top picks.
"""

import math
from datetime import datetime

from config import RECOMMENDATION_LIMIT
from services.progress_metrics import to_utc, utcnow

POPULAR_KEYWORDS = ["beginner", "introduction", "fundamentals", "basics", "getting started"]
PRIORITY_ORDER = {"high": 3, "medium": 2, "low": 1}


class RecommendationService:
    @staticmethod
    def score(track, now: datetime | None = None) -> tuple[str, str]:
        """First matching rule wins: recency, then keywords, then the default."""
        now = to_utc(now or utcnow())

        if track.published_at is not None:
            age = now - to_utc(track.published_at)
            days_since_published = math.floor(age.total_seconds() / 86400)
            if days_since_published <= 7:
                return "high", "Recently Added"
            if days_since_published <= 30:
                return "medium", "New Course"

        text = f"{track.title or ''} {getattr(track, 'summary', None) or ''}".lower()
        if any(keyword in text for keyword in POPULAR_KEYWORDS):
            return "medium", "Popular Choice"

        return "low", "Recommended for You"

    @staticmethod
    def recommend(
        tracks: list,
        enrolled_track_ids: set,
        now: datetime | None = None,
        limit: int = RECOMMENDATION_LIMIT,
    ) -> list[dict]:
        """
        Rank tracks the user hasn't enrolled in. The sort is stable, so tracks with the
        same priority keep the caller's order (newest published first from the fetch layer).
        """
        picks = []
        for track in tracks:
            if track.id in enrolled_track_ids:
                continue
            priority, reason = RecommendationService.score(track, now)
            picks.append({
                "id": track.id,
                "slug": track.slug,
                "title": track.title,
                "reason": reason,
                "priority": priority,
            })

        picks.sort(key=lambda r: PRIORITY_ORDER[r["priority"]], reverse=True)
        return picks[:limit]
