"""Weighted "next photo" policy.

Three tiers, drawn per request:

    r < smart_probability                          -> smart candidates
    r < smart_probability + favorite_probability   -> favorites
    otherwise                                      -> whole library

Smart candidates are photos from the last `recent_days` days or taken
within `anniversary_days` of today's date in an earlier year. An empty
tier falls back to favorites, then to the whole library.
"""

import logging
import os
import random
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta
from pathlib import Path

import config as cfg
from records import Photo

logger = logging.getLogger(__name__)


@dataclass
class Tiers:
    smart: list[Photo] = field(default_factory=list)
    favorites: list[Photo] = field(default_factory=list)


def _same_day(year: int, month: int, day: int) -> date:
    try:
        return date(year, month, day)
    except ValueError:
        # Feb 29 in a non-leap year
        return date(year, month, day - 1)


def is_anniversary(taken: date, today: date, window_days: int) -> bool:
    """True if taken falls in an earlier year within window_days of today's date."""
    if taken.year >= today.year:
        return False
    # Check the neighbouring years too so Dec 30 matches Jan 2.
    for year in (today.year - 1, today.year, today.year + 1):
        shifted = _same_day(year, taken.month, taken.day)
        if abs((shifted - today).days) <= window_days:
            return True
    return False


class SelectionPolicy:
    def __init__(
        self,
        favorites_dir: str | Path,
        recent_days: int | None = None,
        anniversary_days: int | None = None,
        smart_probability: float | None = None,
        favorite_probability: float | None = None,
        rng: random.Random | None = None,
    ):
        self._favorites_prefix = os.path.join(str(favorites_dir), "")
        self.recent_days = cfg.RECENT_DAYS if recent_days is None else recent_days
        self.anniversary_days = cfg.ANNIVERSARY_DAYS if anniversary_days is None else anniversary_days
        self.smart_probability = cfg.SMART_PROBABILITY if smart_probability is None else smart_probability
        self.favorite_probability = (
            cfg.FAVORITE_PROBABILITY if favorite_probability is None else favorite_probability
        )
        self._rng = rng or random.Random()

    def is_favorite(self, photo: Photo) -> bool:
        return photo.path.startswith(self._favorites_prefix)

    def is_smart(self, photo: Photo, now: datetime) -> bool:
        try:
            taken = photo.created_at.astimezone(now.tzinfo)
        except (ValueError, TypeError, AttributeError):
            return False
        if now - timedelta(days=self.recent_days) <= taken <= now + timedelta(days=1):
            return True
        return is_anniversary(taken.date(), now.date(), self.anniversary_days)

    def classify(self, photos: list[Photo], now: datetime | None = None) -> Tiers:
        now = (now or datetime.now()).astimezone()
        tiers = Tiers()
        for photo in photos:
            if self.is_favorite(photo):
                tiers.favorites.append(photo)
            if self.is_smart(photo, now):
                tiers.smart.append(photo)
        return tiers

    def choose(self, photos: list[Photo], now: datetime | None = None) -> Photo | None:
        """Pick one photo, or None for an empty library. Never mutates photos."""
        if not photos:
            return None
        tiers = self.classify(photos, now)
        r = self._rng.random()

        if r < self.smart_probability:
            pool, tier = tiers.smart or tiers.favorites or photos, "smart"
        elif r < self.smart_probability + self.favorite_probability:
            pool, tier = tiers.favorites or photos, "favorites"
        else:
            pool, tier = photos, "all"

        logger.debug(
            "Selecting from %s tier (%d smart, %d favorites, %d total)",
            tier, len(tiers.smart), len(tiers.favorites), len(photos),
        )
        return self._rng.choice(pool)
