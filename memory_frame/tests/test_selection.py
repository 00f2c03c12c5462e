import random
import sys
from datetime import date, datetime, timedelta, timezone
from pathlib import Path

sys.path.insert(0, str(Path(__file__).resolve().parent.parent))

from records import Photo, iso_timestamp
from selection import SelectionPolicy, is_anniversary

FAV_DIR = "/nas/_photoframe_defaults"
NOW = datetime(2026, 10, 18, 12, 0, tzinfo=timezone.utc)


class _FixedDraw(random.Random):
    """Tier draw is fixed; the in-tier pick stays seeded-random."""

    def __init__(self, value: float, seed: int = 7):
        super().__init__(seed)
        self._value = value

    def random(self) -> float:
        return self._value

    # Keep choice() on getrandbits so it does not reuse the fixed draw.
    def getrandbits(self, k: int) -> int:
        return super().getrandbits(k)


def _photo(path: str, when: datetime) -> Photo:
    return Photo(path=path, created=iso_timestamp(when.timestamp()))


def _policy(draw: float, **kwargs) -> SelectionPolicy:
    defaults = dict(
        recent_days=30, anniversary_days=3, smart_probability=0.5, favorite_probability=0.25,
    )
    defaults.update(kwargs)
    return SelectionPolicy(FAV_DIR, rng=_FixedDraw(draw), **defaults)


# -- anniversary --

def test_anniversary_same_day_prior_year():
    assert is_anniversary(date(2020, 10, 18), date(2026, 10, 18), 3)
    assert is_anniversary(date(2020, 10, 15), date(2026, 10, 18), 3)
    assert not is_anniversary(date(2020, 10, 14), date(2026, 10, 18), 3)


def test_anniversary_excludes_current_year():
    assert not is_anniversary(date(2026, 10, 18), date(2026, 10, 18), 3)


def test_anniversary_across_year_boundary():
    assert is_anniversary(date(2019, 12, 30), date(2026, 1, 1), 3)
    assert is_anniversary(date(2019, 1, 2), date(2025, 12, 31), 3)


def test_anniversary_leap_day():
    assert is_anniversary(date(2020, 2, 29), date(2026, 2, 28), 0)
    assert is_anniversary(date(2020, 2, 29), date(2026, 3, 1), 1)


# -- tiers --

def test_classify_tiers():
    photos = [
        _photo("/nas/2026/recent.jpg", NOW - timedelta(days=2)),
        _photo("/nas/2019/onthisday.jpg", NOW.replace(year=2019)),
        _photo("/nas/2019/old.jpg", NOW.replace(year=2019, month=3)),
        _photo(f"{FAV_DIR}/fav.jpg", NOW.replace(year=2015, month=5)),
    ]
    tiers = _policy(0.0).classify(photos, NOW)

    assert [p.path for p in tiers.smart] == ["/nas/2026/recent.jpg", "/nas/2019/onthisday.jpg"]
    assert [p.path for p in tiers.favorites] == [f"{FAV_DIR}/fav.jpg"]


def test_favorites_prefix_is_not_a_substring_match():
    policy = _policy(0.0)
    assert not policy.is_favorite(Photo(f"{FAV_DIR}_old/x.jpg", "2020-01-01T00:00:00.000Z"))
    assert policy.is_favorite(Photo(f"{FAV_DIR}/sub/x.jpg", "2020-01-01T00:00:00.000Z"))


def test_recent_window_boundary():
    policy = _policy(0.0, recent_days=30)
    assert policy.is_smart(_photo("/a.jpg", NOW - timedelta(days=29)), NOW)
    assert not policy.is_smart(_photo("/b.jpg", NOW - timedelta(days=40)), NOW)


# -- choose --

def test_empty_library_returns_none():
    assert _policy(0.0).choose([], NOW) is None


def test_today_photos_chosen_when_smart_tier_drawn():
    today = [_photo(f"/nas/2026/today{i}.jpg", NOW - timedelta(hours=i)) for i in range(5)]
    others = [_photo(f"/nas/2018/old{i}.jpg", NOW.replace(year=2018, month=4)) for i in range(50)]
    policy = _policy(0.1)

    for _ in range(100):
        assert policy.choose(today + others, NOW) in today


def test_favorites_band():
    fav = [_photo(f"{FAV_DIR}/f{i}.jpg", NOW.replace(year=2010, month=1)) for i in range(3)]
    today = [_photo("/nas/today.jpg", NOW)]
    policy = _policy(0.6)

    for _ in range(50):
        assert policy.choose(fav + today, NOW) in fav


def test_whole_library_band():
    photos = [_photo(f"/nas/{i}.jpg", NOW.replace(year=2012, month=1)) for i in range(10)]
    photos.append(_photo("/nas/today.jpg", NOW))
    policy = _policy(0.9)

    seen = {policy.choose(photos, NOW).path for _ in range(300)}
    assert len(seen) > 5


def test_smart_falls_back_to_favorites_then_all():
    fav = [_photo(f"{FAV_DIR}/f.jpg", NOW.replace(year=2010, month=1))]
    plain = [_photo("/nas/p.jpg", NOW.replace(year=2010, month=2))]

    assert _policy(0.0).choose(fav + plain, NOW) == fav[0]
    assert _policy(0.0).choose(plain, NOW) == plain[0]


def test_favorites_fall_back_to_all():
    plain = [_photo("/nas/p.jpg", NOW.replace(year=2010, month=2))]
    assert _policy(0.6).choose(plain, NOW) == plain[0]


def test_choose_does_not_mutate_input():
    photos = [_photo(f"/nas/{i}.jpg", NOW) for i in range(5)]
    snapshot = [Photo(p.path, p.created) for p in photos]
    _policy(0.2).choose(photos, NOW)
    assert photos == snapshot


def test_malformed_created_is_never_smart():
    bad = Photo("/nas/bad.jpg", "yesterday-ish")
    good = _photo("/nas/good.jpg", NOW)
    assert _policy(0.0).choose([bad, good], NOW) == good


def test_naive_now_is_accepted():
    photos = [_photo("/nas/a.jpg", datetime.now(timezone.utc))]
    assert _policy(0.0).choose(photos, datetime.now()) == photos[0]


def test_non_string_created_is_never_smart():
    good = _photo("/nas/good.jpg", NOW)
    for created in (None, 1704067200):
        assert _policy(0.0).choose([Photo("/nas/bad.jpg", created), good], NOW) == good
