"""Synthetic weather sources for development and demos.

Observations are stamped at the top of the current hour, so repeated runs
within the same hour land on the same ``(entity_id, observed_at)`` keys
and exercise gold deduplication.

``synthetic_weather`` returns every city in one call.
``synthetic_city_weather`` returns a single city and is meant for
per-entity fan-out (``MEDALLION_ENTITIES``).
"""

from __future__ import annotations

import random
from datetime import datetime

from medallion.core.timestamps import utc_now

CITIES = ("Paris", "London", "Berlin", "Madrid", "Rome", "Vienna")

_CONDITIONS = ("clear", "clouds", "rain", "snow", "mist")


def _observation(city: str, now: datetime | None, rng: random.Random) -> dict:
    hour = (now or utc_now()).replace(minute=0, second=0, microsecond=0)
    return {
        "entity_id": city,
        "observed_at": hour,
        "temp": round(rng.uniform(-5.0, 32.0), 1),
        "humidity": rng.randint(20, 100),
        "wind_speed": round(rng.uniform(0.0, 18.0), 1),
        "pressure": rng.randint(980, 1040),
        "condition": rng.choice(_CONDITIONS),
    }


def synthetic_weather(now: datetime | None = None, rng: random.Random | None = None) -> list[dict]:
    """Return one hourly observation per city with plausible measurements."""
    rng = rng or random.Random()
    return [_observation(city, now, rng) for city in CITIES]


def synthetic_city_weather(city: str, now: datetime | None = None, rng: random.Random | None = None) -> dict:
    return _observation(city, now, rng or random.Random())
