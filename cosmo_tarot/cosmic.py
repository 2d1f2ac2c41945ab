"""Cosmic context: template-based daily descriptors and metaphors."""

from __future__ import annotations

from datetime import date
from typing import Optional

from .models import CosmicContext

METAPHOR_CLASSES = (
    "tide",
    "crossing",
    "alignment",
    "shedding",
    "gathering",
    "unfolding",
    "merging",
    "transforming",
    "reaching",
    "grounding",
    "flowing",
    "awakening",
)

DESCRIPTOR_PATTERNS = (
    "A day of gentle shifts and quiet clarity",
    "A moment of crossing thresholds and new perspectives",
    "A time of alignment between intention and action",
    "A period of shedding old patterns and making space",
    "A gathering of energies and focused direction",
    "An unfolding of possibilities and fresh insights",
    "A merging of paths and collaborative energies",
    "A transformation through reflection and release",
    "A reaching toward clarity and higher understanding",
    "A grounding in stability and practical wisdom",
    "A flowing with natural rhythms and intuitive guidance",
    "An awakening to new awareness and deeper connection",
)

# (sign, first month, first day) in calendar order; each sign runs until the next starts.
_ZODIAC_STARTS = (
    ("capricorn", 1, 1),
    ("aquarius", 1, 20),
    ("pisces", 2, 19),
    ("aries", 3, 21),
    ("taurus", 4, 20),
    ("gemini", 5, 21),
    ("cancer", 6, 21),
    ("leo", 7, 23),
    ("virgo", 8, 23),
    ("libra", 9, 23),
    ("scorpio", 10, 23),
    ("sagittarius", 11, 22),
    ("capricorn", 12, 22),
)


def day_of_year(d: date) -> int:
    return d.timetuple().tm_yday


def zodiac_for_date(d: date) -> str:
    sign = "capricorn"
    for name, month, day in _ZODIAC_STARTS:
        if (d.month, d.day) >= (month, day):
            sign = name
    return sign


def compute(d: date, zodiac: Optional[str] = None) -> CosmicContext:
    """Deterministic mapping from a calendar date to its descriptor and metaphor."""
    doy = day_of_year(d)
    return CosmicContext(
        day_of_year=doy,
        descriptor=DESCRIPTOR_PATTERNS[doy % len(DESCRIPTOR_PATTERNS)],
        metaphor=METAPHOR_CLASSES[doy % len(METAPHOR_CLASSES)],
        zodiac=zodiac,
    )
