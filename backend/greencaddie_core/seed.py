"""Demo content inserted into an empty local store."""

from __future__ import annotations

from typing import Any, Dict, List

from .models import Course, TeeOption, utc_now_iso

DEMO_COURSE_ID = "demo-emerald-valley"

# (par, length in yards) for holes 1-18
_HOLE_LAYOUT = [
    (4, 385), (5, 520), (3, 165), (4, 410), (4, 395), (3, 180),
    (5, 535), (4, 420), (4, 405), (4, 400), (3, 170), (5, 545),
    (4, 430), (4, 390), (3, 188), (5, 560), (4, 415), (4, 440),
]


def _green(lat: float, lng: float) -> Dict[str, Any]:
    return {
        "front": {"lat": round(lat - 0.0001, 6), "lng": lng},
        "middle": {"lat": lat, "lng": lng},
        "back": {"lat": round(lat + 0.0001, 6), "lng": lng},
    }


def _demo_holes() -> List[Dict[str, Any]]:
    holes: List[Dict[str, Any]] = []
    for index, (par, length) in enumerate(_HOLE_LAYOUT):
        number = index + 1
        lat = round(45.52 + index * 0.0014, 6)
        lng = round(-122.68 + index * 0.001, 6)
        holes.append(
            {
                "number": number,
                "par": par,
                "lengthYards": length,
                "strokeIndex": ((index * 7) % 18) + 1,
                "green": _green(lat, lng),
                "hazards": [
                    {
                        "id": f"hz-{number}-1",
                        "name": "Fairway Bunker",
                        "type": "bunker",
                        "location": {"lat": round(lat - 0.0005, 6), "lng": round(lng - 0.0004, 6)},
                    }
                ],
            }
        )
    return holes


def demo_course(now: str | None = None) -> Course:
    stamp = now or utc_now_iso()
    return Course(
        id=DEMO_COURSE_ID,
        name="Emerald Valley (Demo)",
        club_name="GreenCaddie Municipal",
        location_name="Portland, OR",
        holes=_demo_holes(),
        tees=[
            TeeOption(id="white", name="White", course_rating=71.2, slope_rating=128),
            TeeOption(id="blue", name="Blue", course_rating=73.8, slope_rating=133),
        ],
        is_demo=True,
        created_at=stamp,
        updated_at=stamp,
    )
