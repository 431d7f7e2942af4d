"""Level computation.

Levels are a pure function of points: every 100 points is one level,
starting at level 1.
"""

from __future__ import annotations

POINTS_PER_LEVEL = 100


def level_for_points(points: int) -> int:
    """Return the level for a point total. Negative totals count as zero."""
    return max(points, 0) // POINTS_PER_LEVEL + 1


def compute_level(points: int) -> dict:
    """Compute level info from a point total.

    Returns the level plus progress toward the next one, in the shape the
    profile endpoint serves.
    """
    level = level_for_points(points)
    level_floor = (level - 1) * POINTS_PER_LEVEL
    points_into_level = max(points, 0) - level_floor
    return {
        "level": level,
        "points_into_level": points_into_level,
        "points_for_level": POINTS_PER_LEVEL,
        "points_to_next_level": POINTS_PER_LEVEL - points_into_level,
        "next_level": level + 1,
    }
