"""Award table and badge catalog."""

from __future__ import annotations

from skillify.config import Settings, get_settings

# action -> (settings field holding the canonical amount, achievement title)
AWARD_ACTIONS: dict[str, tuple[str | None, str]] = {
    "certificate_created": ("points_certificate_created", "Certificate added"),
    "certificate_verified": ("points_certificate_verified", "Certificate verified"),
    "skill_added": ("points_skill_added", "Skill added"),
    "daily_login": ("points_daily_login", "Daily login"),
    "badge_earned": (None, "Badge earned"),
    "admin_adjustment": (None, "Points adjusted by an administrator"),
}


def default_amount(action: str, settings: Settings | None = None) -> int:
    """Canonical point amount for an action. Actions without one award 0."""
    if action not in AWARD_ACTIONS:
        msg = f"Unknown award action: {action}"
        raise ValueError(msg)
    field, _title = AWARD_ACTIONS[action]
    if field is None:
        return 0
    return int(getattr(settings or get_settings(), field))


def action_title(action: str) -> str:
    return AWARD_ACTIONS.get(action, (None, action.replace("_", " ").capitalize()))[1]


BADGE_CATALOG: list[dict] = [
    # Consistency
    {
        "slug": "week_warrior",
        "name": "Week Warrior",
        "description": "Maintained a learning streak for 7 consecutive days",
        "category": "engagement",
        "points_field": "points_week_warrior",
        "trigger_type": "streak",
        "trigger_config": {"threshold": 7},
    },
    {
        "slug": "month_master",
        "name": "Month Master",
        "description": "Maintained a learning streak for 30 consecutive days",
        "category": "engagement",
        "points_field": "points_month_master",
        "trigger_type": "streak",
        "trigger_config": {"threshold": 30},
    },
    # Collections
    {
        "slug": "certificate_champion",
        "name": "Certificate Champion",
        "description": "Added 10 or more certificates",
        "category": "certificates",
        "points": 50,
        "trigger_type": "certificate_count",
        "trigger_config": {"threshold": 10},
    },
    {
        "slug": "skill_master",
        "name": "Skill Master",
        "description": "Added 10 or more skills",
        "category": "skills",
        "points": 50,
        "trigger_type": "skill_count",
        "trigger_config": {"threshold": 10},
    },
    {
        "slug": "verification_guru",
        "name": "Verification Guru",
        "description": "Verified 5 or more certificates",
        "category": "certificates",
        "points": 50,
        "trigger_type": "verified_count",
        "trigger_config": {"threshold": 5},
    },
]

BADGES_BY_SLUG: dict[str, dict] = {b["slug"]: b for b in BADGE_CATALOG}


def badge_points(badge: dict, settings: Settings | None = None) -> int:
    """Points granted with a badge. Streak milestone amounts live in settings."""
    field = badge.get("points_field")
    if field is None:
        return int(badge["points"])
    return int(getattr(settings or get_settings(), field))

# streak length -> badge slug, awarded the first time the streak reaches it
STREAK_BADGE_MAP: dict[int, str] = {
    b["trigger_config"]["threshold"]: b["slug"] for b in BADGE_CATALOG if b["trigger_type"] == "streak"
}
