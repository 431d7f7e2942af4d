"""Pydantic models for gamification endpoints."""

from __future__ import annotations

from datetime import date, datetime

from pydantic import BaseModel, Field


# --- Awards ---


class AwardResponse(BaseModel):
    points_awarded: int = 0
    new_total: int = 0
    new_level: int = 1
    new_badges: list[str] = []


# --- Badges ---


class BadgeDefinitionResponse(BaseModel):
    slug: str
    name: str
    description: str
    category: str
    points: int


class AllBadgesResponse(BaseModel):
    badges: list[BadgeDefinitionResponse]


class EarnedBadgeResponse(BaseModel):
    slug: str
    name: str
    description: str
    category: str
    earned_at: datetime


class AchievementResponse(BaseModel):
    type: str
    title: str
    description: str | None = None
    points_earned: int
    earned_at: datetime


# --- Streak ---


class StreakState(BaseModel):
    current: int
    longest: int
    last_active: date | None = None


class StreakTouchResponse(BaseModel):
    current: int
    longest: int
    last_active: date | None = None
    milestone_badges: list[str] = []
    points_awarded: int = 0


# --- Profile ---


class ProfileResponse(BaseModel):
    user_id: int
    name: str
    points: int
    level: int
    points_into_level: int
    points_for_level: int
    points_to_next_level: int
    next_level: int
    streak: StreakState
    badges: list[EarnedBadgeResponse]
    recent_achievements: list[AchievementResponse]
    certificate_count: int
    verified_certificate_count: int
    skill_count: int


# --- Leaderboard ---


class LeaderboardEntry(BaseModel):
    user_id: int
    name: str
    score: int
    rank: int
    rank_change: int = 0


class LeaderboardResponse(BaseModel):
    metric: str
    period: str
    rankings: list[LeaderboardEntry]
    user_rank: int | None = None
    last_updated: datetime
    total: int
    page: int
    limit: int


# --- Admin ---


class AdminPointsRequest(BaseModel):
    user_id: int
    delta: int
    reason: str = Field(min_length=1, max_length=500)
