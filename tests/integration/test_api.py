"""HTTP surface: routing, auth, error envelopes and end-to-end flows."""

from __future__ import annotations

import pytest

from conftest import auth_headers, make_certificate, make_user
from skillify.config import Settings
from skillify.dependencies import get_confidence_scorer, get_extractor
from skillify.verification.providers import BaseScoringOracle, BaseTextExtractor, OracleAssessment
from skillify.verification.scorer import ConfidenceScorer

API = "/api/v1"


class _Extractor(BaseTextExtractor):
    async def extract(self, evidence_url):
        return "Certificate of completion: Machine Learning, Coursera"


class _Oracle(BaseScoringOracle):
    async def assess(self, text, claimed, evidence_url=""):
        return OracleAssessment(confidence=91)


@pytest.fixture
def stub_providers(app):
    app.dependency_overrides[get_extractor] = _Extractor
    app.dependency_overrides[get_confidence_scorer] = lambda: ConfidenceScorer(
        _Oracle(), None, Settings(oracle_max_attempts=1)
    )
    yield
    app.dependency_overrides.clear()


async def seed_user(session_factory, name="Ada Lovelace", **fields):
    async with session_factory() as db:
        user = await make_user(db, name, **fields)
        await db.commit()
        return user


async def seed_certificate(session_factory, user, **fields):
    async with session_factory() as db:
        cert = await make_certificate(db, user, **fields)
        await db.commit()
        return cert


class TestHealth:
    @pytest.mark.asyncio
    async def test_health(self, client):
        response = await client.get("/health")
        assert response.status_code == 200
        assert response.json() == {"status": "healthy"}
        assert response.headers["X-Request-Id"]

    @pytest.mark.asyncio
    async def test_request_id_is_echoed(self, client):
        response = await client.get("/health", headers={"X-Request-Id": "abc-123"})
        assert response.headers["X-Request-Id"] == "abc-123"

    @pytest.mark.asyncio
    async def test_ready_without_redis(self, client):
        response = await client.get("/ready")
        assert response.status_code == 200
        body = response.json()
        assert body["status"] == "ready"
        assert body["checks"] == {"database": "ok", "redis": "disabled"}

    @pytest.mark.asyncio
    async def test_version(self, client):
        response = await client.get("/version")
        assert response.json()["version"] == "0.1.0"


class TestAuth:
    @pytest.mark.asyncio
    async def test_missing_token(self, client):
        response = await client.get(f"{API}/gamification/profile")
        assert response.status_code in (401, 403)

    @pytest.mark.asyncio
    async def test_garbage_token(self, client):
        response = await client.get(f"{API}/gamification/profile", headers={"Authorization": "Bearer nope"})
        assert response.status_code == 401

    @pytest.mark.asyncio
    async def test_token_for_missing_user(self, client):
        response = await client.get(f"{API}/gamification/profile", headers=auth_headers(9999))
        assert response.status_code == 401


class TestCertificates:
    @pytest.mark.asyncio
    async def test_submit(self, client, session_factory):
        user = await seed_user(session_factory)
        response = await client.post(
            f"{API}/certificates",
            json={
                "title": "Machine Learning",
                "issuer": "Coursera",
                "issue_date": "2024-05-01",
                "evidence_url": "https://files.example.com/ml.pdf",
                "skills": ["Python", "Statistics"],
            },
            headers=auth_headers(user.id),
        )

        assert response.status_code == 201
        body = response.json()
        assert body["certificate"]["verification_status"] == "pending"
        assert body["certificate"]["file_type"] == "pdf"
        assert sorted(s["name"] for s in body["certificate"]["skills"]) == ["Python", "Statistics"]
        assert body["gamification"]["points_awarded"] == 50

    @pytest.mark.asyncio
    async def test_domain_error_envelope(self, client, session_factory):
        user = await seed_user(session_factory)
        response = await client.post(
            f"{API}/certificates",
            json={"title": "ML", "issuer": "Coursera", "issue_date": "2024-05-01"},
            headers=auth_headers(user.id),
        )
        assert response.status_code == 400
        assert response.json()["code"] == "invalid_input"

    @pytest.mark.asyncio
    async def test_validation_error_envelope(self, client, session_factory):
        user = await seed_user(session_factory)
        response = await client.post(f"{API}/certificates", json={"issuer": "X"}, headers=auth_headers(user.id))
        assert response.status_code == 422
        assert response.json()["code"] == "validation_error"

    @pytest.mark.asyncio
    async def test_verify_and_history(self, client, session_factory, stub_providers):
        user = await seed_user(session_factory)
        cert = await seed_certificate(session_factory, user)

        response = await client.post(f"{API}/certificates/{cert.id}/verify", headers=auth_headers(user.id))
        assert response.status_code == 200
        body = response.json()
        assert body["status"] == "auto_verified"
        assert body["award"]["points_awarded"] == 30

        history = await client.get(f"{API}/certificates/{cert.id}/history", headers=auth_headers(user.id))
        entries = history.json()["entries"]
        assert [e["decision"] for e in entries] == ["auto_verified"]
        assert entries[0]["id"] == body["history_id"]

    @pytest.mark.asyncio
    async def test_verify_someone_elses_certificate(self, client, session_factory, stub_providers):
        owner = await seed_user(session_factory, "Owner")
        other = await seed_user(session_factory, "Other")
        cert = await seed_certificate(session_factory, owner)

        response = await client.post(f"{API}/certificates/{cert.id}/verify", headers=auth_headers(other.id))
        assert response.status_code == 403
        assert response.json()["code"] == "forbidden"

    @pytest.mark.asyncio
    async def test_verify_missing_certificate(self, client, session_factory, stub_providers):
        user = await seed_user(session_factory)
        response = await client.post(f"{API}/certificates/404/verify", headers=auth_headers(user.id))
        assert response.status_code == 404
        assert response.json()["code"] == "not_found"

    @pytest.mark.asyncio
    async def test_check_evidence(self, client, session_factory, stub_providers):
        user = await seed_user(session_factory)
        response = await client.post(
            f"{API}/certificates/verify",
            json={"evidence_url": "https://files.example.com/x.png", "claimed": {"title": "Machine Learning"}},
            headers=auth_headers(user.id),
        )
        assert response.status_code == 200
        assert response.json()["decision"] == "auto_verified"

    @pytest.mark.asyncio
    async def test_replace_evidence(self, client, session_factory, stub_providers):
        user = await seed_user(session_factory)
        cert = await seed_certificate(session_factory, user, verification_status="rejected")

        response = await client.put(
            f"{API}/certificates/{cert.id}/evidence",
            json={"evidence_url": "https://files.example.com/new.png"},
            headers=auth_headers(user.id),
        )
        assert response.status_code == 200
        assert response.json()["previous_status"] == "rejected"
        assert response.json()["status"] == "auto_verified"

    @pytest.mark.asyncio
    async def test_update_skills_and_delete(self, client, session_factory):
        user = await seed_user(session_factory)
        cert = await seed_certificate(session_factory, user)

        response = await client.put(
            f"{API}/certificates/{cert.id}/skills", json={"skills": ["Go"]}, headers=auth_headers(user.id)
        )
        assert response.status_code == 200
        assert [s["name"] for s in response.json()["certificate"]["skills"]] == ["Go"]

        response = await client.delete(f"{API}/certificates/{cert.id}", headers=auth_headers(user.id))
        assert response.status_code == 204
        response = await client.get(f"{API}/certificates/{cert.id}/history", headers=auth_headers(user.id))
        assert response.status_code == 404

    @pytest.mark.asyncio
    async def test_review_requires_admin(self, client, session_factory):
        user = await seed_user(session_factory)
        admin = await seed_user(session_factory, "Admin", is_admin=True)
        cert = await seed_certificate(session_factory, user, verification_status="flagged")

        denied = await client.post(
            f"{API}/certificates/{cert.id}/review", json={"decision": "verified"}, headers=auth_headers(user.id)
        )
        assert denied.status_code == 403

        response = await client.post(
            f"{API}/certificates/{cert.id}/review",
            json={"decision": "verified", "notes": "looks right"},
            headers=auth_headers(admin.id, is_admin=True),
        )
        assert response.status_code == 200
        assert response.json()["status"] == "verified"
        assert response.json()["award"]["points_awarded"] == 30


class TestGamification:
    @pytest.mark.asyncio
    async def test_badges(self, client):
        response = await client.get(f"{API}/gamification/badges")
        slugs = {b["slug"] for b in response.json()["badges"]}
        assert {"week_warrior", "month_master", "verification_guru"} <= slugs

    @pytest.mark.asyncio
    async def test_streak_then_profile(self, client, session_factory):
        user = await seed_user(session_factory)

        response = await client.post(f"{API}/gamification/streak", headers=auth_headers(user.id))
        assert response.status_code == 200
        assert response.json()["current"] == 1
        assert response.json()["points_awarded"] == 5

        again = await client.post(f"{API}/gamification/streak", headers=auth_headers(user.id))
        assert again.json()["points_awarded"] == 0

        profile = (await client.get(f"{API}/gamification/profile", headers=auth_headers(user.id))).json()
        assert profile["points"] == 5
        assert profile["level"] == 1
        assert profile["points_to_next_level"] == 95
        assert profile["streak"]["current"] == 1
        assert [a["type"] for a in profile["recent_achievements"]] == ["daily_login"]

    @pytest.mark.asyncio
    async def test_leaderboard(self, client, session_factory):
        leader = await seed_user(session_factory, "Leader", points=400)
        me = await seed_user(session_factory, "Me", points=100)

        response = await client.get(f"{API}/leaderboard", headers=auth_headers(me.id))
        assert response.status_code == 200
        body = response.json()
        assert [e["user_id"] for e in body["rankings"]] == [leader.id, me.id]
        assert body["user_rank"] == 2
        assert body["metric"] == "points"
        assert body["period"] == "alltime"

    @pytest.mark.asyncio
    async def test_leaderboard_bad_metric(self, client, session_factory):
        me = await seed_user(session_factory)
        response = await client.get(f"{API}/leaderboard", params={"metric": "karma"}, headers=auth_headers(me.id))
        assert response.status_code == 400
        assert response.json()["code"] == "invalid_input"

    @pytest.mark.asyncio
    async def test_leaderboard_limit_bounds(self, client, session_factory):
        me = await seed_user(session_factory)
        response = await client.get(f"{API}/leaderboard", params={"limit": 500}, headers=auth_headers(me.id))
        assert response.status_code == 422

    @pytest.mark.asyncio
    async def test_admin_points(self, client, session_factory):
        user = await seed_user(session_factory, points=40)
        admin = await seed_user(session_factory, "Admin", is_admin=True)
        body = {"user_id": user.id, "delta": -100, "reason": "duplicate account"}

        denied = await client.post(f"{API}/admin/points", json=body, headers=auth_headers(user.id))
        assert denied.status_code == 403

        response = await client.post(f"{API}/admin/points", json=body, headers=auth_headers(admin.id))
        assert response.status_code == 200
        assert response.json()["new_total"] == 0
        assert response.json()["points_awarded"] == -40
