############################################################
#
# toolgate - AI Tool Usage Metering and Provider Failover
#
# test_usage_api.py: Integration tests for the usage endpoints
#
# Luke Sheneman
# Research Computing and Data Services (RCDS)
# Institute for Interdisciplinary Data Sciences (IIDS)
# University of Idaho
# sheneman@uidaho.edu
#
############################################################

"""Integration tests for /api/usage/check, /record and /stats."""

import pytest
from sqlalchemy import select

from backend.app.db.models import UsageRecord
from backend.app.tests.factories import (
    cookie_header,
    seed_subscription,
    seed_tool,
    seed_user,
)


class TestCheck:
    """POST /api/usage/check"""

    @pytest.mark.asyncio
    async def test_new_guest(self, client):
        response = await client.post("/api/usage/check")

        assert response.status_code == 200
        assert response.json() == {
            "allowed": True,
            "remaining": 3,
            "limit": 3,
            "userType": "guest",
        }
        assert "guest_session_id=" in response.headers["set-cookie"]

    @pytest.mark.asyncio
    async def test_check_does_not_consume(self, client, db):
        await seed_tool(db)
        for _ in range(5):
            response = await client.post("/api/usage/check")
        assert response.json()["remaining"] == 3

    @pytest.mark.asyncio
    async def test_authenticated_user(self, client, db):
        user = await seed_user(db)
        response = await client.post("/api/usage/check", headers=cookie_header(user.id))
        body = response.json()
        assert body["userType"] == "user"
        assert body["limit"] == 5

    @pytest.mark.asyncio
    async def test_subscriber(self, client, db):
        user = await seed_user(db)
        await seed_subscription(db, user, daily_limit=100)
        response = await client.post("/api/usage/check", headers=cookie_header(user.id))
        body = response.json()
        assert body["userType"] == "subscriber"
        assert body["remaining"] == 100


class TestRecord:
    """POST /api/usage/record"""

    @pytest.mark.asyncio
    async def test_record_by_id(self, client, db, session_maker):
        tool = await seed_tool(db)
        response = await client.post(
            "/api/usage/record",
            json={"toolId": tool.id, "usedAI": True, "aiTokens": 120, "aiCost": 0.002},
            headers={"X-Forwarded-For": "198.51.100.20"},
        )

        assert response.status_code == 200
        assert response.json() == {"success": True, "remaining": 2}

        async with session_maker() as session:
            record = (await session.execute(select(UsageRecord))).scalar_one()
        assert record.tool_id == tool.id
        assert record.ip_address == "198.51.100.20"
        assert record.used_ai is True
        assert record.ai_tokens == 120
        assert record.user_id is None
        assert record.session_id

    @pytest.mark.asyncio
    async def test_record_by_slug(self, client, db):
        await seed_tool(db, slug="aura-check")
        response = await client.post("/api/usage/record", json={"toolId": "aura-check"})
        assert response.status_code == 200

    @pytest.mark.asyncio
    async def test_missing_tool_id(self, client):
        response = await client.post("/api/usage/record", json={})
        assert response.status_code == 400
        assert response.json() == {"error": "toolId is required", "code": "validation_error"}

    @pytest.mark.asyncio
    async def test_unknown_tool(self, client):
        response = await client.post("/api/usage/record", json={"toolId": "nope"})
        assert response.status_code == 404
        assert response.json()["code"] == "tool_not_found"

    @pytest.mark.asyncio
    async def test_negative_tokens_rejected(self, client, db):
        tool = await seed_tool(db)
        response = await client.post(
            "/api/usage/record", json={"toolId": tool.id, "aiTokens": -1}
        )
        assert response.status_code == 400
        assert response.json()["code"] == "validation_error"

    @pytest.mark.asyncio
    async def test_limit_enforced_server_side(self, client, db):
        tool = await seed_tool(db)
        for expected in (2, 1, 0):
            response = await client.post("/api/usage/record", json={"toolId": tool.id})
            assert response.json()["remaining"] == expected

        response = await client.post("/api/usage/record", json={"toolId": tool.id})

        assert response.status_code == 429
        body = response.json()
        assert body["allowed"] is False
        assert body["remaining"] == 0
        assert body["requiresLogin"] is True
        assert body["code"] == "quota_exceeded"

    @pytest.mark.asyncio
    async def test_new_cookie_does_not_reset_guest_quota(self, client, db):
        """Clearing cookies leaves the IP count in place."""
        tool = await seed_tool(db)
        for _ in range(3):
            await client.post("/api/usage/record", json={"toolId": tool.id})

        client.cookies.clear()
        response = await client.post("/api/usage/check")
        assert response.json()["allowed"] is False

    @pytest.mark.asyncio
    async def test_user_over_limit_requires_upgrade(self, client, db):
        user = await seed_user(db)
        tool = await seed_tool(db)
        headers = cookie_header(user.id)
        for _ in range(5):
            await client.post("/api/usage/record", json={"toolId": tool.id}, headers=headers)

        response = await client.post(
            "/api/usage/record", json={"toolId": tool.id}, headers=headers
        )
        assert response.status_code == 429
        assert response.json()["requiresUpgrade"] is True


class TestStats:
    """GET /api/usage/stats"""

    @pytest.mark.asyncio
    async def test_counts(self, client, db):
        tool = await seed_tool(db)
        await client.post("/api/usage/record", json={"toolId": tool.id})
        await client.post("/api/usage/record", json={"toolId": tool.id})

        response = await client.get("/api/usage/stats")

        assert response.status_code == 200
        assert response.json() == {"today": 2, "thisMonth": 2, "total": 2}

    @pytest.mark.asyncio
    async def test_stats_scoped_to_user(self, client, db):
        tool = await seed_tool(db)
        await client.post("/api/usage/record", json={"toolId": tool.id})

        user = await seed_user(db)
        response = await client.get("/api/usage/stats", headers=cookie_header(user.id))
        assert response.json()["total"] == 0
