"""Integration tests for the count history endpoints.

- GET /api/counts - caller's counts, ascending by timestamp, camelCase
- DELETE /api/counts - bulk delete scoped to the caller
"""

from datetime import UTC, datetime, timedelta

import pytest

from flockcount.models.count import Count


async def add_count(uow_factory, **fields) -> Count:
    async with await uow_factory() as uow:
        return await uow.counts.add(Count(**fields))


@pytest.mark.asyncio
class TestListCounts:
    async def test_requires_authentication(self, test_client):
        response = await test_client.get("/api/counts")
        assert response.status_code == 401

    async def test_unknown_user_is_rejected(self, test_client, auth):
        auth.user_id = 424242
        response = await test_client.get("/api/counts")
        assert response.status_code == 401

    async def test_inactive_user_is_rejected(self, test_client, auth, users, uow_factory):
        async with await uow_factory() as uow:
            bob = await uow.users.get_by_id(users["bob"].id)
            bob.is_active = False
            uow.session.add(bob)

        auth.user_id = users["bob"].id
        response = await test_client.get("/api/counts")
        assert response.status_code == 401

    async def test_lists_only_callers_counts_oldest_first(self, test_client, auth, users, uow_factory):
        alice, bob = users["alice"], users["bob"]
        base = datetime(2026, 4, 1, 9, 30, tzinfo=UTC)
        await add_count(uow_factory, user_id=alice.id, count=5, timestamp=base + timedelta(days=1))
        await add_count(
            uow_factory,
            user_id=alice.id,
            count=8,
            timestamp=base,
            breed="Silkie",
            confidence=70,
            image_url="data:image/png;base64,AA==",
            labels=["hens"],
        )
        await add_count(uow_factory, user_id=bob.id, count=99, timestamp=base)

        auth.user_id = alice.id
        response = await test_client.get("/api/counts")

        assert response.status_code == 200
        counts = response.json()["counts"]
        assert [c["count"] for c in counts] == [8, 5]
        first = counts[0]
        assert first["userId"] == alice.id
        assert first["imageUrl"] == "data:image/png;base64,AA=="
        assert first["breed"] == "Silkie"
        assert first["confidence"] == 70
        assert first["labels"] == ["hens"]
        assert isinstance(first["id"], int)


@pytest.mark.asyncio
class TestDeleteCounts:
    async def test_cross_user_ids_are_silently_filtered(self, test_client, auth, users, uow_factory):
        """User A deleting [own, B's] removes only A's record and succeeds."""
        alice, bob = users["alice"], users["bob"]
        own = await add_count(uow_factory, user_id=alice.id, count=4)
        foreign = await add_count(uow_factory, user_id=bob.id, count=6)

        auth.user_id = alice.id
        response = await test_client.request("DELETE", "/api/counts", json={"countIds": [own.id, foreign.id]})

        assert response.status_code == 204
        async with await uow_factory() as uow:
            assert await uow.counts.get_by_id(own.id) is None
            assert await uow.counts.get_by_id(foreign.id) is not None

        auth.user_id = bob.id
        response = await test_client.get("/api/counts")
        assert [c["id"] for c in response.json()["counts"]] == [foreign.id]

    async def test_unknown_ids_are_ignored(self, test_client, auth, users):
        auth.user_id = users["alice"].id
        response = await test_client.request("DELETE", "/api/counts", json={"countIds": [12345]})
        assert response.status_code == 204

    async def test_requires_authentication(self, test_client):
        response = await test_client.request("DELETE", "/api/counts", json={"countIds": [1]})
        assert response.status_code == 401

    async def test_rejects_malformed_body(self, test_client, auth, users):
        auth.user_id = users["alice"].id
        response = await test_client.request("DELETE", "/api/counts", json={"countIds": "all"})
        assert response.status_code == 422
