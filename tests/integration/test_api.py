"""HTTP-level tests for the deliberation API."""

from uuid import uuid4

import pytest


async def _user(client, name):
    response = await client.post("/api/users", json={"display_name": name})
    assert response.status_code == 201
    return response.json()["id"]


async def _open_deliberation(client, members=4, ideas=3):
    """Create a deliberation with ``members`` users (the first is creator) and ``ideas`` ideas."""
    user_ids = [await _user(client, f"member-{i}") for i in range(members)]
    response = await client.post(
        "/api/deliberations",
        json={"creator_id": user_ids[0], "question": "Which park gets the new playground?"},
    )
    assert response.status_code == 201
    deliberation_id = response.json()["id"]

    for user_id in user_ids[1:]:
        joined = await client.post(
            f"/api/deliberations/{deliberation_id}/members", json={"user_id": user_id}
        )
        assert joined.status_code == 201

    idea_ids = []
    for i in range(ideas):
        submitted = await client.post(
            f"/api/deliberations/{deliberation_id}/ideas",
            json={"author_id": user_ids[i % members], "text": f"Park {i}"},
        )
        assert submitted.status_code == 201
        idea_ids.append(submitted.json()["id"])
    return deliberation_id, user_ids, idea_ids


class TestHealth:

    @pytest.mark.asyncio
    async def test_health(self, async_client):
        response = await async_client.get("/health")
        assert response.status_code == 200
        assert response.json() == {"status": "ok", "service": "chant"}


class TestDeliberationEndpoints:

    @pytest.mark.asyncio
    async def test_create_and_fetch(self, async_client):
        deliberation_id, _, idea_ids = await _open_deliberation(async_client)

        response = await async_client.get(f"/api/deliberations/{deliberation_id}")
        assert response.status_code == 200
        body = response.json()
        assert body["phase"] == "SUBMISSION"
        assert body["champion_id"] is None

        ideas = await async_client.get(f"/api/deliberations/{deliberation_id}/ideas")
        assert sorted(i["id"] for i in ideas.json()) == sorted(idea_ids)
        assert {i["status"] for i in ideas.json()} == {"SUBMITTED"}

    @pytest.mark.asyncio
    async def test_unknown_deliberation_is_404(self, async_client):
        response = await async_client.get(f"/api/deliberations/{uuid4()}")
        assert response.status_code == 404
        assert response.json()["detail"]["title"] == "Deliberation Not Found"

    @pytest.mark.asyncio
    async def test_blank_question_rejected(self, async_client):
        creator = await _user(async_client, "creator")
        response = await async_client.post(
            "/api/deliberations", json={"creator_id": creator, "question": ""}
        )
        assert response.status_code == 422

    @pytest.mark.asyncio
    async def test_start_voting_twice_conflicts(self, async_client):
        deliberation_id, _, _ = await _open_deliberation(async_client)

        first = await async_client.post(f"/api/deliberations/{deliberation_id}/start-voting")
        assert first.status_code == 200
        assert first.json()["reason"] == "VOTING_STARTED"
        assert first.json()["cells_created"] == 1

        second = await async_client.post(f"/api/deliberations/{deliberation_id}/start-voting")
        assert second.status_code == 409

        submit = await async_client.post(
            f"/api/deliberations/{deliberation_id}/ideas",
            json={"author_id": str(uuid4()), "text": "Too late"},
        )
        assert submit.status_code == 409


class TestVotingEndpoints:

    @pytest.mark.asyncio
    async def test_unanimous_cell_crowns_champion(self, async_client):
        deliberation_id, user_ids, idea_ids = await _open_deliberation(async_client)
        await async_client.post(f"/api/deliberations/{deliberation_id}/start-voting")
        cells = (await async_client.get(f"/api/deliberations/{deliberation_id}/cells")).json()
        assert len(cells) == 1
        cell_id = cells[0]["id"]

        for user_id in user_ids:
            receipt = await async_client.post(
                f"/api/cells/{cell_id}/votes",
                json={
                    "user_id": user_id,
                    "allocations": [{"idea_id": idea_ids[1], "points": 10}],
                },
            )
            assert receipt.status_code == 200

        assert receipt.json()["cell_completed"]
        status = (await async_client.get(f"/api/deliberations/{deliberation_id}")).json()
        assert status["phase"] == "COMPLETED"
        assert status["champion_id"] == idea_ids[1]

    @pytest.mark.asyncio
    async def test_outsider_vote_forbidden(self, async_client):
        deliberation_id, _, idea_ids = await _open_deliberation(async_client)
        await async_client.post(f"/api/deliberations/{deliberation_id}/start-voting")
        cell_id = (await async_client.get(f"/api/deliberations/{deliberation_id}/cells")).json()[0]["id"]
        outsider = await _user(async_client, "outsider")

        response = await async_client.post(
            f"/api/cells/{cell_id}/votes",
            json={"user_id": outsider, "allocations": [{"idea_id": idea_ids[0], "points": 10}]},
        )
        assert response.status_code == 403

    @pytest.mark.asyncio
    async def test_short_ballot_rejected(self, async_client):
        deliberation_id, user_ids, idea_ids = await _open_deliberation(async_client)
        await async_client.post(f"/api/deliberations/{deliberation_id}/start-voting")
        cell_id = (await async_client.get(f"/api/deliberations/{deliberation_id}/cells")).json()[0]["id"]

        response = await async_client.post(
            f"/api/cells/{cell_id}/votes",
            json={"user_id": user_ids[0], "allocations": [{"idea_id": idea_ids[0], "points": 7}]},
        )
        assert response.status_code == 400

    @pytest.mark.asyncio
    async def test_force_complete_is_idempotent(self, async_client):
        deliberation_id, _, _ = await _open_deliberation(async_client)
        await async_client.post(f"/api/deliberations/{deliberation_id}/start-voting")
        cell_id = (await async_client.get(f"/api/deliberations/{deliberation_id}/cells")).json()[0]["id"]

        first = await async_client.post(f"/api/cells/{cell_id}/complete")
        second = await async_client.post(f"/api/cells/{cell_id}/complete")

        assert first.status_code == 200
        assert first.json() is not None
        assert second.json() is None
        cell = (await async_client.get(f"/api/cells/{cell_id}")).json()
        assert cell["status"] == "COMPLETED"
        assert cell["completed_by_timeout"]


class TestCommentEndpoints:

    @pytest.mark.asyncio
    async def test_post_list_and_upvote(self, async_client):
        deliberation_id, user_ids, idea_ids = await _open_deliberation(async_client)
        await async_client.post(f"/api/deliberations/{deliberation_id}/start-voting")
        cell_id = (await async_client.get(f"/api/deliberations/{deliberation_id}/cells")).json()[0]["id"]

        posted = await async_client.post(
            f"/api/cells/{cell_id}/comments",
            json={"user_id": user_ids[0], "text": "Shade matters in July", "idea_id": idea_ids[0]},
        )
        assert posted.status_code == 201
        comment_id = posted.json()["id"]

        listed = await async_client.get(f"/api/cells/{cell_id}/comments")
        assert [c["id"] for c in listed.json()] == [comment_id]

        upvoted = await async_client.post(
            f"/api/comments/{comment_id}/upvote", json={"user_id": user_ids[1]}
        )
        assert upvoted.status_code == 200
        assert upvoted.json()["upvoted"]
        assert upvoted.json()["upvote_count"] == 1

        removed = await async_client.post(
            f"/api/comments/{comment_id}/upvote", json={"user_id": user_ids[1]}
        )
        assert not removed.json()["upvoted"]
        assert removed.json()["upvote_count"] == 0

    @pytest.mark.asyncio
    async def test_upvote_unknown_comment(self, async_client):
        response = await async_client.post(
            f"/api/comments/{uuid4()}/upvote", json={"user_id": str(uuid4())}
        )
        assert response.status_code == 404


class TestTimerEndpoint:

    @pytest.mark.asyncio
    async def test_sweep_on_quiet_database(self, async_client):
        response = await async_client.post("/api/timers/sweep")
        assert response.status_code == 200
        assert response.json() == {
            "submissions": [],
            "discussions": [],
            "tiers": [],
            "accumulations": [],
        }
