"""Tests for matching endpoints: per-event, batch, global, deadline cron and stats."""
from matchmaker.config import settings
from tests.conftest import api_day, create_test_event, create_test_user


def _available(client, user, offsets, daytime=True, evening=True):
    client.put(f"/api/availability/{user['user_id']}", json={
        "dates": [api_day(o).isoformat() for o in offsets],
        "daytime": daytime,
        "evening": evening,
    })


def _event_with_guest(client, name="Event", **overrides):
    creator = create_test_user(client, name=f"{name} creator")
    guest = create_test_user(client, name=f"{name} guest")
    event = create_test_event(client, creator["user_id"], name=name, **overrides)
    client.post(f"/api/events/{event['event_id']}/join", json={"user_id": guest["user_id"]})
    return creator, guest, event


class TestCheckEvent:
    """POST /api/matching/{event_id}."""

    def test_matched(self, client):
        creator, guest, event = _event_with_guest(client, required_slots=2, min_participants=2)
        _available(client, creator, [1, 2])
        _available(client, guest, [1])

        resp = client.post(f"/api/matching/{event['event_id']}")

        assert resp.status_code == 200
        data = resp.json()
        assert data["is_matched"] is True
        assert data["status"] == "matched"
        assert data["reason"] == "Successfully matched"
        assert data["matched_slots"] == [
            {"date": api_day(1).isoformat(), "time_slot": "daytime"},
            {"date": api_day(1).isoformat(), "time_slot": "evening"},
        ]

    def test_not_matched(self, client):
        creator, guest, event = _event_with_guest(client)
        _available(client, creator, [1])

        data = client.post(f"/api/matching/{event['event_id']}").json()

        assert data["is_matched"] is False
        assert data["status"] == "open"
        assert "Not matched" in data["reason"]

    def test_unknown_event(self, client):
        assert client.post("/api/matching/missing").status_code == 404

    def test_suggestions_then_selection(self, client):
        creator, guest, event = _event_with_guest(client, matching_policy={"suggest_multiple_options": True})
        _available(client, creator, [1, 2], evening=False)
        _available(client, guest, [1, 2], evening=False)

        data = client.post(f"/api/matching/{event['event_id']}").json()
        assert data["status"] == "open"
        assert len(data["suggestions"]) == 2

        resp = client.post(f"/api/events/{event['event_id']}/select-suggestion", json={
            "user_id": creator["user_id"], "index": 1,
        })
        assert resp.status_code == 200
        assert resp.json()["matched_slots"] == [{"date": api_day(2).isoformat(), "time_slot": "daytime"}]
        assert client.get(f"/api/events/{event['event_id']}").json()["status"] == "matched"

    def test_confirmation_flow(self, client):
        creator, guest, event = _event_with_guest(
            client, require_participant_confirmation=True, confirmation_mode="all",
        )
        _available(client, creator, [1])
        _available(client, guest, [1])

        assert client.post(f"/api/matching/{event['event_id']}").json()["status"] == "pending_confirmation"

        resp = client.post(f"/api/events/{event['event_id']}/confirm", json={"user_id": guest["user_id"]})
        assert resp.status_code == 200
        assert resp.json()["confirmed"] is True
        assert resp.json()["status"] == "confirmed"


class TestBatchAndGlobal:
    """POST /api/matching/ and /api/matching/global."""

    def test_batch_summary(self, client):
        creator, guest, matched = _event_with_guest(client, name="Matched")
        _available(client, creator, [1])
        _available(client, guest, [1])
        _event_with_guest(client, name="Pending")

        data = client.post("/api/matching/").json()

        assert data["summary"] == {"total_checked": 2, "matched": 1, "pending": 1, "failed": 0}
        assert [r["event_id"] for r in data["results"] if r["is_matched"]] == [matched["event_id"]]

    def test_global_avoids_double_booking(self, client):
        first_creator, first_guest, first = _event_with_guest(client, name="First")
        second_creator, second_guest, second = _event_with_guest(client, name="Second")
        for user in (first_creator, first_guest, second_creator, second_guest):
            _available(client, user, [1])

        data = client.post("/api/matching/global").json()

        slots = [tuple(sorted(s.items())) for r in data["results"] for s in r["matched_slots"]]
        assert len(slots) == len(set(slots)) == 2
        assert data["summary"]["matched"] == 2

    def test_stats(self, client):
        creator, guest, event = _event_with_guest(client)
        _available(client, creator, [1])
        _available(client, guest, [1])
        client.post(f"/api/matching/{event['event_id']}")
        _event_with_guest(client, name="Other")

        data = client.get("/api/matching/").json()

        assert data["total"] == 2
        assert data["matched"] == 1
        assert data["open"] == 1


class TestCheckDeadlines:
    """Cron endpoint and its bearer secret."""

    def test_nothing_overdue(self, client):
        _event_with_guest(client)
        resp = client.get("/api/matching/check-deadlines")
        assert resp.status_code == 200
        assert resp.json()["total_processed"] == 0

    def test_secret_required_when_configured(self, client, monkeypatch):
        monkeypatch.setattr(settings, "CRON_SECRET", "s3cret")
        assert client.post("/api/matching/check-deadlines").status_code == 401
        assert client.post(
            "/api/matching/check-deadlines", headers={"Authorization": "Bearer wrong"},
        ).status_code == 401
        resp = client.post("/api/matching/check-deadlines", headers={"Authorization": "Bearer s3cret"})
        assert resp.status_code == 200
