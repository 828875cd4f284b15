"""Tests for Event endpoints.

Covers:
- Creation and input validation
- Join / leave rules
- Creator edits guarded by version
- Creator-only cancellation
- List filters and per-user stats (with degraded data)
- Revalidation on access
"""
from datetime import datetime, timedelta, timezone

from sqlalchemy.exc import OperationalError

from matchmaker.services import event_service
from tests.conftest import api_day, create_test_event, create_test_user


def _future(days=7):
    return (datetime.now(timezone.utc) + timedelta(days=days)).isoformat()


def _setup(client):
    """Create a creator, a second user and an event owned by the creator."""
    creator = create_test_user(client, name="Creator")
    other = create_test_user(client, name="Other User")
    event = create_test_event(client, creator["user_id"])
    return creator, other, event


class TestEventCreate:
    """Event creation and initial state."""

    def test_create_event(self, client):
        creator = create_test_user(client, name="Creator")
        data = create_test_event(client, creator["user_id"], name="Dinner", required_slots=2)
        assert data["name"] == "Dinner"
        assert data["status"] == "open"
        assert data["version"] == 1
        assert data["date_mode"] == "consecutive"
        assert [p["user_id"] for p in data["participants"]] == [creator["user_id"]]

    def test_matching_policy_is_stored(self, client):
        creator = create_test_user(client, name="Creator")
        data = create_test_event(
            client, creator["user_id"],
            required_slots=3,
            matching_policy={"allow_partial_matching": True, "minimum_time_slots": 2},
        )
        assert data["matching_policy"]["allow_partial_matching"] is True
        assert data["matching_policy"]["minimum_time_slots"] == 2

    def test_unknown_creator(self, client):
        resp = client.post("/api/events/", json={
            "creator_id": "00000000-0000-0000-0000-000000000000",
            "name": "Ghost",
            "deadline": _future(),
        })
        assert resp.status_code == 404

    def test_validation_errors(self, client):
        creator = create_test_user(client, name="Creator")
        base = {"creator_id": creator["user_id"], "name": "Bad", "deadline": _future()}
        invalid = [
            {"deadline": _future(days=-1)},
            {"required_slots": 0},
            {"min_participants": 3, "max_participants": 2},
            {"required_slots": 2, "minimum_consecutive": 3},
            {"date_mode": "within_period"},
            {"date_mode": "within_period", "period_start": api_day(5).isoformat(), "period_end": api_day(2).isoformat()},
            {"matching_policy": {"minimum_time_slots": 5}},
            {"matching_policy": {"participant_selection": "lottery"}},
            {"matching_policy": {"unknown_flag": True}},
            {"confirmation_mode": "minimum_count"},
            {"time_slot_restriction": "night"},
        ]
        for overrides in invalid:
            resp = client.post("/api/events/", json={**base, **overrides})
            assert resp.status_code == 422, overrides

    def test_offset_deadline_is_kept_as_the_same_instant(self, client):
        creator, other, _ = _setup(client)
        eastern = timezone(timedelta(hours=-5))
        deadline = datetime.now(eastern) + timedelta(hours=2)
        event = create_test_event(client, creator["user_id"], deadline=deadline.isoformat())

        resp = client.post(f"/api/events/{event['event_id']}/join", json={"user_id": other["user_id"]})

        assert resp.status_code == 200, resp.text
        assert resp.json()["status"] == "open"
        stored = datetime.fromisoformat(resp.json()["deadline"]).replace(tzinfo=timezone.utc)
        assert abs(stored - deadline) < timedelta(seconds=1)

    def test_get_event_not_found(self, client):
        assert client.get("/api/events/missing").status_code == 404


class TestParticipation:
    """Joining and leaving open events."""

    def test_join(self, client):
        creator, other, event = _setup(client)
        resp = client.post(f"/api/events/{event['event_id']}/join", json={
            "user_id": other["user_id"], "priority": "high",
        })
        assert resp.status_code == 200
        participants = {p["user_id"]: p["priority"] for p in resp.json()["participants"]}
        assert participants[other["user_id"]] == "high"

    def test_creator_cannot_join_again(self, client):
        creator, _, event = _setup(client)
        resp = client.post(f"/api/events/{event['event_id']}/join", json={"user_id": creator["user_id"]})
        assert resp.status_code == 400

    def test_duplicate_join(self, client):
        _, other, event = _setup(client)
        client.post(f"/api/events/{event['event_id']}/join", json={"user_id": other["user_id"]})
        resp = client.post(f"/api/events/{event['event_id']}/join", json={"user_id": other["user_id"]})
        assert resp.status_code == 409

    def test_join_beyond_max_participants_is_pooled(self, client):
        creator = create_test_user(client, name="Creator")
        event = create_test_event(client, creator["user_id"], max_participants=2)
        for name in ("B", "C"):
            user = create_test_user(client, name=name)
            resp = client.post(f"/api/events/{event['event_id']}/join", json={"user_id": user["user_id"]})
            assert resp.status_code == 200
        assert len(client.get(f"/api/events/{event['event_id']}").json()["participants"]) == 3

    def test_join_cancelled_event(self, client):
        creator, other, event = _setup(client)
        client.post(f"/api/events/{event['event_id']}/cancel", json={"user_id": creator["user_id"]})
        resp = client.post(f"/api/events/{event['event_id']}/join", json={"user_id": other["user_id"]})
        assert resp.status_code == 400

    def test_leave(self, client):
        _, other, event = _setup(client)
        client.post(f"/api/events/{event['event_id']}/join", json={"user_id": other["user_id"]})
        resp = client.post(f"/api/events/{event['event_id']}/leave", json={"user_id": other["user_id"]})
        assert resp.status_code == 200
        assert other["user_id"] not in [p["user_id"] for p in resp.json()["participants"]]

    def test_creator_cannot_leave(self, client):
        creator, _, event = _setup(client)
        resp = client.post(f"/api/events/{event['event_id']}/leave", json={"user_id": creator["user_id"]})
        assert resp.status_code == 400

    def test_leave_when_not_joined(self, client):
        _, other, event = _setup(client)
        resp = client.post(f"/api/events/{event['event_id']}/leave", json={"user_id": other["user_id"]})
        assert resp.status_code == 404


class TestEventUpdate:
    """Creator edits of open events."""

    def _put(self, client, event, user, **fields):
        body = {"user_id": user["user_id"], "version": fields.pop("version", event["version"]), **fields}
        return client.put(f"/api/events/{event['event_id']}", json=body)

    def test_creator_edits(self, client):
        creator, _, event = _setup(client)
        resp = self._put(client, event, creator, name="Brunch", required_slots=2, max_participants=4)
        assert resp.status_code == 200, resp.text
        data = resp.json()
        assert data["name"] == "Brunch"
        assert data["required_slots"] == 2
        assert data["max_participants"] == 4
        assert data["description"] == event["description"]
        assert data["version"] == 2

    def test_non_creator_forbidden(self, client):
        _, other, event = _setup(client)
        assert self._put(client, event, other, name="Mine now").status_code == 403

    def test_stale_version_conflicts(self, client):
        creator, _, event = _setup(client)
        assert self._put(client, event, creator, name="First").status_code == 200
        resp = self._put(client, event, creator, name="Second")
        assert resp.status_code == 409
        assert client.get(f"/api/events/{event['event_id']}").json()["name"] == "First"

    def test_past_deadline_rejected(self, client):
        creator, _, event = _setup(client)
        assert self._put(client, event, creator, deadline=_future(days=-1)).status_code == 422

    def test_period_order_rejected(self, client):
        creator, _, event = _setup(client)
        resp = self._put(
            client, event, creator,
            period_start=api_day(5).isoformat(), period_end=api_day(2).isoformat(),
        )
        assert resp.status_code == 422

    def test_rules_checked_against_stored_fields(self, client):
        creator = create_test_user(client, name="Creator")
        event = create_test_event(client, creator["user_id"], required_slots=3, minimum_consecutive=3)
        resp = self._put(client, event, creator, required_slots=2)
        assert resp.status_code == 400
        assert resp.json()["detail"] == "minimum_consecutive cannot exceed required_slots"

    def test_required_field_cannot_be_cleared(self, client):
        creator, _, event = _setup(client)
        assert self._put(client, event, creator, name=None).status_code == 400

    def test_only_open_events_are_editable(self, client):
        creator, _, event = _setup(client)
        cancelled = client.post(f"/api/events/{event['event_id']}/cancel", json={"user_id": creator["user_id"]})
        resp = self._put(client, event, creator, version=cancelled.json()["version"], name="Too late")
        assert resp.status_code == 400


class TestEventCancel:
    """Creator-only cancellation."""

    def test_creator_cancels(self, client):
        creator, _, event = _setup(client)
        resp = client.post(f"/api/events/{event['event_id']}/cancel", json={
            "user_id": creator["user_id"], "reason": "Venue closed",
        })
        assert resp.status_code == 200
        assert resp.json()["status"] == "cancelled"
        assert resp.json()["version"] == 2

    def test_non_creator_forbidden(self, client):
        _, other, event = _setup(client)
        resp = client.post(f"/api/events/{event['event_id']}/cancel", json={"user_id": other["user_id"]})
        assert resp.status_code == 403

    def test_cancel_twice(self, client):
        creator, _, event = _setup(client)
        client.post(f"/api/events/{event['event_id']}/cancel", json={"user_id": creator["user_id"]})
        resp = client.post(f"/api/events/{event['event_id']}/cancel", json={"user_id": creator["user_id"]})
        assert resp.status_code == 400


class TestEventList:
    """List with filters."""

    def test_filters(self, client):
        creator, other, event = _setup(client)
        mine = create_test_event(client, other["user_id"], name="Other's event")
        client.post(f"/api/events/{event['event_id']}/cancel", json={"user_id": creator["user_id"]})

        by_creator = client.get("/api/events/", params={"creator_id": other["user_id"]}).json()
        assert [e["event_id"] for e in by_creator] == [mine["event_id"]]

        open_events = client.get("/api/events/", params={"status": "open"}).json()
        assert [e["event_id"] for e in open_events] == [mine["event_id"]]

        participating = client.get("/api/events/", params={"participant_id": creator["user_id"]}).json()
        assert [e["event_id"] for e in participating] == [event["event_id"]]

    def test_joinable_by(self, client):
        creator, other, event = _setup(client)
        third = create_test_user(client, name="Third")
        own = create_test_event(client, other["user_id"], name="Other's event")
        closed = create_test_event(client, creator["user_id"], name="Closed")
        client.post(f"/api/events/{closed['event_id']}/cancel", json={"user_id": creator["user_id"]})

        joinable = client.get("/api/events/", params={"joinable_by": other["user_id"]}).json()
        assert [e["event_id"] for e in joinable] == [event["event_id"]]

        client.post(f"/api/events/{event['event_id']}/join", json={"user_id": other["user_id"]})
        assert client.get("/api/events/", params={"joinable_by": other["user_id"]}).json() == []

        for_third = client.get("/api/events/", params={"joinable_by": third["user_id"]}).json()
        assert [e["event_id"] for e in for_third] == [event["event_id"], own["event_id"]]


class TestUserStats:
    """Dashboard counters, including degraded results."""

    def test_counts(self, client):
        creator, other, event = _setup(client)
        create_test_event(client, creator["user_id"], name="Second")
        client.post(f"/api/events/{event['event_id']}/join", json={"user_id": other["user_id"]})

        creator_stats = client.get("/api/events/stats", params={"user_id": creator["user_id"]}).json()
        assert creator_stats == {
            "created_events": 2,
            "participating_events": 0,
            "matched_events": 0,
            "pending_events": 2,
        }
        other_stats = client.get("/api/events/stats", params={"user_id": other["user_id"]}).json()
        assert other_stats["participating_events"] == 1
        assert other_stats["created_events"] == 0

    def test_one_failed_query_degrades_to_zero(self, client, monkeypatch):
        creator, other, event = _setup(client)
        client.post(f"/api/events/{event['event_id']}/join", json={"user_id": other["user_id"]})

        def _fail(db, user_id):
            raise OperationalError("SELECT", {}, Exception("timeout"))

        monkeypatch.setattr(event_service, "get_events_by_participant", _fail)
        resp = client.get("/api/events/stats", params={"user_id": creator["user_id"]})

        assert resp.status_code == 200
        assert resp.json()["created_events"] == 1
        assert resp.json()["participating_events"] == 0

    def test_all_failed_queries_is_an_error(self, client, monkeypatch):
        creator, _, _ = _setup(client)

        def _fail(db, user_id):
            raise OperationalError("SELECT", {}, Exception("connection refused"))

        monkeypatch.setattr(event_service, "get_events_by_creator", _fail)
        monkeypatch.setattr(event_service, "get_events_by_participant", _fail)
        resp = client.get("/api/events/stats", params={"user_id": creator["user_id"]})

        assert resp.status_code == 500
        assert resp.json()["detail"] == "Failed to load event statistics"
        assert "refused" not in resp.text


class TestRevalidateOnAccess:
    """revalidate_on_access re-checks matched slots on read."""

    def test_stale_match_rolled_back_on_read(self, client):
        creator, other, _ = _setup(client)
        event = create_test_event(client, creator["user_id"], matching_policy={"revalidate_on_access": True})
        client.post(f"/api/events/{event['event_id']}/join", json={"user_id": other["user_id"]})
        for user in (creator, other):
            client.put(f"/api/availability/{user['user_id']}", json={
                "dates": [api_day(1).isoformat()], "daytime": True, "evening": True,
            })
        assert client.post(f"/api/matching/{event['event_id']}").json()["status"] == "matched"
        assert client.get(f"/api/events/{event['event_id']}").json()["status"] == "matched"

        client.delete(f"/api/availability/{other['user_id']}/{api_day(1).isoformat()}")

        assert client.get(f"/api/events/{event['event_id']}").json()["status"] == "rolled_back"
