import asyncio
import json

import pytest
from fastapi.testclient import TestClient

from sqlalchemy import text

from daeli.api.main import active_connections, app, broadcast_message, get_planner
from daeli.database.connection import DatabaseManager
from daeli.database.sql_store import SqlAlchemyStore
from daeli.database.store import MemoryStore
from daeli.services.planner import PlannerService

client = TestClient(app)

START = "2024-06-01T10:00:00Z"
END = "2024-06-01T12:00:00Z"


class FakeConnection:
    """Stands in for a connected WebSocket client"""

    def __init__(self, fail=False):
        self.fail = fail
        self.messages = []

    async def send_text(self, text):
        if self.fail:
            raise RuntimeError("connection dropped")
        self.messages.append(json.loads(text))


@pytest.fixture(autouse=True)
def planner():
    """Fresh in-memory planner behind the API for each test"""
    planner = PlannerService(MemoryStore())
    app.dependency_overrides[get_planner] = lambda: planner
    try:
        yield planner
    finally:
        app.dependency_overrides.clear()
        active_connections.clear()


def create_idea(**fields):
    body = {"title": "Picnic", "tags": ["outdoor"]}
    body.update(fields)
    response = client.post("/ideas", json=body)
    assert response.status_code == 201
    return response.json()


def create_suggestion(idea_id, **fields):
    body = {"ideaId": idea_id, "startUtc": START, "endUtc": END}
    body.update(fields)
    response = client.post("/suggestions", json=body)
    assert response.status_code == 201
    return response.json()


def test_health():
    assert client.get("/health").json() == {"status": "healthy"}


def test_end_to_end_flow():
    idea = create_idea()
    suggestion = create_suggestion(idea["id"])
    assert suggestion["tags"] == ["outdoor"]
    assert suggestion["status"] == "pending"
    assert suggestion["votes"] == {}

    client.post(f"/suggestions/{suggestion['id']}/votes", json={"partnerId": "A", "vote": "up"})
    voted = client.post(f"/suggestions/{suggestion['id']}/votes", json={"partnerId": "B", "vote": "up"}).json()
    assert voted["upCount"] == 2
    assert voted["downCount"] == 0

    accepted = client.post(f"/suggestions/{suggestion['id']}/accept", json={"acceptedBy": "A"})
    assert accepted.status_code == 200
    body = accepted.json()
    assert body["created"] is True
    assert body["suggestion"]["status"] == "accepted"
    assert body["event"]["suggestionId"] == suggestion["id"]
    assert body["event"]["title"] == "Picnic"
    assert body["event"]["startUtc"] == START

    again = client.post(f"/suggestions/{suggestion['id']}/accept").json()
    assert again["created"] is False
    assert again["event"]["id"] == body["event"]["id"]

    events = client.get("/events").json()
    assert len(events) == 1
    assert events[0]["title"] == "Picnic"

    display = client.get(f"/suggestions/{suggestion['id']}/display").json()
    assert display["title"] == "Picnic"
    assert display["start"] == START


def test_validation_errors_are_structured():
    idea = create_idea()
    response = client.post("/suggestions", json={"ideaId": idea["id"], "startUtc": START, "endUtc": START})
    assert response.status_code == 422
    body = response.json()
    assert body["success"] is False
    assert body["error"] == "validation_error"
    assert client.get("/suggestions").json() == []

    response = client.post("/ideas", json={"title": ""})
    assert response.status_code == 422


def test_not_found_is_structured():
    response = client.get("/ideas/missing")
    assert response.status_code == 404
    assert response.json()["error"] == "not_found"
    assert "not found" in response.json()["message"].lower()

    assert client.post("/suggestions/missing/accept").status_code == 404
    assert client.delete("/events/missing").status_code == 404


def test_cancelled_suggestion_cannot_be_accepted():
    idea = create_idea()
    suggestion = create_suggestion(idea["id"])
    cancelled = client.post(f"/suggestions/{suggestion['id']}/cancel").json()
    assert cancelled["status"] == "cancelled"

    response = client.post(f"/suggestions/{suggestion['id']}/accept")
    assert response.status_code == 409
    assert response.json()["error"] == "conflict"


def test_idea_crud():
    idea = create_idea(location="Riverside Park")
    updated = client.put(f"/ideas/{idea['id']}", json={"title": "Sunset picnic"}).json()
    assert updated["title"] == "Sunset picnic"
    assert updated["location"] == "Riverside Park"
    assert client.get(f"/ideas/{idea['id']}").json()["title"] == "Sunset picnic"

    assert client.delete(f"/ideas/{idea['id']}").json()["success"] is True
    assert client.get("/ideas").json() == []
    assert client.delete(f"/ideas/{idea['id']}").status_code == 404


def test_ai_ideas():
    response = client.post("/ideas/ai", json={"coupleToken": "c1"})
    assert response.status_code == 201
    ideas = response.json()
    assert len(ideas) == 3
    assert {i["source"] for i in ideas} == {"ai"}
    assert len(client.get("/ideas", params={"coupleToken": "c1"}).json()) == 3
    assert client.get("/ideas", params={"coupleToken": "c2"}).json() == []


def test_suggestion_update_and_filters():
    idea = create_idea()
    suggestion = create_suggestion(idea["id"])
    updated = client.put(f"/suggestions/{suggestion['id']}", json={"titleOverride": "Rooftop picnic"}).json()
    assert updated["titleOverride"] == "Rooftop picnic"
    assert client.get(f"/suggestions/{suggestion['id']}/display").json()["title"] == "Rooftop picnic"

    response = client.put(f"/suggestions/{suggestion['id']}", json={"status": "accepted"})
    assert response.status_code == 422

    assert client.get("/suggestions", params={"status": "pending"}).json()[0]["id"] == suggestion["id"]
    assert client.get("/suggestions", params={"status": "accepted"}).json() == []


def test_dangling_idea_still_displays():
    idea = create_idea()
    suggestion = create_suggestion(idea["id"])
    client.delete(f"/ideas/{idea['id']}")
    display = client.get(f"/suggestions/{suggestion['id']}/display")
    assert display.status_code == 200
    assert display.json()["title"] == "(Idea)"


def test_direct_event_creation():
    idea = create_idea()
    suggestion = create_suggestion(idea["id"])
    response = client.post("/events", json={"suggestionId": suggestion["id"]})
    assert response.status_code == 201
    event = response.json()
    assert event["tags"] == ["outdoor"]
    assert client.get(f"/events/{event['id']}").json()["title"] == "Picnic"


def test_invalid_vote():
    idea = create_idea()
    suggestion = create_suggestion(idea["id"])
    response = client.post(f"/suggestions/{suggestion['id']}/votes", json={"partnerId": "A", "vote": "meh"})
    assert response.status_code == 422


def test_vote_and_accept_are_broadcast():
    listener = FakeConnection()
    active_connections.add(listener)

    idea = create_idea()
    suggestion = create_suggestion(idea["id"])
    client.post(f"/suggestions/{suggestion['id']}/votes", json={"partnerId": "A", "vote": "up"})
    client.post(f"/suggestions/{suggestion['id']}/accept")
    client.post(f"/suggestions/{suggestion['id']}/accept")

    assert [m["type"] for m in listener.messages] == ["vote_cast", "suggestion_accepted"]
    assert listener.messages[0]["data"]["upCount"] == 1


@pytest.mark.asyncio
async def test_broadcast_drops_broken_connections():
    healthy, broken = FakeConnection(), FakeConnection(fail=True)
    active_connections.update({healthy, broken})

    await broadcast_message({"type": "vote_cast"})

    assert healthy.messages == [{"type": "vote_cast"}]
    assert broken not in active_connections
    assert healthy in active_connections


def test_websocket_ping():
    with client.websocket_connect("/ws") as websocket:
        websocket.send_text(json.dumps({"type": "ping"}))
        message = websocket.receive_json()
        assert message["type"] == "pong"


def test_event_update():
    idea = create_idea()
    suggestion = create_suggestion(idea["id"])
    event = client.post(f"/suggestions/{suggestion['id']}/accept").json()["event"]
    assert event["isSurprise"] is False

    response = client.put(f"/events/{event['id']}", json={"isSurprise": True, "tags": ["anniversary"]})
    assert response.status_code == 200
    body = response.json()
    assert body["isSurprise"] is True
    assert body["tags"] == ["anniversary"]
    assert body["title"] == "Picnic"
    assert body["updatedAt"].endswith("Z")

    response = client.put(f"/events/{event['id']}", json={"suggestionId": "other"})
    assert response.status_code == 422
    assert client.put("/events/missing", json={"isSurprise": True}).status_code == 404


def accepted_event(idea_id, start, end):
    suggestion = create_suggestion(idea_id, startUtc=start, endUtc=end)
    return client.post(f"/suggestions/{suggestion['id']}/accept").json()["event"]


def test_events_time_window_and_upcoming():
    idea = create_idea()
    past = accepted_event(idea["id"], "2020-01-01T10:00:00Z", "2020-01-01T11:00:00Z")
    later = accepted_event(idea["id"], "2999-02-01T10:00:00Z", "2999-02-01T11:00:00Z")
    sooner = accepted_event(idea["id"], "2999-01-01T10:00:00Z", "2999-01-01T11:00:00Z")

    everything = client.get("/events").json()
    assert [e["id"] for e in everything] == [past["id"], later["id"], sooner["id"]]

    window = client.get("/events", params={"start": "2019-12-31T00:00:00Z", "end": "2999-01-15T00:00:00Z"}).json()
    assert [e["id"] for e in window] == [past["id"], sooner["id"]]

    upcoming = client.get("/events/upcoming").json()
    assert [e["id"] for e in upcoming] == [sooner["id"], later["id"]]
    assert [e["id"] for e in client.get("/events/upcoming", params={"limit": 1}).json()] == [sooner["id"]]

    response = client.get("/events", params={"start": "2999-01-02T00:00:00Z", "end": "2999-01-01T00:00:00Z"})
    assert response.status_code == 422
    assert response.json()["error"] == "validation_error"


def test_store_failure_returns_503(tmp_path):
    store = SqlAlchemyStore(DatabaseManager(f"sqlite:///{tmp_path / 'broken.db'}"))
    app.dependency_overrides[get_planner] = lambda: PlannerService(store)
    with store.database_manager.engine.begin() as conn:
        conn.execute(text("DROP TABLE records"))
        conn.execute(text("DROP TABLE record_index"))
    try:
        response = client.get("/ideas")
        assert response.status_code == 503
        body = response.json()
        assert body["success"] is False
        assert body["error"] == "store_failure"

        response = client.post("/ideas", json={"title": "Picnic"})
        assert response.status_code == 503
    finally:
        store.close()


class LoopWatchingStore(MemoryStore):
    """Counts store calls made on the event loop thread"""

    def __init__(self):
        super().__init__()
        self.calls_on_loop = 0

    def _note(self):
        try:
            asyncio.get_running_loop()
        except RuntimeError:
            return
        self.calls_on_loop += 1

    def get(self, kind, record_id):
        self._note()
        return super().get(kind, record_id)

    def update(self, kind, record_id, mutate):
        self._note()
        return super().update(kind, record_id, mutate)


def test_store_calls_stay_off_the_event_loop():
    store = LoopWatchingStore()
    app.dependency_overrides[get_planner] = lambda: PlannerService(store)

    idea = create_idea()
    suggestion = create_suggestion(idea["id"])
    client.post(f"/suggestions/{suggestion['id']}/votes", json={"partnerId": "A", "vote": "up"})
    client.post(f"/suggestions/{suggestion['id']}/accept")
    other = create_suggestion(idea["id"])
    client.post(f"/suggestions/{other['id']}/cancel")
    client.get("/events")
    client.get(f"/suggestions/{suggestion['id']}/display")

    assert store.calls_on_loop == 0
