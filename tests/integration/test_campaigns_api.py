import pytest
from fastapi.testclient import TestClient

from adchat.campaigns.naming import CampaignNameAllocator
from adchat.db.connection import get_conn
from adchat.db.queries import insert_campaign
from adchat.main import app
from adchat.routes.api.campaigns import get_allocator

USER = {"X-User-Id": "user_1"}


class ScriptedNamer:
    def __init__(self, names: list[str]) -> None:
        self.names = names

    async def propose(self, source: str, avoid: list[str]) -> str:
        return self.names.pop(0)


@pytest.fixture
def client():
    with TestClient(app) as test_client:
        yield test_client
    app.dependency_overrides.clear()


def test_allocates_name_after_collision(client: TestClient) -> None:
    with get_conn() as conn:
        insert_campaign(conn, "user_0", "Sunset Drive")
    app.dependency_overrides[get_allocator] = lambda: CampaignNameAllocator(
        ScriptedNamer(["Sunset Drive", "Maple Ridge"]), attempts=3
    )

    response = client.post(
        "/api/v1/campaigns", json={"prompt": "landscaping", "goalType": "calls"}, headers=USER
    )

    assert response.status_code == 201
    payload = response.json()
    assert payload["campaign"]["name"] == "Maple Ridge"
    assert payload["campaign"]["initialGoal"] == "calls"
    assert payload["attempts"] == 2
    conversation = client.get(
        f"/api/v1/conversations/{payload['conversationId']}", headers=USER
    ).json()
    assert conversation["campaignId"] == payload["campaign"]["id"]
    assert conversation["title"] == "Chat: Maple Ridge"


def test_exhaustion_is_conflict(client: TestClient) -> None:
    with get_conn() as conn:
        insert_campaign(conn, "user_0", "Sunset Drive")
    app.dependency_overrides[get_allocator] = lambda: CampaignNameAllocator(
        ScriptedNamer(["Sunset Drive"]), attempts=1
    )
    response = client.post("/api/v1/campaigns", json={"prompt": "x"}, headers=USER)
    assert response.status_code == 409
    assert response.json()["error"] == "name_conflict"
    assert response.json()["avoided"] == ["Sunset Drive"]


def test_manual_name_conflict(client: TestClient) -> None:
    first = client.post("/api/v1/campaigns", json={"name": "Spring Sale"}, headers=USER)
    assert first.status_code == 201
    second = client.post("/api/v1/campaigns", json={"name": "Spring Sale"}, headers=USER)
    assert second.status_code == 409


def test_default_wordlist_allocator(client: TestClient) -> None:
    response = client.post("/api/v1/campaigns", json={"prompt": "bakery"}, headers=USER)
    assert response.status_code == 201
    assert len(response.json()["campaign"]["name"].split()) == 2
