"""Tests for the HTTP API (FastAPI TestClient over a tmp data dir)."""

from pathlib import Path

import pytest
from fastapi.testclient import TestClient

from conftest import TableEmbedder
from ludic_reader.app import create_app
from ludic_reader.config import Settings
from ludic_reader.embeddings import EmbeddingError, HashEmbedder
from ludic_reader.engine import initialize_state
from ludic_reader.models import Book, Chapter, GameState
from ludic_reader.storage import Storage

BOOK_ID = "book-1"
GAME = f"/api/books/{BOOK_ID}/games/master"


class BrokenEmbedder(TableEmbedder):
    async def __call__(self, text: str) -> list[float]:
        raise EmbeddingError("backend down")


def _seed(storage: Storage) -> None:
    storage.add_book(Book(id=BOOK_ID, title="How to Read a Book", description="A guide to intelligent reading"))
    storage.add_chapters(BOOK_ID, [Chapter(index=0, title="One", content="Reading is an activity.")])
    storage.save_game_state(BOOK_ID, "master", initialize_state())


@pytest.fixture
def client(tmp_path: Path) -> TestClient:
    app = create_app(Settings(data_dir=tmp_path), embedder=HashEmbedder())
    _seed(app.state.storage)
    return TestClient(app)


class TestMeta:
    def test_health(self, client: TestClient) -> None:
        assert client.get("/api/health").json() == {"status": "ok"}

    def test_difficulties(self, client: TestClient) -> None:
        body = client.get("/api/difficulties").json()
        assert [d["id"] for d in body] == ["beginner", "apprentice", "master", "expert"]
        assert body[3]["advanced_mode"]["enabled"] is True


class TestBooks:
    def test_list(self, client: TestClient) -> None:
        assert [b["id"] for b in client.get("/api/books").json()] == [BOOK_ID]

    def test_get(self, client: TestClient) -> None:
        assert client.get(f"/api/books/{BOOK_ID}").json()["title"] == "How to Read a Book"

    def test_get_missing(self, client: TestClient) -> None:
        assert client.get("/api/books/nope").status_code == 404

    def test_delete(self, client: TestClient) -> None:
        assert client.delete(f"/api/books/{BOOK_ID}").json() == {"ok": True}
        assert client.get(f"/api/books/{BOOK_ID}").status_code == 404
        assert client.delete(f"/api/books/{BOOK_ID}").status_code == 404


class TestGames:
    def test_state(self, client: TestClient) -> None:
        body = client.get(GAME).json()
        assert body["state"]["current_phase"] == "SCOUTING"
        assert "How to Read a Book" in body["markdown"]

    def test_state_unknown_book(self, client: TestClient) -> None:
        assert client.get("/api/books/nope/games/master").status_code == 404

    def test_classify(self, client: TestClient) -> None:
        resp = client.post(f"{GAME}/answer", json={
            "action": "classify", "text": "How to Read a Book A guide to intelligent reading",
        })
        assert resp.status_code == 200
        body = resp.json()
        assert body["validation"]["valid"] is True
        assert body["state"]["xp_total"] == 50

    def test_answer_validation_error(self, client: TestClient) -> None:
        assert client.post(f"{GAME}/answer", json={"action": "dance", "text": "x"}).status_code == 422

    def test_quest_then_answer(self, client: TestClient) -> None:
        quest = client.post(f"{GAME}/quest", json={}).json()["quest"]
        assert quest["type"] == "SCOUT"
        body = client.post(f"{GAME}/answer", json={"action": "quest", "text": quest["description"]}).json()
        assert body["xp"]["xp_gained"] == 20
        assert body["state"]["active_quest_id"] is None

    def test_quest_answer_without_quest(self, client: TestClient) -> None:
        assert client.post(f"{GAME}/answer", json={"action": "quest", "text": "x"}).status_code == 404

    def test_critique_flag_in_body_is_ignored(self, client: TestClient) -> None:
        client.post(f"{GAME}/debug", json={"command": "/goto:JUDGMENT"})
        body = client.post(f"{GAME}/answer", json={
            "action": "critique", "text": "evidence", "understanding_verified": True,
        }).json()
        assert body["validation"]["valid"] is False
        assert body["state"]["mana"] == 90

    def test_verification_round_trip(self, client: TestClient) -> None:
        asked = client.post(f"{GAME}/verification", json={}).json()
        assert asked["questions"] == []
        graded = client.post(f"{GAME}/verification/answers", json={"answers": ["reading"]}).json()
        assert graded["verification"]["passed"] is False

    def test_verification_count_bounds(self, client: TestClient) -> None:
        assert client.post(f"{GAME}/verification", json={"count": 0}).status_code == 422

    def test_hint_refused_on_master(self, client: TestClient) -> None:
        body = client.post(f"{GAME}/hint", json={}).json()
        assert "not available" in body["error"]
        assert body["state"]["mana"] == 100

    def test_hint_on_beginner(self, client: TestClient) -> None:
        client.app.state.storage.save_game_state(BOOK_ID, "beginner", initialize_state())
        body = client.post(f"/api/books/{BOOK_ID}/games/beginner/hint", json={}).json()
        assert body["state"]["mana"] == 85
        assert body["hints"] == ["Read the text carefully again."]

    def test_rest(self, client: TestClient) -> None:
        client.app.state.storage.save_game_state(BOOK_ID, "master", GameState(mana=10))
        assert client.post(f"{GAME}/rest").json()["state"]["mana"] == 35

    def test_phase(self, client: TestClient) -> None:
        body = client.get(f"{GAME}/phase").json()
        assert body == {
            "phase": "SCOUTING",
            "ready": False,
            "missing": ["Classify Book", "Unity Statement"],
            "tools": ["scan_structure", "classify_book"],
        }

    def test_phase_missing_game(self, client: TestClient) -> None:
        assert client.get(f"/api/books/{BOOK_ID}/games/expert/phase").status_code == 404

    def test_debug(self, client: TestClient) -> None:
        body = client.post(f"{GAME}/debug", json={"command": "/goto:JUDGMENT"}).json()
        assert body["state"]["current_phase"] == "JUDGMENT"
        assert client.get(f"{GAME}/phase").json()["phase"] == "JUDGMENT"

    def test_debug_error_is_reported(self, client: TestClient) -> None:
        body = client.post(f"{GAME}/debug", json={"command": "/goto:NOWHERE"}).json()
        assert "Invalid phase" in body["error"]


class TestEmbeddingFailure:
    def test_answer_returns_502(self, tmp_path: Path) -> None:
        app = create_app(Settings(data_dir=tmp_path), embedder=BrokenEmbedder())
        _seed(app.state.storage)
        client = TestClient(app)
        resp = client.post(f"{GAME}/answer", json={"action": "classify", "text": "anything"})
        assert resp.status_code == 502
        assert "backend down" in resp.json()["detail"]
