import importlib
import logging

import httpx
import pytest
from fastapi.testclient import TestClient

from arena_api import main
from arena_api.core import Position, empty_cells
from arena_api.notifications import RateLimiter, TelegramNotifier
from arena_api.promo import is_valid_promo_code
from arena_api.storage import PlayerRecords


class FirstEmptyCell:
    """Predictable opponent: always the first free cell in row-major order."""

    def decide_move(self, board):
        return empty_cells(board)[0]


@pytest.fixture(autouse=True)
def fresh_state(monkeypatch):
    monkeypatch.setattr(main, "records", PlayerRecords())
    monkeypatch.setattr(main, "sessions_db", {})
    monkeypatch.setattr(main, "relay_rate_limiter", RateLimiter())


@pytest.fixture
def client():
    return TestClient(main.app)


def auth(token):
    return {"Authorization": f"Bearer {token}"}


def create_profile(client, name="Alice", difficulty="MEDIUM"):
    response = client.post("/profile", json={"name": name, "avatar_id": "avatar-01", "preferred_difficulty": difficulty})
    assert response.status_code == 200
    return response.json()


@pytest.fixture
def player(client):
    return auth(create_profile(client)["access_token"])


def new_game(client, headers, difficulty=None):
    body = {"difficulty": difficulty} if difficulty else {}
    response = client.post("/new_game", json=body, headers=headers)
    assert response.status_code == 200
    return response.json()


def move(client, headers, game_id, row, col):
    return client.post("/make_move", json={"game_id": game_id, "row": row, "col": col}, headers=headers)


def test_health_and_catalogues(client):
    assert client.get("/").json() == {"message": "Healthy"}
    assert len(client.get("/avatars").json()) == 15
    assert client.get("/difficulties").json() == ["EASY", "MEDIUM", "HARD"]


def test_create_profile_returns_token(client):
    data = create_profile(client, name="  Bob  ")
    assert data["token_type"] == "bearer"
    assert data["profile"]["name"] == "Bob"

    me = client.get("/profile", headers=auth(data["access_token"]))
    assert me.status_code == 200
    assert me.json()["id"] == data["profile"]["id"]


def test_create_profile_validation(client):
    assert client.post("/profile", json={"name": "A", "avatar_id": "avatar-01"}).status_code == 422
    assert client.post("/profile", json={"name": "Alice", "avatar_id": "avatar-99"}).status_code == 422


def test_requests_without_valid_token_are_rejected(client):
    assert client.get("/profile").status_code == 401
    assert client.get("/statistics", headers=auth("not-a-token")).status_code == 401
    assert client.post("/new_game", json={}).status_code == 401


def test_update_profile(client, player):
    response = client.put("/profile", json={"name": "Alicia", "preferred_difficulty": "HARD"}, headers=player)
    assert response.status_code == 200
    assert response.json()["name"] == "Alicia"
    assert response.json()["preferred_difficulty"] == "HARD"
    assert new_game(client, player)["difficulty"] == "HARD"

    assert client.put("/profile", json={"avatar_id": "missing"}, headers=player).status_code == 422


def test_new_game_defaults(client, player):
    game = new_game(client, player)
    assert game["difficulty"] == "MEDIUM"
    assert game["human_mark"] == "X"
    assert game["ai_mark"] == "O"
    assert game["next_turn"] == "X"
    assert game["board"] == [[None] * 3 for _ in range(3)]


def test_move_gets_ai_reply(client, player):
    game_id = new_game(client, player, "MEDIUM")["game_id"]
    data = move(client, player, game_id, 0, 0).json()
    assert data["status"] == "continue"
    assert data["ai_move"] == [1, 1]
    assert data["board"][0][0] == "X"
    assert data["board"][1][1] == "O"
    assert data["next_turn"] == "X"


def test_occupied_cell_is_reported_as_invalid(client, player):
    game_id = new_game(client, player)["game_id"]
    first = move(client, player, game_id, 0, 0).json()
    again = move(client, player, game_id, 0, 0)
    assert again.status_code == 200
    data = again.json()
    assert data["status"] == "invalid"
    assert data["error"] == "IllegalMove"
    assert data["board"] == first["board"]


def test_out_of_range_move_is_rejected_by_validation(client, player):
    game_id = new_game(client, player)["game_id"]
    assert move(client, player, game_id, 3, 0).status_code == 422


def test_games_belong_to_their_player(client, player):
    game_id = new_game(client, player)["game_id"]
    other = auth(create_profile(client, name="Mallory")["access_token"])
    assert move(client, other, game_id, 0, 0).status_code == 403
    assert client.get(f"/game_state/{game_id}", headers=other).status_code == 403
    assert client.get("/game_state/999", headers=player).status_code == 404


def test_winning_game_issues_promo_code(client, player):
    game_id = new_game(client, player, "EASY")["game_id"]
    main.sessions_db[game_id]["strategy"] = FirstEmptyCell()

    # AI answers (0,1) then (0,2); column 0 wins.
    assert move(client, player, game_id, 0, 0).json()["ai_move"] == [0, 1]
    assert move(client, player, game_id, 1, 0).json()["ai_move"] == [0, 2]
    data = move(client, player, game_id, 2, 0).json()

    assert data["status"] == "won"
    assert data["outcome"] == "WIN"
    assert data["ai_move"] is None
    assert data["next_turn"] is None
    assert data["winner"] == {"player": "X", "combination": [[0, 0], [1, 0], [2, 0]]}
    assert is_valid_promo_code(data["promo_code"])
    assert data["promo_code"] in data["notification_text"]
    assert "FIRST_WIN" in data["unlocked_achievements"]

    after = move(client, player, game_id, 2, 2).json()
    assert after["status"] == "invalid"
    assert after["error"] == "IllegalMove"

    state = client.get(f"/game_state/{game_id}", headers=player).json()
    assert state["status"] == "won"
    assert state["promo_code"] == data["promo_code"]

    stats = client.get("/statistics", headers=player).json()
    assert stats["wins"] == 1
    assert stats["total_games"] == 1
    assert stats["games_by_difficulty"]["EASY"]["wins"] == 1

    history = client.get("/game_history", headers=player).json()["history"]
    assert len(history) == 1
    assert history[0]["result"] == "WIN"
    assert history[0]["promo_code"] == data["promo_code"]

    achievements = {a["id"]: a for a in client.get("/achievements", headers=player).json()["achievements"]}
    assert achievements["FIRST_WIN"]["unlocked_at"] is not None


def test_hard_ai_never_loses(client, player):
    game_id = new_game(client, player, "HARD")["game_id"]
    data = {"status": "continue", "board": [[None] * 3 for _ in range(3)]}
    while data["status"] == "continue":
        row, col = next(Position(r, c) for r in range(3) for c in range(3) if data["board"][r][c] is None)
        data = move(client, player, game_id, row, col).json()

    assert data["status"] in ("lost", "draw")
    if data["status"] == "lost":
        assert data["notification_text"] == "😊 Defeat"
        assert data["winner"]["player"] == "O"
    assert data["promo_code"] is None
    assert client.get("/statistics", headers=player).json()["wins"] == 0


def test_reset_game(client, player):
    game_id = new_game(client, player)["game_id"]
    move(client, player, game_id, 0, 0)
    data = client.post(f"/reset_game/{game_id}", headers=player).json()
    assert data["status"] == "continue"
    assert data["board"] == [[None] * 3 for _ in range(3)]
    assert move(client, player, game_id, 0, 0).json()["status"] == "continue"


def test_reset_statistics_and_history(client, player):
    game_id = new_game(client, player)["game_id"]
    main.sessions_db[game_id]["strategy"] = FirstEmptyCell()
    for row in range(3):
        move(client, player, game_id, row, 0)

    assert client.delete("/statistics", headers=player).status_code == 204
    assert client.get("/statistics", headers=player).json()["total_games"] == 0
    assert len(client.get("/game_history", headers=player).json()["history"]) == 1

    assert client.delete("/game_history", headers=player).status_code == 204
    assert client.get("/game_history", headers=player).json()["history"] == []


def test_delete_profile(client, player):
    game_id = new_game(client, player)["game_id"]
    assert client.delete("/profile", headers=player).status_code == 204
    assert game_id not in main.sessions_db
    assert client.get("/profile", headers=player).status_code == 401


@pytest.fixture
def sent(monkeypatch):
    messages = []

    def handler(request):
        messages.append(request.content.decode("utf-8"))
        return httpx.Response(200, json={"ok": True, "result": {"message_id": len(messages)}})

    def notifier():
        client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
        return TelegramNotifier("123:abc", "42", api_url="https://telegram.test/bot", client=client)

    monkeypatch.setattr(main, "get_notifier", notifier)
    return messages


def test_relay_sends_message(client, sent):
    response = client.post("/telegram", json={"message": "  Good game  "})
    assert response.status_code == 200
    assert response.json() == {"success": True, "message": "Message sent", "message_id": 1}
    assert response.headers["X-RateLimit-Limit"] == "5"
    assert response.headers["X-RateLimit-Remaining"] == "4"
    assert "Good game" in sent[0]


def test_relay_with_code_sends_win_message(client, sent):
    response = client.post("/telegram", json={"message": "won", "code": "AB12C"})
    assert response.status_code == 200
    assert "AB12C" in sent[0]


def test_relay_rejects_bad_input(client, sent):
    assert client.post("/telegram", json={}).status_code == 400
    assert client.post("/telegram", json={"message": "   "}).status_code == 400
    assert client.post("/telegram", json={"message": "x" * 1001}).status_code == 400
    response = client.post("/telegram", json={"message": "won", "code": "bad code"})
    assert response.status_code == 400
    assert response.json()["success"] is False
    assert sent == []


def test_relay_rate_limit(client, sent):
    for _ in range(5):
        assert client.post("/telegram", json={"message": "hi"}).status_code == 200
    response = client.post("/telegram", json={"message": "hi"})
    assert response.status_code == 429
    assert int(response.headers["Retry-After"]) > 0
    assert response.headers["X-RateLimit-Remaining"] == "0"
    assert len(sent) == 5

    # A different forwarded client is counted separately
    assert client.post("/telegram", json={"message": "hi"}, headers={"X-Forwarded-For": "9.9.9.9"}).status_code == 200


def test_relay_forgets_clients_after_their_window(client, sent, monkeypatch):
    now = [1000.0]
    limiter = RateLimiter(clock=lambda: now[0])
    monkeypatch.setattr(main, "relay_rate_limiter", limiter)

    for index in range(50):
        headers = {"X-Forwarded-For": f"203.0.113.{index}"}
        assert client.post("/telegram", json={"message": "hi"}, headers=headers).status_code == 200
    assert len(limiter) == 50

    now[0] += 3600
    assert client.post("/telegram", json={"message": "hi"}, headers={"X-Forwarded-For": "198.51.100.1"}).status_code == 200
    assert len(limiter) == 1


def test_relay_reports_api_failure(client, monkeypatch):
    def handler(request):
        return httpx.Response(403, json={"ok": False, "description": "Forbidden: bot was blocked by the user"})

    def notifier():
        client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
        return TelegramNotifier("123:abc", "42", client=client)

    monkeypatch.setattr(main, "get_notifier", notifier)
    response = client.post("/telegram", json={"message": "hi"})
    assert response.status_code == 500
    assert response.json()["error"] == "Forbidden: bot was blocked by the user"


def test_relay_without_configuration(client, monkeypatch):
    monkeypatch.delenv("TELEGRAM_BOT_TOKEN", raising=False)
    monkeypatch.delenv("TELEGRAM_CHAT_ID", raising=False)
    response = client.post("/telegram", json={"message": "hi"})
    assert response.status_code == 500
    assert response.json()["success"] is False


def test_importing_the_app_leaves_logging_alone(monkeypatch):
    calls = []
    monkeypatch.setattr(logging, "basicConfig", lambda **kwargs: calls.append(kwargs))
    importlib.reload(main)
    assert calls == []


def test_run_configures_logging_and_serves(monkeypatch):
    calls = []
    served = []
    monkeypatch.setattr(logging, "basicConfig", lambda **kwargs: calls.append(kwargs))
    monkeypatch.setattr(main.uvicorn, "run", lambda app, **kwargs: served.append((app, kwargs)))
    main.run()
    assert calls[0]["level"] == main.config.LOG_LEVEL
    assert served[0][0] is main.app
    assert served[0][1]["port"] == main.config.PORT
