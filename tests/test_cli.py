import json

import respx
from httpx import Response

import promptmack_cli

BASE = "http://127.0.0.1:8000"


def test_login_prints_token(capsys):
    with respx.mock(assert_all_called=True) as respx_mock:
        respx_mock.post(f"{BASE}/api/auth/login").mock(
            return_value=Response(200, json={"user": {"id": "u1", "email": "ada@example.com"}, "token": "tok"})
        )
        code = promptmack_cli.main(["login", "ada@example.com", "pw"])
    out = capsys.readouterr().out
    assert code == 0
    assert "export PROMPTMACK_TOKEN=tok" in out


def test_history_sends_bearer_token(capsys, monkeypatch):
    monkeypatch.setenv("PROMPTMACK_TOKEN", "env-token")
    with respx.mock(assert_all_called=True) as respx_mock:
        route = respx_mock.get(f"{BASE}/api/history").mock(
            return_value=Response(200, json={"chats": [{"id": "c1", "title": "Weather", "updated_at": "2025"}]})
        )
        code = promptmack_cli.main(["history"])
    assert code == 0
    assert route.calls.last.request.headers["Authorization"] == "Bearer env-token"
    assert "c1" in capsys.readouterr().out


def test_delete_reports_http_error(capsys):
    with respx.mock(assert_all_called=True) as respx_mock:
        respx_mock.delete(f"{BASE}/api/chat").mock(return_value=Response(401, json={"detail": "Unauthorized"}))
        code = promptmack_cli.main(["--token", "t", "delete", "c1"])
    assert code == 1
    assert "HTTP 401: Unauthorized" in capsys.readouterr().out


def test_chat_streams_events(capsys):
    events = [
        {"type": "tool_call", "toolCallId": "c", "toolName": "getNews", "args": {"query": "ai"}},
        {"type": "tool_result", "toolCallId": "c", "toolName": "getNews", "result": {}, "isError": False},
        {"type": "text", "delta": "Done."},
        {"type": "finish", "finishReason": "stop"},
    ]
    body = "".join(f"data: {json.dumps(e)}\n\n" for e in events)
    captured = {}
    with respx.mock(assert_all_called=True) as respx_mock:
        respx_mock.get(f"{BASE}/api/chat/new-chat").mock(return_value=Response(404, json={"detail": "Chat not found"}))

        def handler(request):
            captured["json"] = json.loads(request.content.decode("utf-8"))
            return Response(200, content=body.encode("utf-8"), headers={"content-type": "text/event-stream"})

        respx_mock.post(f"{BASE}/api/chat").mock(side_effect=handler)
        code = promptmack_cli.main(["--token", "t", "chat", "new-chat", "latest ai news"])
    out = capsys.readouterr().out
    assert code == 0
    assert captured["json"]["id"] == "new-chat"
    assert captured["json"]["messages"][0]["content"] == "latest ai news"
    assert "[tool] getNews" in out
    assert "Done." in out
