import argparse
import json
import os
import sys
import uuid
from typing import List, Optional

import httpx


DEFAULT_API_BASE = "http://127.0.0.1:8000"
TOKEN_ENV = "PROMPTMACK_TOKEN"


def _join_url(base: str, path: str) -> str:
    return base.rstrip("/") + path


def _headers(args: argparse.Namespace) -> dict:
    token = args.token or os.getenv(TOKEN_ENV)
    return {"Authorization": f"Bearer {token}"} if token else {}


def _print_error(action: str, resp: httpx.Response) -> None:
    detail = ""
    try:
        body = resp.json()
        detail = body.get("detail") or body.get("error") or ""
    except ValueError:
        detail = resp.text
    suffix = f": {detail}" if detail else ""
    print(f"{action} failed: HTTP {resp.status_code}{suffix}")


def run_auth(args: argparse.Namespace) -> int:
    path = "/api/auth/register" if args.command == "register" else "/api/auth/login"
    with httpx.Client() as client:
        resp = client.post(
            _join_url(args.base_url, path),
            json={"email": args.email, "password": args.password},
            timeout=10,
        )
        if resp.status_code >= 400:
            _print_error(args.command.capitalize(), resp)
            return 1
        data = resp.json()
    print(f"Signed in as {data['user']['email']}")
    print(f"export {TOKEN_ENV}={data['token']}")
    return 0


def run_history(args: argparse.Namespace) -> int:
    with httpx.Client() as client:
        resp = client.get(_join_url(args.base_url, "/api/history"), headers=_headers(args), timeout=10)
        if resp.status_code >= 400:
            _print_error("History", resp)
            return 1
        chats = resp.json().get("chats") or []
    if not chats:
        print("No chats yet.")
    for chat in chats:
        print(f"{chat['id']}  {chat.get('updated_at') or ''}  {chat.get('title') or ''}")
    return 0


def run_delete(args: argparse.Namespace) -> int:
    with httpx.Client() as client:
        resp = client.delete(
            _join_url(args.base_url, "/api/chat"),
            params={"id": args.chat_id},
            headers=_headers(args),
            timeout=10,
        )
        if resp.status_code >= 400:
            _print_error("Delete", resp)
            return 1
    print(f"Deleted {args.chat_id}")
    return 0


def _print_event(event: dict) -> None:
    kind = event.get("type")
    if kind == "text":
        print(event.get("delta", ""), end="", flush=True)
    elif kind == "tool_call":
        print(f"\n[tool] {event.get('toolName')} {json.dumps(event.get('args'))}")
    elif kind == "tool_result":
        status = "error" if event.get("isError") else "ok"
        print(f"[tool] {event.get('toolName')} -> {status}")
    elif kind == "error":
        print(f"\n[error] {event.get('message')}")
    elif kind == "finish":
        print()


def run_chat(args: argparse.Namespace) -> int:
    headers = _headers(args)
    with httpx.Client() as client:
        messages: list = []
        resp = client.get(_join_url(args.base_url, f"/api/chat/{args.chat_id}"), headers=headers, timeout=10)
        if resp.status_code == 200:
            messages = resp.json()["chat"]["messages"]
        elif resp.status_code != 404:
            _print_error("Chat", resp)
            return 1
        messages.append({"id": uuid.uuid4().hex, "role": "user", "content": args.message})
        payload = {"id": args.chat_id, "messages": messages}
        with client.stream(
            "POST", _join_url(args.base_url, "/api/chat"), json=payload, headers=headers, timeout=None
        ) as stream:
            if stream.status_code >= 400:
                stream.read()
                _print_error("Chat", stream)
                return 1
            for line in stream.iter_lines():
                if not line.startswith("data:"):
                    continue
                try:
                    event = json.loads(line[len("data:"):].strip())
                except json.JSONDecodeError:
                    continue
                _print_event(event)
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Promptmack CLI")
    parser.add_argument("--base-url", default=DEFAULT_API_BASE, help="API base URL")
    parser.add_argument("--token", default=None, help=f"Bearer token (defaults to ${TOKEN_ENV})")
    subparsers = parser.add_subparsers(dest="command")

    for name in ("register", "login"):
        auth = subparsers.add_parser(name, help=f"{name.capitalize()} and print a token")
        auth.add_argument("email")
        auth.add_argument("password")

    subparsers.add_parser("history", help="List your chats")

    delete = subparsers.add_parser("delete", help="Delete a chat")
    delete.add_argument("chat_id")

    chat = subparsers.add_parser("chat", help="Send a message and stream the reply")
    chat.add_argument("chat_id")
    chat.add_argument("message")

    return parser


def main(argv: Optional[List[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    if args.command in ("register", "login"):
        return run_auth(args)
    if args.command == "history":
        return run_history(args)
    if args.command == "delete":
        return run_delete(args)
    if args.command == "chat":
        return run_chat(args)
    parser.print_help()
    return 1


if __name__ == "__main__":
    sys.exit(main())
