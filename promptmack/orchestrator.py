"""One chat turn: model streaming, tool dispatch between model steps, and the post-turn save."""

import json
import logging
import uuid
from datetime import date
from typing import Any, AsyncGenerator, Awaitable, Callable, Dict, List, Optional

import httpx

from .db import Database, utc_now
from .errors import PersistenceFailure
from .llm import ChatModelClient
from .schemas import ChatMessage, ToolInvocationRecord
from .tools import ToolDispatcher, ToolInvocation, ToolRegistry, new_call_id


logger = logging.getLogger("uvicorn.error")

PersistHook = Callable[[str, str, List[Dict[str, Any]]], Awaitable[Optional[PersistenceFailure]]]

SYSTEM_PROMPT = (
    "You are {name}, a helpful research assistant. Keep answers concise and cite the sources "
    "returned by your tools.\n"
    "Available tools: {tools}.\n"
    "Use news, video and scholar search for current events and papers, the Firecrawl tools to read, "
    "crawl, map or extract from websites, findSimilar for related sites, getWeather for forecasts and "
    "dataTable to present structured data. When a crawl or extraction comes back pending, tell the user "
    "it is still running and share its job id.\n"
    "Today's date is {today}."
)


def build_system_prompt(name: str, registry: ToolRegistry, today: Optional[date] = None) -> str:
    enabled = [spec.name for spec in registry if not spec.disabled]
    return SYSTEM_PROMPT.format(
        name=name,
        tools=", ".join(enabled) or "none",
        today=(today or date.today()).isoformat(),
    )


def _as_text(content: Any) -> str:
    if content is None:
        return ""
    if isinstance(content, str):
        return content
    return json.dumps(content, ensure_ascii=True)


def _tool_call(call_id: str, name: str, args: Any) -> Dict[str, Any]:
    arguments = args if isinstance(args, str) else json.dumps(args if args is not None else {})
    return {"id": call_id, "type": "function", "function": {"name": name, "arguments": arguments}}


def normalize_messages(messages: List[ChatMessage]) -> List[Dict[str, Any]]:
    """Convert client messages into model messages.

    Messages with no content and no tool invocations are dropped. Tool
    invocations that already carry a result become an assistant tool-call
    message followed by one ``tool`` message each; the rest are discarded.
    """
    out: List[Dict[str, Any]] = []
    for msg in messages:
        if not msg.has_content():
            continue
        text = _as_text(msg.content)
        finished = [inv for inv in msg.tool_invocations if inv.state == "result" and inv.result is not None]
        if msg.role == "assistant" and finished:
            out.append(
                {
                    "role": "assistant",
                    "content": text or None,
                    "tool_calls": [_tool_call(inv.tool_call_id, inv.tool_name, inv.args) for inv in finished],
                }
            )
            for inv in finished:
                out.append({"role": "tool", "tool_call_id": inv.tool_call_id, "content": _as_text(inv.result)})
            continue
        if text.strip():
            out.append({"role": msg.role, "content": text})
    return out


def _parse_arguments(raw: Any) -> Any:
    if isinstance(raw, dict):
        return raw
    if not raw:
        return {}
    try:
        return json.loads(raw)
    except (TypeError, json.JSONDecodeError):
        return raw


class TranscriptRecorder:
    """Post-turn hook that saves a transcript and reports, never raises, failures."""

    def __init__(self, db: Database):
        self.db = db

    async def __call__(
        self, chat_id: str, user_id: str, messages: List[Dict[str, Any]]
    ) -> Optional[PersistenceFailure]:
        try:
            await self.db.save_chat(chat_id, user_id, messages)
        except Exception as exc:
            failure = PersistenceFailure(chat_id, exc)
            logger.exception("Failed to save chat %s", chat_id)
            return failure
        return None


class ChatTurn:
    def __init__(
        self,
        *,
        chat_id: str,
        user_id: str,
        messages: List[ChatMessage],
        llm: ChatModelClient,
        dispatcher: ToolDispatcher,
        model_id: str,
        system_prompt: str,
        temperature: float = 0.7,
        max_tokens: int = 4096,
        max_tool_steps: int = 5,
        persist: Optional[PersistHook] = None,
    ):
        self.chat_id = chat_id
        self.user_id = user_id
        self.messages = messages
        self.llm = llm
        self.dispatcher = dispatcher
        self.model_id = model_id
        self.system_prompt = system_prompt
        self.temperature = temperature
        self.max_tokens = max_tokens
        self.max_tool_steps = max(1, max_tool_steps)
        self.persist = persist
        self.reply = ChatMessage(id=uuid.uuid4().hex, role="assistant", content="", created_at=utc_now())
        self.persistence_error: Optional[PersistenceFailure] = None

    def transcript(self) -> List[Dict[str, Any]]:
        stored = [msg.to_storage() for msg in self.messages]
        if self.reply.has_content():
            stored.append(self.reply.to_storage())
        return stored

    async def stream(self) -> AsyncGenerator[Dict[str, Any], None]:
        history: List[Dict[str, Any]] = [{"role": "system", "content": self.system_prompt}]
        history.extend(normalize_messages(self.messages))
        tools = self.dispatcher.registry.to_openai_tools()
        text_parts: List[str] = []
        finish_reason = "stop"

        for step in range(1, self.max_tool_steps + 1):
            step_text: List[str] = []
            calls: List[Dict[str, Any]] = []
            try:
                async for event in self.llm.stream_chat(
                    self.model_id,
                    history,
                    tools=tools,
                    temperature=self.temperature,
                    max_tokens=self.max_tokens,
                ):
                    if event["type"] == "text":
                        step_text.append(event["delta"])
                        yield {"type": "text", "delta": event["delta"]}
                    elif event["type"] == "tool_calls":
                        calls = event["tool_calls"]
                    elif event["type"] == "finish":
                        finish_reason = event.get("finish_reason") or finish_reason
            except (httpx.HTTPError, ValueError) as exc:
                logger.warning("Model call failed for chat %s on step %d: %s", self.chat_id, step, exc)
                yield {"type": "error", "message": f"Model request failed: {exc}"}
                return
            except Exception as exc:
                logger.exception("Model stream broke for chat %s on step %d", self.chat_id, step)
                yield {"type": "error", "message": f"Model stream failed: {exc}"}
                return

            text = "".join(step_text)
            text_parts.append(text)
            if not calls:
                break

            invocations = [
                ToolInvocation(
                    tool_name=call.get("name") or "",
                    args=_parse_arguments(call.get("arguments")),
                    call_id=call.get("id") or new_call_id(),
                )
                for call in calls
            ]
            for inv in invocations:
                yield {"type": "tool_call", "toolCallId": inv.call_id, "toolName": inv.tool_name, "args": inv.args}
            await self.dispatcher.execute_all(invocations)
            for inv in invocations:
                yield {
                    "type": "tool_result",
                    "toolCallId": inv.call_id,
                    "toolName": inv.tool_name,
                    "result": inv.result,
                    "isError": not inv.ok,
                }
                self.reply.tool_invocations.append(ToolInvocationRecord.model_validate(inv.to_record()))

            history.append(
                {
                    "role": "assistant",
                    "content": text or None,
                    "tool_calls": [_tool_call(inv.call_id, inv.tool_name, inv.args) for inv in invocations],
                }
            )
            history.extend(
                {"role": "tool", "tool_call_id": inv.call_id, "content": _as_text(inv.result)}
                for inv in invocations
            )
            if step == self.max_tool_steps:
                finish_reason = "max_tool_steps"

        self.reply.content = "".join(text_parts)
        if self.persist is not None:
            self.persistence_error = await self.persist(self.chat_id, self.user_id, self.transcript())
        yield {"type": "finish", "finishReason": finish_reason, "messageId": self.reply.id}
