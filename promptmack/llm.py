import json
import logging
from typing import Any, AsyncGenerator, Dict, List, Optional

import httpx


logger = logging.getLogger("uvicorn.error")

ALLOWED_ROLES = {"system", "user", "assistant", "tool"}


class ChatModelClient:
    """Client for an OpenAI-compatible ``/chat/completions`` endpoint with tool calling."""

    def __init__(
        self,
        base_url: str,
        api_key: Optional[str] = None,
        max_output_tokens: Optional[int] = None,
        timeout: float = 120.0,
    ):
        self.base_url = base_url.rstrip("/")
        self.api_key = api_key
        self.max_output_tokens = max_output_tokens
        self.client = httpx.AsyncClient(timeout=timeout)

    def _headers(self) -> Dict[str, str]:
        headers = {"Content-Type": "application/json"}
        if self.api_key:
            headers["Authorization"] = f"Bearer {self.api_key}"
        return headers

    def _sanitize_messages(self, messages: Any) -> List[Dict[str, Any]]:
        if not isinstance(messages, list):
            return []
        sanitized: List[Dict[str, Any]] = []
        for msg in messages:
            if not isinstance(msg, dict):
                continue
            role = msg.get("role")
            if role not in ALLOWED_ROLES:
                continue
            content = msg.get("content")
            tool_calls = msg.get("tool_calls")
            if role == "assistant" and tool_calls:
                sanitized.append({"role": role, "content": content or None, "tool_calls": tool_calls})
                continue
            if role == "tool":
                if not msg.get("tool_call_id"):
                    continue
                text = content if isinstance(content, str) else json.dumps(content, ensure_ascii=True)
                sanitized.append({"role": role, "tool_call_id": msg["tool_call_id"], "content": text})
                continue
            if content is None:
                continue
            cleaned_content: Any
            if isinstance(content, str):
                if not content.strip():
                    continue
                cleaned_content = content
            elif isinstance(content, list):
                cleaned_items = [
                    item
                    for item in content
                    if isinstance(item, dict)
                    and item.get("type")
                    and (item.get("text") or item.get("image_url"))
                ]
                if not cleaned_items:
                    continue
                cleaned_content = cleaned_items
            else:
                cleaned_content = json.dumps(content, ensure_ascii=True)
            sanitized.append({"role": role, "content": cleaned_content})
        return sanitized

    def _build_payload(
        self,
        model: str,
        messages: List[Dict[str, Any]],
        tools: Optional[List[Dict[str, Any]]],
        temperature: float,
        max_tokens: int,
        stream: bool,
    ) -> Dict[str, Any]:
        final_max_tokens = max_tokens
        if self.max_output_tokens:
            final_max_tokens = min(max_tokens, self.max_output_tokens)
        payload: Dict[str, Any] = {
            "model": model,
            "messages": self._sanitize_messages(messages),
            "temperature": temperature,
            "max_tokens": final_max_tokens,
            "stream": stream,
        }
        if not payload["messages"]:
            raise ValueError("messages must include at least one non-empty entry")
        if tools:
            payload["tools"] = tools
            payload["tool_choice"] = "auto"
        return payload

    def _extract_error_detail(self, response: httpx.Response) -> str:
        try:
            data = response.json()
            if isinstance(data, dict):
                return json.dumps(data, ensure_ascii=True)
        except ValueError:
            pass
        return response.text

    async def stream_chat(
        self,
        model: str,
        messages: List[Dict[str, Any]],
        tools: Optional[List[Dict[str, Any]]] = None,
        temperature: float = 0.7,
        max_tokens: int = 4096,
    ) -> AsyncGenerator[Dict[str, Any], None]:
        """Yield ``text`` deltas, then the assembled ``tool_calls`` (if any), then ``finish``."""
        payload = self._build_payload(model, messages, tools, temperature, max_tokens, stream=True)
        calls: Dict[int, Dict[str, Any]] = {}
        finish_reason: Optional[str] = None
        url = f"{self.base_url}/chat/completions"
        async with self.client.stream("POST", url, json=payload, headers=self._headers()) as resp:
            if resp.is_error:
                await resp.aread()
                logger.warning("Model endpoint returned %s: %s", resp.status_code, self._extract_error_detail(resp))
                resp.raise_for_status()
            async for line in resp.aiter_lines():
                if not line.startswith("data:"):
                    continue
                chunk = line[len("data:"):].strip()
                if chunk == "[DONE]":
                    break
                try:
                    data = json.loads(chunk)
                except json.JSONDecodeError:
                    continue
                if not isinstance(data, dict):
                    continue
                choices = data.get("choices") or [{}]
                choice = choices[0] if isinstance(choices, list) else None
                if not isinstance(choice, dict):
                    continue
                delta = choice.get("delta") or {}
                if not isinstance(delta, dict):
                    delta = {}
                text = delta.get("content")
                if text and isinstance(text, str):
                    yield {"type": "text", "delta": text}
                fragments = delta.get("tool_calls")
                for fragment in fragments if isinstance(fragments, list) else []:
                    if not isinstance(fragment, dict):
                        continue
                    index = fragment.get("index")
                    if not isinstance(index, int):
                        index = len(calls)
                    slot = calls.setdefault(index, {"id": None, "name": "", "arguments": ""})
                    if fragment.get("id"):
                        slot["id"] = fragment["id"]
                    function = fragment.get("function")
                    if not isinstance(function, dict):
                        function = {}
                    if function.get("name") and not slot["name"]:
                        slot["name"] = function["name"]
                    if function.get("arguments"):
                        args = function["arguments"]
                        slot["arguments"] += args if isinstance(args, str) else json.dumps(args)
                if choice.get("finish_reason"):
                    finish_reason = choice["finish_reason"]
        if calls:
            yield {"type": "tool_calls", "tool_calls": [calls[i] for i in sorted(calls)]}
        yield {"type": "finish", "finish_reason": finish_reason or ("tool_calls" if calls else "stop")}

    async def close(self) -> None:
        if not self.client.is_closed:
            await self.client.aclose()
