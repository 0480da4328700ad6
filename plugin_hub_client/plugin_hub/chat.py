"""Client side of the chat assistant.

The chat route streams plain assistant text. A tool call is embedded in the
same byte stream as ``__TOOL_CALL__<json>@@END_TOOL_CALL@@``, and a frame can be
split across chunks, so the parser buffers until the end marker arrives.
"""
from __future__ import annotations
import json, logging
from dataclasses import dataclass, field
from typing import Any, Dict, Iterator, List, Optional, Union
from urllib.parse import urlencode
import requests

from .errors import ChatError

TOOL_CALL_START = "__TOOL_CALL__"
TOOL_CALL_END = "@@END_TOOL_CALL@@"

SEARCH_TOOL = "search_plugins"
SEARCH_INTENT_PHRASES = ("正在为您搜索", "为您找到", "检索相关插件", "跳转到")
CATEGORY_ANCHOR = "category-nav"


@dataclass
class TextDelta:
    text: str


@dataclass
class ToolCall:
    name: str
    arguments: Dict[str, Any] = field(default_factory=dict)
    id: Optional[str] = None

    @classmethod
    def from_payload(cls, payload: Dict[str, Any]) -> "ToolCall":
        fn = payload.get("function") or {}
        raw_args = fn.get("arguments") or {}
        if isinstance(raw_args, str):
            raw_args = json.loads(raw_args) if raw_args.strip() else {}
        if not isinstance(raw_args, dict):
            raise ValueError("tool call arguments must be a JSON object")
        return cls(name=fn.get("name") or "", arguments=raw_args, id=payload.get("id"))

    def to_payload(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "type": "function",
            "function": {"name": self.name, "arguments": json.dumps(self.arguments, ensure_ascii=False)},
        }


ChatEvent = Union[TextDelta, ToolCall]


def encode_tool_call(call: ToolCall) -> str:
    return f"{TOOL_CALL_START}{json.dumps(call.to_payload(), ensure_ascii=False)}{TOOL_CALL_END}"


def _partial_marker_len(buf: str, marker: str) -> int:
    # longest suffix of buf that is a proper prefix of marker
    for n in range(min(len(buf), len(marker) - 1), 0, -1):
        if marker.startswith(buf[-n:]):
            return n
    return 0


class ToolCallStreamParser:
    def __init__(self, logger: logging.Logger | None = None) -> None:
        self.logger = logger or logging.getLogger("plugin-hub")
        self._buf = ""
        self._in_frame = False

    @property
    def capturing(self) -> bool:
        return self._in_frame

    def feed(self, chunk: str) -> List[ChatEvent]:
        self._buf += chunk
        events: List[ChatEvent] = []
        while self._buf:
            if self._in_frame:
                end = self._buf.find(TOOL_CALL_END)
                if end == -1:
                    break
                raw, self._buf = self._buf[:end], self._buf[end + len(TOOL_CALL_END):]
                self._in_frame = False
                call = self._decode(raw)
                if call is not None:
                    events.append(call)
                continue
            start = self._buf.find(TOOL_CALL_START)
            if start == -1:
                keep = _partial_marker_len(self._buf, TOOL_CALL_START)
                text = self._buf[: len(self._buf) - keep]
                self._buf = self._buf[len(self._buf) - keep:]
                if text:
                    events.append(TextDelta(text))
                break
            if start > 0:
                events.append(TextDelta(self._buf[:start]))
            self._buf = self._buf[start + len(TOOL_CALL_START):]
            self._in_frame = True
        return events

    def close(self) -> List[ChatEvent]:
        events: List[ChatEvent] = []
        if self._in_frame:
            self.logger.warning(f"Chat stream ended inside a tool call frame; dropped {len(self._buf)} chars")
        elif self._buf:
            events.append(TextDelta(self._buf))
        self._buf = ""
        self._in_frame = False
        return events

    def _decode(self, raw: str) -> Optional[ToolCall]:
        try:
            return ToolCall.from_payload(json.loads(raw))
        except (ValueError, AttributeError) as e:
            self.logger.warning(f"Dropping malformed tool call frame ({e}): {raw[:200]}")
            return None


@dataclass
class Navigation:
    query: str = ""
    category: str = "search"
    sort: Optional[str] = None

    def to_url(self) -> str:
        params = {}
        if self.query:
            params["q"] = self.query
        params["category"] = self.category
        if self.sort:
            params["sort"] = self.sort
        return f"/?{urlencode(params)}#{CATEGORY_ANCHOR}"


def navigation_for(call: ToolCall) -> Optional[Navigation]:
    if call.name != SEARCH_TOOL:
        return None
    args = call.arguments
    # the assistant always lands on the search section
    return Navigation(query=str(args.get("query") or ""), category="search", sort=args.get("sort") or None)


def has_search_intent(text: str) -> bool:
    return any(p in text for p in SEARCH_INTENT_PHRASES)


@dataclass
class ChatReply:
    text: str
    tool_call: Optional[ToolCall] = None
    navigation: Optional[Navigation] = None


class ChatClient:
    def __init__(self, url: str, timeout: float = 60.0, session: Optional[requests.Session] = None, logger: logging.Logger | None = None):
        self.url = url
        self.timeout = timeout
        self.http = session or requests
        self.logger = logger or logging.getLogger("plugin-hub")

    def stream(self, messages: List[Dict[str, str]]) -> Iterator[ChatEvent]:
        try:
            resp = self.http.post(self.url, json={"messages": messages}, stream=True, timeout=self.timeout)
        except requests.RequestException as e:
            raise ChatError(f"Chat request failed: {e}") from e
        try:
            if resp.status_code // 100 != 2:
                try:
                    data = resp.json()
                except ValueError:
                    data = {}
                if not isinstance(data, dict):
                    data = {}
                message = str(data.get("message") or data.get("error") or f"HTTP {resp.status_code}")
                raise ChatError(message, resp.status_code)
            resp.encoding = resp.encoding or "utf-8"
            parser = ToolCallStreamParser(self.logger)
            try:
                for chunk in resp.iter_content(chunk_size=None, decode_unicode=True):
                    if chunk:
                        yield from parser.feed(chunk)
            except requests.RequestException as e:
                raise ChatError(f"Chat stream interrupted: {e}") from e
            yield from parser.close()
        finally:
            resp.close()


class Assistant:
    """Conversation state over a :class:`ChatClient`."""

    def __init__(self, client: ChatClient, monitor=None, logger: logging.Logger | None = None):
        self.client = client
        self.monitor = monitor
        self.logger = logger or logging.getLogger("plugin-hub")
        self.history: List[Dict[str, str]] = []

    def _log(self, type: str, module: str, message: str, **extra) -> None:
        if self.monitor is not None:
            self.monitor.add_log(type, module, message, **extra)

    def ask(self, text: str, on_text=None) -> ChatReply:
        self.history.append({"role": "user", "content": text})
        self._log("api", "chat", f"Sending chat request: \"{text[:20]}...\"")
        parts: List[str] = []
        tool_call: Optional[ToolCall] = None
        for event in self.client.stream(list(self.history)):
            if isinstance(event, ToolCall):
                tool_call = tool_call or event
                continue
            parts.append(event.text)
            if on_text is not None:
                on_text(event.text)
        reply_text = "".join(parts)
        self.history.append({"role": "assistant", "content": reply_text})

        navigation = navigation_for(tool_call) if tool_call else None
        if tool_call is None and has_search_intent(reply_text):
            self.logger.info("Search intent detected in reply without a tool call, forcing search")
            tool_call = ToolCall(name=SEARCH_TOOL, arguments={"query": text or reply_text[:20]})
            navigation = navigation_for(tool_call)
        if navigation is not None:
            self._log("system", "navigation", f"Assistant triggered search: {navigation.query or 'current category'}", details={"url": navigation.to_url()})
        return ChatReply(text=reply_text, tool_call=tool_call, navigation=navigation)
