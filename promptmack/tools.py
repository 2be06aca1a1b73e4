"""Tool registry and dispatcher for model-requested tool calls.

The registry is built once per application from the vendor clients and then
handed to :class:`ToolDispatcher`; it is read-only and safe to share between
concurrent chat turns. Every call is validated against the tool's pydantic
parameter model before its executor runs, and every failure comes back as an
error object instead of an exception so one broken tool never sinks the turn.
"""

import asyncio
import logging
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from types import MappingProxyType
from typing import Any, Awaitable, Callable, Dict, Iterable, Iterator, List, Optional, Type

from pydantic import BaseModel, ValidationError

from .errors import AdapterFailure, SchemaViolation
from .exa import ExaClient
from .firecrawl import FirecrawlClient
from .schemas import (
    BrowserAgentArgs,
    CrawlArgs,
    DataTableArgs,
    ExtractArgs,
    FormSubmitArgs,
    MapArgs,
    ScrapeArgs,
    SearchQueryArgs,
    SimilarArgs,
    WeatherArgs,
    WebSearchArgs,
)
from .serper import SerperClient
from .weather import WeatherClient


logger = logging.getLogger("uvicorn.error")

Executor = Callable[[Any], Awaitable[Any]]

FORM_AUTOMATION_DISABLED = {
    "success": False,
    "error": "Form automation has been disabled. Please use the search or extraction tools instead.",
    "message": "The form automation tool is not available",
    "data": None,
}
BROWSER_AGENT_DISABLED = {
    "success": False,
    "error": "The FIRE-1 agent has been disabled. Please use other search or extraction tools instead.",
    "message": "The FIRE-1 agent is not available",
    "data": None,
}


def _inline_refs(schema: Any, defs: Dict[str, Any]) -> Any:
    """Replace ``$ref`` pointers with their definitions; some providers reject refs."""
    if isinstance(schema, list):
        return [_inline_refs(item, defs) for item in schema]
    if not isinstance(schema, dict):
        return schema
    ref = schema.get("$ref")
    if isinstance(ref, str) and ref.startswith("#/$defs/"):
        return _inline_refs(defs.get(ref.split("/")[-1], {}), defs)
    return {
        key: _inline_refs(value, defs)
        for key, value in schema.items()
        if key != "$defs" and not (key == "title" and isinstance(value, str))
    }


@dataclass(frozen=True)
class ToolSpec:
    name: str
    description: str
    params: Type[BaseModel]
    executor: Optional[Executor] = None
    disabled_result: Optional[Dict[str, Any]] = None

    @property
    def disabled(self) -> bool:
        return self.disabled_result is not None

    def to_openai(self) -> Dict[str, Any]:
        raw = self.params.model_json_schema(by_alias=True)
        schema = _inline_refs(raw, raw.get("$defs", {}))
        return {
            "type": "function",
            "function": {"name": self.name, "description": self.description, "parameters": schema},
        }


class ToolRegistry:
    """Immutable name -> ToolSpec mapping."""

    def __init__(self, specs: Iterable[ToolSpec]):
        table: Dict[str, ToolSpec] = {}
        for spec in specs:
            if spec.name in table:
                raise ValueError(f"duplicate tool name: {spec.name}")
            if spec.executor is None and not spec.disabled:
                raise ValueError(f"tool {spec.name} has no executor")
            table[spec.name] = spec
        self._specs = MappingProxyType(table)

    def get(self, name: str) -> Optional[ToolSpec]:
        return self._specs.get(name)

    def names(self) -> List[str]:
        return list(self._specs)

    def __contains__(self, name: object) -> bool:
        return name in self._specs

    def __iter__(self) -> Iterator[ToolSpec]:
        return iter(self._specs.values())

    def __len__(self) -> int:
        return len(self._specs)

    def to_openai_tools(self) -> List[Dict[str, Any]]:
        return [spec.to_openai() for spec in self]


class InvocationState(str, Enum):
    REQUESTED = "requested"
    EXECUTING = "executing"
    COMPLETED = "completed"
    ERRORED = "errored"


def new_call_id() -> str:
    return f"call_{uuid.uuid4().hex[:24]}"


@dataclass
class ToolInvocation:
    tool_name: str
    args: Any = field(default_factory=dict)
    call_id: str = field(default_factory=new_call_id)
    state: InvocationState = InvocationState.REQUESTED
    result: Any = None

    @property
    def ok(self) -> bool:
        return self.state is InvocationState.COMPLETED

    def to_record(self) -> Dict[str, Any]:
        """Client/storage form, matching :class:`ToolInvocationRecord`."""
        return {
            "state": "result",
            "toolCallId": self.call_id,
            "toolName": self.tool_name,
            "args": self.args,
            "result": self.result,
        }


def error_result(kind: str, message: str, **extra: Any) -> Dict[str, Any]:
    payload = {"error": message, "type": kind}
    payload.update(extra)
    return payload


class ToolDispatcher:
    def __init__(self, registry: ToolRegistry):
        self.registry = registry

    def validate(self, name: str, args: Any) -> BaseModel:
        spec = self.registry.get(name)
        if spec is None:
            raise SchemaViolation(name, "unknown tool")
        if not isinstance(args, dict):
            raise SchemaViolation(name, "arguments must be a JSON object")
        try:
            return spec.params.model_validate(args)
        except ValidationError as exc:
            errors = exc.errors(include_url=False, include_context=False, include_input=False)
            fields = ", ".join(".".join(str(p) for p in err["loc"]) or "<root>" for err in errors)
            raise SchemaViolation(name, f"invalid arguments: {fields}", errors=errors) from exc

    async def execute(self, invocation: ToolInvocation) -> ToolInvocation:
        spec = self.registry.get(invocation.tool_name)
        if spec is not None and spec.disabled:
            invocation.state = InvocationState.COMPLETED
            invocation.result = dict(spec.disabled_result or {})
            return invocation
        try:
            params = self.validate(invocation.tool_name, invocation.args)
        except SchemaViolation as exc:
            logger.info("Rejected %s call %s: %s", invocation.tool_name, invocation.call_id, exc.message)
            invocation.state = InvocationState.ERRORED
            invocation.result = error_result("schema_violation", str(exc), details=exc.errors)
            return invocation

        invocation.state = InvocationState.EXECUTING
        try:
            invocation.result = await spec.executor(params)
            invocation.state = InvocationState.COMPLETED
        except AdapterFailure as exc:
            logger.warning("Tool %s failed: %s", invocation.tool_name, exc)
            invocation.state = InvocationState.ERRORED
            invocation.result = error_result("adapter_failure", str(exc), vendor=exc.vendor)
        except Exception as exc:
            # Unexpected errors stay inside this invocation.
            logger.exception("Tool %s raised unexpectedly", invocation.tool_name)
            invocation.state = InvocationState.ERRORED
            invocation.result = error_result("adapter_failure", f"{invocation.tool_name} failed: {exc}")
        return invocation

    async def dispatch(self, name: str, args: Any, call_id: Optional[str] = None) -> ToolInvocation:
        invocation = ToolInvocation(tool_name=name, args=args, call_id=call_id or new_call_id())
        return await self.execute(invocation)

    async def execute_all(self, invocations: List[ToolInvocation]) -> List[ToolInvocation]:
        if not invocations:
            return []
        return list(await asyncio.gather(*(self.execute(inv) for inv in invocations)))


@dataclass
class ToolClients:
    serper: SerperClient
    exa: ExaClient
    firecrawl: FirecrawlClient
    weather: WeatherClient

    async def close(self) -> None:
        for client in (self.serper, self.exa, self.firecrawl, self.weather):
            await client.close()


def _data_table(args: DataTableArgs) -> Dict[str, Any]:
    return {
        "data": args.data,
        "title": args.title or "Data Table",
        "maxRows": args.max_rows or 50,
        "timestamp": datetime.now(timezone.utc).isoformat().replace("+00:00", "Z"),
    }


def build_registry(clients: ToolClients) -> ToolRegistry:
    serper, exa, firecrawl, weather = clients.serper, clients.exa, clients.firecrawl, clients.weather

    async def get_news(args: SearchQueryArgs) -> Any:
        return await serper.news(args.query)

    async def get_videos(args: SearchQueryArgs) -> Any:
        return await serper.videos(args.query)

    async def get_scholar(args: SearchQueryArgs) -> Any:
        return await serper.scholar(args.query)

    async def find_similar(args: SimilarArgs) -> Any:
        return await exa.find_similar(args.url)

    async def get_weather(args: WeatherArgs) -> Any:
        return await weather.forecast(args.latitude, args.longitude)

    async def scrape(args: ScrapeArgs) -> Any:
        actions = [a.model_dump(exclude_none=True) for a in args.actions] if args.actions else None
        return await firecrawl.scrape(args.url, formats=args.formats, actions=actions)

    async def crawl(args: CrawlArgs) -> Any:
        return await firecrawl.crawl(
            args.url, limit=args.limit or 10, formats=args.formats, exclude_paths=args.exclude_paths
        )

    async def site_map(args: MapArgs) -> Any:
        return await firecrawl.map(args.url, search=args.search, include_subdomains=bool(args.include_subdomains))

    async def web_search(args: WebSearchArgs) -> Any:
        return await firecrawl.search(
            args.query,
            limit=args.limit or 5,
            scrape_results=bool(args.scrape_results),
            formats=args.formats,
        )

    async def extract(args: ExtractArgs) -> Any:
        return await firecrawl.extract(args.urls, args.prompt, enable_web_search=bool(args.enable_web_search))

    async def data_table(args: DataTableArgs) -> Any:
        return _data_table(args)

    return ToolRegistry(
        [
            ToolSpec("getNews", "Get news articles based on a search query", SearchQueryArgs, get_news),
            ToolSpec("getVideos", "Get videos based on a search query", SearchQueryArgs, get_videos),
            ToolSpec("getScholar", "Get scholarly articles based on a search query", SearchQueryArgs, get_scholar),
            ToolSpec("findSimilar", "Find similar websites based on a URL", SimilarArgs, find_similar),
            ToolSpec("getWeather", "Get the current weather at a location", WeatherArgs, get_weather),
            ToolSpec("firecrawlScrape", "Scrape and extract clean content from a specific URL", ScrapeArgs, scrape),
            ToolSpec(
                "firecrawlCrawl", "Crawl an entire website and extract content from all pages", CrawlArgs, crawl
            ),
            ToolSpec("firecrawlMap", "Map all URLs on a website quickly", MapArgs, site_map),
            ToolSpec(
                "firecrawlSearch", "Search the web and retrieve content from search results", WebSearchArgs, web_search
            ),
            ToolSpec("firecrawlExtract", "Extract structured data from web pages using AI", ExtractArgs, extract),
            ToolSpec(
                "dataTable",
                "Create a formatted data table from structured data (arrays of objects or single objects)",
                DataTableArgs,
                data_table,
            ),
            ToolSpec(
                "skyvernFormSubmit",
                "This tool is disabled",
                FormSubmitArgs,
                disabled_result=FORM_AUTOMATION_DISABLED,
            ),
            ToolSpec(
                "firecrawlAgent",
                "This tool is disabled",
                BrowserAgentArgs,
                disabled_result=BROWSER_AGENT_DISABLED,
            ),
        ]
    )
