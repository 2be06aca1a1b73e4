from typing import Annotated, Any, Dict, List, Literal, Optional

from pydantic import BaseModel, BeforeValidator, ConfigDict, Field, StrictBool, StrictFloat, StrictInt, StrictStr


ScrapeFormat = Literal["markdown", "html", "rawHtml", "links", "screenshot"]
SearchFormat = Literal["markdown", "html", "rawHtml", "links"]
ToolCallState = Literal["call", "partial-call", "result"]


def _whole_float_to_int(value: Any) -> Any:
    if isinstance(value, float) and value.is_integer():
        return int(value)
    return value


# Models may send integral counts as JSON floats (10.0); fractions and strings still fail.
WholeNumber = Annotated[StrictInt, BeforeValidator(_whole_float_to_int)]


class ToolArgs(BaseModel):
    """Base for tool parameter models: camelCase on the wire, snake_case in code."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")


class SearchQueryArgs(ToolArgs):
    query: StrictStr = Field(description="Search query")


class SimilarArgs(ToolArgs):
    url: StrictStr = Field(description="URL to find similar websites for")


class WeatherArgs(ToolArgs):
    latitude: StrictFloat = Field(description="Latitude of the location")
    longitude: StrictFloat = Field(description="Longitude of the location")


class ScrapeAction(ToolArgs):
    type: StrictStr
    milliseconds: Optional[StrictFloat] = None
    selector: Optional[StrictStr] = None
    text: Optional[StrictStr] = None
    key: Optional[StrictStr] = None


class ScrapeArgs(ToolArgs):
    url: StrictStr = Field(description="The URL to scrape content from")
    formats: Optional[List[ScrapeFormat]] = Field(
        default=None, description="Formats to return, defaults to markdown"
    )
    actions: Optional[List[ScrapeAction]] = Field(
        default=None, description="Optional actions to perform before scraping (click, wait, scroll, etc.)"
    )


class CrawlArgs(ToolArgs):
    url: StrictStr = Field(description="The base URL to start crawling from")
    limit: Optional[WholeNumber] = Field(default=None, ge=1, description="Maximum number of pages to crawl")
    formats: Optional[List[ScrapeFormat]] = Field(
        default=None, description="Formats to return, defaults to markdown"
    )
    exclude_paths: Optional[List[StrictStr]] = Field(
        default=None, alias="excludePaths", description="Path patterns to exclude from crawling"
    )


class MapArgs(ToolArgs):
    url: StrictStr = Field(description="The URL of the website to map")
    search: Optional[StrictStr] = Field(default=None, description="Optional search term to filter URLs")
    include_subdomains: Optional[StrictBool] = Field(
        default=None, alias="includeSubdomains", description="Whether to include subdomains in the mapping"
    )


class WebSearchArgs(ToolArgs):
    query: StrictStr = Field(description="The search query")
    limit: Optional[WholeNumber] = Field(default=None, ge=1, description="Number of results to return")
    scrape_results: Optional[StrictBool] = Field(
        default=None, alias="scrapeResults", description="Whether to also scrape content from the search results"
    )
    formats: Optional[List[SearchFormat]] = Field(
        default=None, description="Formats to return if scraping results"
    )


class ExtractArgs(ToolArgs):
    urls: List[StrictStr] = Field(description="URLs to extract data from (can include wildcards like domain.com/*)")
    prompt: StrictStr = Field(description="Description of what data to extract")
    enable_web_search: Optional[StrictBool] = Field(
        default=None,
        alias="enableWebSearch",
        description="Whether to allow following links outside the specified domain",
    )


class DataTableArgs(ToolArgs):
    data: Any = Field(
        description="The data to display in table format - can be an array of objects or a single object"
    )
    title: Optional[StrictStr] = Field(default=None, description="Optional title for the table")
    max_rows: Optional[WholeNumber] = Field(
        default=None, alias="maxRows", ge=1, description="Maximum number of rows to display (default: 50)"
    )


class NavigationPayload(ToolArgs):
    name: StrictStr
    email: StrictStr
    additional_information: Optional[StrictStr] = Field(default=None, alias="additionalInformation")


class FormSubmitArgs(ToolArgs):
    url: StrictStr = Field(description="Target URL for form submission")
    navigation_goal: StrictStr = Field(alias="navigationGoal", description="Goal for navigating the webpage")
    navigation_payload: NavigationPayload = Field(alias="navigationPayload")


class BrowserAgentArgs(ToolArgs):
    url: StrictStr = Field(description="The URL to navigate")
    prompt: StrictStr = Field(description="Instructions for what the agent should do on the website")
    formats: Optional[List[ScrapeFormat]] = Field(
        default=None, description="Formats to return, defaults to markdown"
    )


class ToolInvocationRecord(BaseModel):
    """A tool call as it travels inside a chat message (client and storage form)."""

    state: ToolCallState = "result"
    tool_call_id: str = Field(alias="toolCallId")
    tool_name: str = Field(alias="toolName")
    args: Any = None
    result: Any = None

    model_config = ConfigDict(populate_by_name=True, extra="allow")


class ChatMessage(BaseModel):
    id: Optional[str] = None
    role: Literal["user", "assistant"]
    content: Any = ""
    tool_invocations: List[ToolInvocationRecord] = Field(default_factory=list, alias="toolInvocations")
    created_at: Optional[str] = Field(default=None, alias="createdAt")

    model_config = ConfigDict(populate_by_name=True, extra="allow")

    def has_content(self) -> bool:
        if self.tool_invocations:
            return True
        if self.content is None:
            return False
        if isinstance(self.content, str):
            return bool(self.content.strip())
        if isinstance(self.content, (list, dict)):
            return len(self.content) > 0
        return True

    def to_storage(self) -> Dict[str, Any]:
        return self.model_dump(by_alias=True, exclude_none=True)


class ChatRequest(BaseModel):
    id: Optional[str] = None
    messages: List[ChatMessage] = Field(default_factory=list)


class Credentials(BaseModel):
    email: str
    password: str
