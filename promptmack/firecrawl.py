from typing import Any, Dict, List, Optional
from urllib.parse import urlparse

from .errors import AdapterFailure
from .poller import JobPoller
from .vendor import VendorClient


CRAWL_PENDING_MESSAGE = "Crawl is still in progress. The results will be available soon."
EXTRACT_PENDING_MESSAGE = "Extraction is still in progress. The results will be available soon."
EMPTY_MAP_MESSAGE = "No URLs found on this website"


def _path_depth(url: str) -> int:
    try:
        path = urlparse(url).path
    except ValueError:
        return 0
    return len([part for part in path.split("/") if part])


def _display_name(url: str) -> str:
    name = url
    for prefix in ("https://", "http://"):
        if name.startswith(prefix):
            name = name[len(prefix):]
            break
    return name[:-1] if name.endswith("/") else name


def build_site_graph(urls: List[str]) -> Dict[str, Any]:
    """Turn a flat URL list into nodes plus parent/child edges.

    An edge runs from A to B whenever B lives under A's path (``B`` starts
    with ``A + "/"``). Nodes are grouped by depth: root pages, first level,
    everything deeper.
    """
    nodes = []
    for index, link in enumerate(urls):
        level = _path_depth(link)
        nodes.append(
            {
                "id": f"node-{index}",
                "url": link,
                "name": _display_name(link),
                "group": 1 if level < 1 else 2 if level < 2 else 3,
                "level": level,
            }
        )
    edges = []
    for source in nodes:
        prefix = source["url"] + "/"
        for target in nodes:
            if target is not source and target["url"].startswith(prefix):
                edges.append({"source": source["id"], "target": target["id"], "value": 1})
    graph: Dict[str, Any] = {"nodes": nodes, "links": edges, "total": len(nodes)}
    if not nodes:
        graph["message"] = EMPTY_MAP_MESSAGE
    return graph


class FirecrawlClient(VendorClient):
    vendor = "firecrawl"

    def __init__(
        self,
        api_key: Optional[str],
        base_url: str = "https://api.firecrawl.dev/v1",
        poller: Optional[JobPoller] = None,
        **kwargs,
    ):
        super().__init__(api_key, base_url, **kwargs)
        self.poller = poller or JobPoller()

    def _auth_headers(self) -> Dict[str, str]:
        return {"Authorization": f"Bearer {self.api_key}"}

    async def scrape(
        self,
        url: str,
        formats: Optional[List[str]] = None,
        actions: Optional[List[Dict[str, Any]]] = None,
    ) -> Dict[str, Any]:
        payload: Dict[str, Any] = {"url": url, "formats": formats or ["markdown"]}
        if actions:
            payload["actions"] = actions
        return await self._post("/scrape", payload)

    async def _submit(self, path: str, payload: Dict[str, Any]) -> str:
        data = await self._post(path, payload)
        job_id = data.get("id") if isinstance(data, dict) else None
        if not job_id:
            raise AdapterFailure(self.vendor, "missing_job_id", detail=data)
        return str(job_id)

    async def crawl_status(self, job_id: str) -> Dict[str, Any]:
        return await self._get(f"/crawl/{job_id}")

    async def extract_status(self, job_id: str) -> Dict[str, Any]:
        return await self._get(f"/extract/{job_id}")

    async def crawl(
        self,
        url: str,
        limit: int = 10,
        formats: Optional[List[str]] = None,
        exclude_paths: Optional[List[str]] = None,
    ) -> Dict[str, Any]:
        payload: Dict[str, Any] = {
            "url": url,
            "limit": limit,
            "scrapeOptions": {"formats": formats or ["markdown"]},
        }
        if exclude_paths:
            payload["excludePaths"] = exclude_paths
        return await self.poller.run(
            lambda: self._submit("/crawl", payload),
            self.crawl_status,
            CRAWL_PENDING_MESSAGE,
            vendor=self.vendor,
        )

    async def extract(self, urls: List[str], prompt: str, enable_web_search: bool = False) -> Dict[str, Any]:
        payload = {"urls": urls, "prompt": prompt, "enableWebSearch": enable_web_search}
        return await self.poller.run(
            lambda: self._submit("/extract", payload),
            self.extract_status,
            EXTRACT_PENDING_MESSAGE,
            vendor=self.vendor,
        )

    async def map(self, url: str, search: Optional[str] = None, include_subdomains: bool = False) -> Dict[str, Any]:
        payload: Dict[str, Any] = {"url": url, "includeSubdomains": include_subdomains}
        if search:
            payload["search"] = search
        data = await self._post("/map", payload)
        if not isinstance(data, dict):
            return {"nodes": [], "links": [], "error": "unexpected response"}
        links = data.get("links")
        if (data.get("success") or data.get("status") == "success") and isinstance(links, list):
            return build_site_graph([str(link) for link in links])
        if data.get("error"):
            return {"nodes": [], "links": [], "error": data["error"]}
        return data

    async def search(
        self,
        query: str,
        limit: int = 5,
        scrape_results: bool = False,
        formats: Optional[List[str]] = None,
    ) -> Dict[str, Any]:
        payload: Dict[str, Any] = {"query": query, "limit": limit}
        if scrape_results:
            payload["scrapeOptions"] = {"formats": formats or ["markdown"]}
        data = await self._post("/search", payload)
        if not isinstance(data, dict):
            return {"query": query, "error": "unexpected response"}
        if data.get("success") and isinstance(data.get("data"), list):
            return {
                "query": query,
                "results": [
                    {
                        "title": item.get("title"),
                        "url": item.get("url"),
                        "description": item.get("description"),
                        "markdown": item.get("markdown"),
                        "html": item.get("html"),
                        "metadata": item.get("metadata"),
                    }
                    for item in data["data"]
                    if isinstance(item, dict)
                ],
            }
        if data.get("error"):
            return {"query": query, "error": data["error"]}
        return data
