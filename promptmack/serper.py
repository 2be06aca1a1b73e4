from typing import Any, Dict, Optional

from .vendor import VendorClient


class SerperClient(VendorClient):
    """Google news / video / scholar search through serper.dev."""

    vendor = "serper"

    def __init__(self, api_key: Optional[str], base_url: str = "https://google.serper.dev", **kwargs):
        super().__init__(api_key, base_url, **kwargs)

    def _auth_headers(self) -> Dict[str, str]:
        return {"X-API-KEY": self.api_key or ""}

    async def news(self, query: str, location: str = "United States") -> Dict[str, Any]:
        return await self._get("/news", {"q": query, "location": location})

    async def videos(self, query: str) -> Dict[str, Any]:
        return await self._get("/videos", {"q": query})

    async def scholar(self, query: str) -> Dict[str, Any]:
        return await self._get("/scholar", {"q": query})
