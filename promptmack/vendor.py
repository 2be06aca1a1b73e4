import logging
from typing import Any, Dict, Optional

import httpx

from .errors import AdapterFailure


logger = logging.getLogger("uvicorn.error")


class VendorClient:
    """Shared JSON-over-HTTP plumbing for the third-party tool APIs.

    Subclasses set ``vendor`` and override ``_auth_headers``. Any non-2xx
    response, transport error or missing API key is raised as
    :class:`AdapterFailure` so the dispatcher can turn it into an error result.
    """

    vendor = "vendor"
    requires_key = True

    def __init__(
        self,
        api_key: Optional[str],
        base_url: str,
        timeout: float = 60.0,
        client: Optional[httpx.AsyncClient] = None,
    ):
        self.api_key = api_key
        self.base_url = base_url.rstrip("/")
        # One connection pool per vendor.
        self.client = client or httpx.AsyncClient(
            timeout=timeout,
            limits=httpx.Limits(max_connections=32, max_keepalive_connections=16),
        )

    @property
    def enabled(self) -> bool:
        return bool(self.api_key) or not self.requires_key

    def _auth_headers(self) -> Dict[str, str]:
        return {}

    async def _get(self, path: str, params: Optional[Dict[str, Any]] = None) -> Any:
        return await self._request("GET", path, params=params)

    async def _post(self, path: str, payload: Optional[Dict[str, Any]] = None) -> Any:
        return await self._request("POST", path, payload=payload)

    async def _request(
        self,
        method: str,
        path: str,
        params: Optional[Dict[str, Any]] = None,
        payload: Optional[Dict[str, Any]] = None,
    ) -> Any:
        if not self.enabled:
            raise AdapterFailure(self.vendor, "missing_api_key")
        headers = {"Content-Type": "application/json", "Accept": "application/json"}
        headers.update(self._auth_headers())
        url = f"{self.base_url}{path}"
        if params:
            params = {k: v for k, v in params.items() if v is not None}
        try:
            resp = await self.client.request(method, url, params=params, json=payload, headers=headers)
            resp.raise_for_status()
            return resp.json()
        except httpx.HTTPStatusError as e:
            detail: Any
            try:
                detail = e.response.json()
            except ValueError:
                detail = e.response.text
            logger.warning("%s %s %s returned %s", self.vendor, method, path, e.response.status_code)
            raise AdapterFailure(
                self.vendor, "http_status", status_code=e.response.status_code, detail=detail
            ) from e
        except httpx.RequestError as e:
            logger.warning("%s %s %s failed: %s", self.vendor, method, path, e)
            raise AdapterFailure(self.vendor, "request_failed", detail=str(e)) from e
        except ValueError as e:
            raise AdapterFailure(self.vendor, "invalid_json", detail=str(e)) from e

    async def close(self) -> None:
        # Safe to call multiple times
        if not self.client.is_closed:
            await self.client.aclose()
