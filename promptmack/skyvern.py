from typing import Any, Dict, Optional

from .vendor import VendorClient


class SkyvernClient(VendorClient):
    """Read and cancel browser-automation tasks already submitted to Skyvern.

    Submitting new tasks is not exposed: the form-automation tool is disabled.
    """

    vendor = "skyvern"

    def __init__(self, api_key: Optional[str], base_url: str = "https://api.skyvern.com/api/v1", **kwargs):
        super().__init__(api_key, base_url, **kwargs)

    def _auth_headers(self) -> Dict[str, str]:
        return {"x-api-key": self.api_key or ""}

    async def get_task(self, task_id: str) -> Dict[str, Any]:
        return await self._get(f"/tasks/{task_id}")

    async def get_task_steps(self, task_id: str) -> Any:
        return await self._get(f"/tasks/{task_id}/steps")

    async def cancel_task(self, task_id: str) -> Dict[str, Any]:
        return await self._post(f"/tasks/{task_id}/cancel")
