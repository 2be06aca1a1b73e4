import re
from typing import Any, Dict, Optional, Tuple

from .vendor import VendorClient


_SCHEME_RE = re.compile(r"^https?://", re.IGNORECASE)


def split_domain(url: str) -> Tuple[str, str]:
    """Return ``(base_domain, company_name)`` for a URL.

    ``https://www.lemlist.com/pricing`` gives ``("lemlist.com", "lemlist")``.
    """
    base = _SCHEME_RE.sub("", url.strip())
    if base.lower().startswith("www."):
        base = base[4:]
    base_domain = base.split("/")[0]
    return base_domain, base_domain.split(".")[0]


class ExaClient(VendorClient):
    vendor = "exa"

    def __init__(self, api_key: Optional[str], base_url: str = "https://api.exa.ai", **kwargs):
        super().__init__(api_key, base_url, **kwargs)

    def _auth_headers(self) -> Dict[str, str]:
        return {"x-api-key": self.api_key or ""}

    async def find_similar(self, url: str, num_results: int = 10) -> Dict[str, Any]:
        # Results never include the queried domain.
        base_domain, company_name = split_domain(url)
        payload = {
            "query": url,
            "url": url,
            "numResults": num_results,
            "excludeDomains": [base_domain],
            "excludeText": [company_name],
            "contents": {"highlights": True, "summary": True},
        }
        return await self._post("/findSimilar", payload)
