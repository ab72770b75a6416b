"""Profile picture download over HTTP."""

from __future__ import annotations

import httpx


class HttpImageFetcher:
    """ImageFetcher port implementation using httpx."""

    def __init__(self, timeout: float = 30.0) -> None:
        self._timeout = timeout

    async def fetch(self, url: str) -> bytes:
        async with httpx.AsyncClient(timeout=self._timeout, follow_redirects=True) as client:
            resp = await client.get(url)
            if resp.status_code != 200:
                raise ValueError(f"HTTP {resp.status_code} fetching image")
            return resp.content
