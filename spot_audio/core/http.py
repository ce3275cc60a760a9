"""
Shared asynchronous HTTP transport.

Every provider talks to the network through one HttpClient, which owns a
single aiohttp.ClientSession. Responses are fully read and returned as an
immutable HttpResponse so callers never juggle open connections, and all
transport problems (timeouts, connection errors, oversized bodies) surface
as ProviderError.

Usage:
    async with HttpClient() as http:
        response = await http.request("GET", url, timeout=10)
        if response.ok:
            data = response.json()
"""

import asyncio
import json
from dataclasses import dataclass, field
from typing import Any
from urllib.parse import urlparse

import aiohttp

from spot_audio.core.exceptions import ProviderError
from spot_audio.core.logger import get_logger


logger = get_logger(__name__)

DEFAULT_USER_AGENT = (
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36"
)

# Hard cap on any single response body (audio downloads included)
DEFAULT_MAX_BODY_BYTES = 512 * 1024 * 1024

READ_CHUNK_SIZE = 64 * 1024


@dataclass(frozen=True)
class HttpResponse:
    """
    A fully-read HTTP response.
    
    Attributes:
        status: HTTP status code.
        body: Raw response body.
        headers: Response headers (case preserved as received).
        cookies: Cookies set by the response, name -> value.
    """
    status: int
    body: bytes
    headers: dict[str, str] = field(default_factory=dict)
    cookies: dict[str, str] = field(default_factory=dict)
    
    @property
    def ok(self) -> bool:
        return 200 <= self.status < 300
    
    def text(self) -> str:
        return self.body.decode("utf-8", errors="replace")
    
    def json(self) -> Any:
        """
        Decode the body as JSON.
        
        Raises:
            ValueError: If the body is not valid JSON.
        """
        return json.loads(self.body)


class HttpClient:
    """
    Thin wrapper around a shared aiohttp.ClientSession.
    
    Args:
        session: Existing session to use. If None, one is created lazily
                 and closed by close() / the async context manager.
        user_agent: Default User-Agent header.
    """
    
    def __init__(
        self,
        session: aiohttp.ClientSession | None = None,
        user_agent: str = DEFAULT_USER_AGENT
    ) -> None:
        self._session = session
        self._owns_session = session is None
        self._user_agent = user_agent
    
    async def __aenter__(self) -> "HttpClient":
        return self
    
    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.close()
    
    def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(headers={"User-Agent": self._user_agent})
            self._owns_session = True
        return self._session
    
    async def close(self) -> None:
        if self._owns_session and self._session is not None and not self._session.closed:
            await self._session.close()
    
    async def request(
        self,
        method: str,
        url: str,
        *,
        timeout: float,
        params: dict[str, str] | list[tuple[str, str]] | None = None,
        headers: dict[str, str] | None = None,
        data: dict[str, str] | bytes | None = None,
        json_body: Any = None,
        max_bytes: int = DEFAULT_MAX_BODY_BYTES
    ) -> HttpResponse:
        """
        Perform a request and read the whole body.
        
        Non-2xx responses are returned normally; check response.ok.
        
        Args:
            method: HTTP method.
            url: Absolute URL.
            timeout: Total time limit in seconds, connection included.
            params: Query parameters.
            headers: Extra request headers.
            data: Form fields or raw body.
            json_body: JSON-serializable body.
            max_bytes: Abort when the body grows beyond this size.
        
        Returns:
            HttpResponse with the complete body.
        
        Raises:
            ProviderError: On timeout, connection failure or oversized body.
        """
        host = urlparse(url).hostname
        session = self._get_session()
        
        try:
            async with session.request(
                method,
                url,
                params=params,
                headers=headers,
                data=data,
                json=json_body,
                timeout=aiohttp.ClientTimeout(total=timeout),
            ) as resp:
                chunks: list[bytes] = []
                size = 0
                async for chunk in resp.content.iter_chunked(READ_CHUNK_SIZE):
                    size += len(chunk)
                    if size > max_bytes:
                        raise ProviderError(
                            f"Response from {host} exceeded {max_bytes} bytes",
                            provider=host,
                            status=resp.status,
                        )
                    chunks.append(chunk)
                
                return HttpResponse(
                    status=resp.status,
                    body=b"".join(chunks),
                    headers=dict(resp.headers),
                    cookies={name: morsel.value for name, morsel in resp.cookies.items()},
                )
        except asyncio.TimeoutError as e:
            raise ProviderError(
                f"Request to {host} timed out after {timeout}s",
                provider=host,
                details={"url": url},
            ) from e
        except aiohttp.ClientError as e:
            raise ProviderError(
                f"Request to {host} failed: {e}",
                provider=host,
                details={"url": url, "original_error": str(e)},
            ) from e
