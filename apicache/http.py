"""httpx-based dispatcher producing ApiResult objects."""

import functools
import time
from typing import Any, Optional

import httpx
import structlog

from apicache.cache.manager import Dispatch
from apicache.types import ApiResult

logger = structlog.get_logger()

QUERY_METHODS = ("GET", "HEAD", "DELETE")
BODY_METHODS = ("POST", "PUT", "PATCH")


class HttpDispatcher:
    """Sends requests to one upstream API and times them.

    GET, HEAD and DELETE send ``params`` as the query string; POST, PUT and
    PATCH send them as a JSON body. There is no retry policy.

    Example:
        ```python
        async with HttpDispatcher("https://api.example.com/v1", headers=auth) as http:
            result = await manager.send_cached_request(
                "example",
                "search",
                http.bind("search", params),
                params=params,
            )
        ```
    """

    def __init__(
        self,
        base_url: str,
        *,
        headers: Optional[dict[str, str]] = None,
        timeout: float = 60.0,
        client: Optional[httpx.AsyncClient] = None,
    ) -> None:
        """Initialize the dispatcher.

        Args:
            base_url: Base URL every endpoint is joined to
            headers: Headers sent with every request
            timeout: Request timeout in seconds
            client: Existing httpx client (owned by the caller)
        """
        self.base_url = base_url.rstrip("/")
        self.headers = headers or {}
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(timeout=timeout)

    def build_url(self, endpoint: str) -> str:
        return f"{self.base_url}/{endpoint.lstrip('/')}"

    async def send(
        self,
        endpoint: str,
        params: Optional[dict[str, Any]] = None,
        method: str = "GET",
        *,
        attributes: Optional[str] = None,
        credits: Optional[int] = None,
    ) -> ApiResult:
        """Send one request.

        Args:
            endpoint: Endpoint relative to ``base_url``
            params: Query parameters or JSON body
            method: HTTP method
            attributes: Attributes copied onto the result
            credits: Credits copied onto the result

        Returns:
            ApiResult for the response, whatever its status code

        Raises:
            ValueError: If the method is not supported
            httpx.HTTPError: On transport failures
        """
        method = method.upper()
        if method not in QUERY_METHODS + BODY_METHODS:
            raise ValueError(f"Unsupported HTTP method: {method}")

        url = self.build_url(endpoint)
        request_kwargs: dict[str, Any] = {"headers": self.headers}
        if params:
            if method in QUERY_METHODS:
                request_kwargs["params"] = params
            else:
                request_kwargs["json"] = params

        start = time.perf_counter()
        response = await self._client.request(method, url, **request_kwargs)
        elapsed = time.perf_counter() - start

        logger.debug(
            "http_request_completed",
            method=method,
            url=str(response.request.url),
            status_code=response.status_code,
            response_time=round(elapsed, 4),
        )

        return ApiResult.from_httpx(
            response,
            params=params,
            base_url=self.base_url,
            response_time=elapsed,
            attributes=attributes,
            credits=credits,
        )

    def bind(self, endpoint: str, params: Optional[dict[str, Any]] = None, method: str = "GET") -> Dispatch:
        """Freeze a request into a zero-argument dispatch callable."""
        return functools.partial(self.send, endpoint, params, method)

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()

    async def __aenter__(self) -> "HttpDispatcher":
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.aclose()
