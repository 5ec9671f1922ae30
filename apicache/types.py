"""Record types exchanged between the cache core and its collaborators."""

from datetime import datetime
from typing import TYPE_CHECKING, Any, Optional

from pydantic import BaseModel, Field

if TYPE_CHECKING:
    import httpx


def headers_to_dict(headers: Any) -> dict[str, list[str]]:
    """Group possibly repeated headers into ``name -> [values]``."""
    grouped: dict[str, list[str]] = {}
    items = headers.multi_items() if hasattr(headers, "multi_items") else dict(headers).items()
    for name, value in items:
        if isinstance(value, (list, tuple)):
            grouped.setdefault(name, []).extend(str(v) for v in value)
        else:
            grouped.setdefault(name, []).append(str(value))
    return grouped


class ApiResult(BaseModel):
    """Result of one upstream HTTP call, fresh or served from cache.

    Attributes:
        params: Original request parameters
        base_url: Base URL of the API
        full_url: Final request URL
        method: HTTP method
        request_headers: Headers sent upstream
        request_body: Body sent upstream
        attributes: Free-form caller attributes stored with the response
        credits: Credits charged for the call
        cost: Monetary cost of the call
        status_code: HTTP status code
        headers: Response headers
        body: Response body
        response_time: Seconds the call took
        is_cached: True when served from the cache
    """

    params: dict[str, Any] = Field(default_factory=dict)
    base_url: Optional[str] = None
    full_url: Optional[str] = None
    method: Optional[str] = None
    request_headers: Optional[dict[str, Any]] = None
    request_body: Optional[str] = None
    attributes: Optional[str] = None
    credits: Optional[int] = None
    cost: Optional[float] = None
    status_code: int
    headers: dict[str, Any] = Field(default_factory=dict)
    body: Optional[str] = None
    response_time: Optional[float] = None
    is_cached: bool = False

    @property
    def is_successful(self) -> bool:
        return 200 <= self.status_code < 300

    @property
    def response_size(self) -> int:
        return len(self.body.encode("utf-8")) if self.body else 0

    @classmethod
    def from_httpx(
        cls,
        response: "httpx.Response",
        *,
        params: Optional[dict[str, Any]] = None,
        base_url: Optional[str] = None,
        response_time: Optional[float] = None,
        attributes: Optional[str] = None,
        credits: Optional[int] = None,
        cost: Optional[float] = None,
    ) -> "ApiResult":
        """Build a result from an ``httpx.Response``.

        Args:
            response: Completed response (its ``request`` is captured too)
            params: Original request parameters
            base_url: Base URL of the API
            response_time: Seconds the call took; falls back to ``response.elapsed``
            attributes: Caller attributes
            credits: Credits charged
            cost: Monetary cost

        Returns:
            ApiResult
        """
        request = response.request
        if response_time is None:
            try:
                response_time = response.elapsed.total_seconds()
            except RuntimeError:
                response_time = None

        request_body = request.content.decode("utf-8", errors="replace") if request.content else None

        return cls(
            params=params or {},
            base_url=base_url,
            full_url=str(request.url),
            method=request.method,
            request_headers=headers_to_dict(request.headers),
            request_body=request_body,
            attributes=attributes,
            credits=credits,
            cost=cost,
            status_code=response.status_code,
            headers=headers_to_dict(response.headers),
            body=response.text,
            response_time=response_time,
        )


class ResponseMetadata(BaseModel):
    """Everything stored with a response besides its key.

    Only ``response_body`` is required by the repository; every other field
    defaults to ``None``.
    """

    version: Optional[str] = None
    endpoint: Optional[str] = None
    base_url: Optional[str] = None
    full_url: Optional[str] = None
    method: Optional[str] = None
    attributes: Optional[str] = None
    credits: Optional[int] = None
    cost: Optional[float] = None
    request_params_summary: Optional[str] = None
    request_headers: Optional[dict[str, Any]] = None
    request_body: Optional[str] = None
    response_headers: Optional[dict[str, Any]] = None
    response_body: Optional[str] = None
    response_status_code: Optional[int] = None
    response_time: Optional[float] = None


class CachedResponse(BaseModel):
    """A cache row decoded back to its logical form."""

    key: str
    client: str
    version: Optional[str] = None
    endpoint: Optional[str] = None
    base_url: Optional[str] = None
    full_url: Optional[str] = None
    method: Optional[str] = None
    attributes: Optional[str] = None
    credits: Optional[int] = None
    cost: Optional[float] = None
    request_params_summary: Optional[str] = None
    request_headers: Optional[dict[str, Any]] = None
    request_body: Optional[str] = None
    response_headers: Optional[dict[str, Any]] = None
    response_body: Optional[str] = None
    response_status_code: Optional[int] = None
    response_size: Optional[int] = None
    response_time: Optional[float] = None
    expires_at: Optional[datetime] = None

    def to_api_result(self, params: Optional[dict[str, Any]] = None) -> ApiResult:
        """Rebuild an ApiResult flagged as served from cache."""
        return ApiResult(
            params=params or {},
            base_url=self.base_url,
            full_url=self.full_url,
            method=self.method,
            request_headers=self.request_headers,
            request_body=self.request_body,
            attributes=self.attributes,
            credits=self.credits,
            cost=self.cost,
            status_code=self.response_status_code or 200,
            headers=self.response_headers or {},
            body=self.response_body,
            response_time=self.response_time,
            is_cached=True,
        )
