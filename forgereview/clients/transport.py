"""Async HTTP transport for forge REST and GraphQL APIs.

A ForgeTransport issues exactly one request per call and always hands back a
result value, never an exception, for anything that goes wrong on the wire:

- TransportResponse for 2xx responses (GraphQL: 2xx without an "errors" member)
- TransportFailure for everything else, including timeouts and connection errors

Classifying failures is left to the caller (see forgereview.utils.errors).
asyncio.CancelledError is not caught, so callers can cancel in-flight calls;
every call also takes an optional per-request timeout.
"""

from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import Any, Literal

import httpx

from forgereview.utils.config import get_http_timeout_seconds
from forgereview.utils.logging import get_logger

logger = get_logger(__name__)

HttpMethod = Literal["GET", "POST", "PUT", "PATCH", "DELETE"]


@dataclass(frozen=True)
class TransportResponse:
    """A successful call."""

    status_code: int
    body: Any
    headers: Mapping[str, str] = field(default_factory=dict)

    @property
    def ok(self) -> bool:
        return True


@dataclass(frozen=True)
class TransportFailure:
    """A failed call. status_code is None when no response was received."""

    status_code: int | None
    body: Any
    reason: str

    @property
    def ok(self) -> bool:
        return False


TransportResult = TransportResponse | TransportFailure


def next_page_url(headers: Mapping[str, str]) -> str | None:
    """The rel="next" target of an RFC 8288 Link header, if there is one."""
    link = headers.get("link") or headers.get("Link")
    if not link:
        return None
    for part in link.split(","):
        target, _, rest = part.partition(";")
        rels = [p.strip() for p in rest.split(";")]
        if 'rel="next"' in rels or "rel=next" in rels:
            return target.strip().strip("<>")
    return None


def _decode_body(response: httpx.Response, raw: bool) -> Any:
    if raw:
        return response.content
    if not response.content:
        return None
    content_type = response.headers.get("content-type", "")
    if "json" in content_type:
        return response.json()
    return response.text


class ForgeTransport:
    """Async client for one forge host, authenticated with a single token."""

    def __init__(
        self,
        token: str,
        api_url: str,
        graphql_url: str | None = None,
        *,
        headers: Mapping[str, str] | None = None,
        timeout: float | None = None,
        client: httpx.AsyncClient | None = None,
    ):
        """Initialize the transport.

        Args:
            token: Bearer token sent with every request
            api_url: REST API root, e.g. https://api.github.com
            graphql_url: GraphQL endpoint, or None if the forge is REST-only here
            headers: Extra default headers (Accept, API version, ...)
            timeout: Default per-request timeout in seconds
            client: Pre-built httpx.AsyncClient (tests inject one with a MockTransport)
        """
        if not token:
            raise ValueError("A forge token is required")

        self.api_url = api_url.rstrip("/")
        self.graphql_url = graphql_url
        self._token = token

        default_headers = {"Authorization": f"Bearer {token}"}
        default_headers.update(headers or {})

        if client is None:
            client = httpx.AsyncClient(
                headers=default_headers,
                timeout=timeout if timeout is not None else get_http_timeout_seconds(),
            )
        else:
            client.headers.update(default_headers)
        self._client = client

    async def aclose(self) -> None:
        """Close the HTTP client."""
        await self._client.aclose()

    async def __aenter__(self) -> "ForgeTransport":
        return self

    async def __aexit__(self, *args: Any) -> None:
        await self.aclose()

    def url_for(self, path: str) -> str:
        if path.startswith(("http://", "https://")):
            return path
        return f"{self.api_url}{path}"

    async def rest(
        self,
        method: HttpMethod,
        path: str,
        *,
        payload: Any = None,
        params: Mapping[str, Any] | None = None,
        accept: str | None = None,
        raw: bool = False,
        timeout: float | None = None,
    ) -> TransportResult:
        """Issue one REST call.

        Args:
            method: HTTP method
            path: Path under the API root, or an absolute URL
            payload: JSON body, if any
            params: Query string parameters
            accept: Accept header override (diff media types, raw content, ...)
            raw: Return the body as bytes instead of decoding it
            timeout: Per-request timeout override in seconds
        """
        headers = {"Accept": accept} if accept else None
        try:
            response = await self._client.request(
                method,
                self.url_for(path),
                json=payload,
                params=params,
                headers=headers,
                timeout=timeout if timeout is not None else httpx.USE_CLIENT_DEFAULT,
            )
        except httpx.TimeoutException as e:
            logger.warning(f"{method} {path} timed out")
            return TransportFailure(status_code=None, body=None, reason=f"timeout: {e}")
        except httpx.HTTPError as e:
            logger.warning(f"{method} {path} failed: {e}")
            return TransportFailure(status_code=None, body=None, reason=str(e))

        logger.debug(f"{method} {path} -> {response.status_code}")

        try:
            body = _decode_body(response, raw=raw and response.is_success)
        except ValueError:
            body = response.text

        if not response.is_success:
            return TransportFailure(
                status_code=response.status_code,
                body=body,
                reason=response.reason_phrase,
            )
        return TransportResponse(
            status_code=response.status_code, body=body, headers=dict(response.headers)
        )

    async def graphql(
        self,
        query: str,
        variables: Mapping[str, Any] | None = None,
        *,
        timeout: float | None = None,
    ) -> TransportResult:
        """Issue one GraphQL call. On success the body is the "data" member."""
        if not self.graphql_url:
            raise ValueError("This transport has no GraphQL endpoint configured")

        result = await self.rest(
            "POST",
            self.graphql_url,
            payload={"query": query, "variables": dict(variables or {})},
            accept="application/json",
            timeout=timeout,
        )
        if not result.ok:
            return result

        body = result.body
        if not isinstance(body, Mapping):
            return TransportFailure(
                status_code=result.status_code, body=body, reason="malformed GraphQL response"
            )
        if body.get("errors"):
            return TransportFailure(
                status_code=result.status_code, body=body, reason="GraphQL errors"
            )
        return TransportResponse(
            status_code=result.status_code, body=body.get("data"), headers=result.headers
        )
