"""Shared httpx plumbing for the provider clients.

All provider clients talk JSON over an ``httpx.AsyncClient`` and map
transport and status failures onto the parley error taxonomy here, so
callers only ever see RateLimitError, ProviderAPIError or NetworkError.
Rate limits are recognized either by HTTP 429 or by a
``concurrency_limit_exceeded`` error body (Viernes answers that way
with the current limits attached).
"""

from __future__ import annotations

from typing import Any

import httpx
import structlog

from parley.errors import NetworkError, ProviderAPIError, RateLimitError

log = structlog.get_logger(__name__)

CONCURRENCY_LIMIT_ERROR = "concurrency_limit_exceeded"


def build_http_client(
    base_url: str,
    headers: dict[str, str] | None = None,
    timeout: float = 60.0,
    transport: httpx.AsyncBaseTransport | None = None,
) -> httpx.AsyncClient:
    """Create a JSON AsyncClient for one provider.

    Args:
        base_url: Provider API root.
        headers: Extra headers (auth).
        timeout: Per-request timeout in seconds.
        transport: Optional transport override (tests use httpx.MockTransport).
    """
    return httpx.AsyncClient(
        base_url=base_url,
        headers={"Content-Type": "application/json", **(headers or {})},
        timeout=timeout,
        transport=transport,
    )


def _json_body(response: httpx.Response) -> Any:
    try:
        return response.json()
    except ValueError:
        return None


def _error_message(body: Any, response: httpx.Response) -> str:
    if isinstance(body, dict):
        for key in ("message", "error", "detail"):
            value = body.get(key)
            if value:
                return value if isinstance(value, str) else str(value)
    return response.reason_phrase or "Unknown API error"


def raise_for_provider_status(response: httpx.Response, context: str) -> None:
    """Raise the typed error matching a non-2xx response.

    Args:
        response: The received response.
        context: Short description of the operation, used as message prefix.

    Raises:
        RateLimitError: On HTTP 429 or a concurrency-limit error body.
        ProviderAPIError: On any other non-success status.
    """
    if response.is_success:
        return

    body = _json_body(response)
    status = response.status_code
    details: dict[str, Any] = {
        "method": response.request.method,
        "url": str(response.request.url),
        "response": body,
    }
    is_concurrency_body = isinstance(body, dict) and body.get("error") == CONCURRENCY_LIMIT_ERROR

    if status == 429 or is_concurrency_body:
        if isinstance(body, dict) and body.get("limits") is not None:
            details["limits"] = body["limits"]
        raise RateLimitError(
            f"{context}: concurrency limit exceeded (HTTP {status})",
            details=details,
            status_code=status,
        )

    raise ProviderAPIError(
        f"{context}: {_error_message(body, response)} (HTTP {status})",
        details=details,
        status_code=status,
    )


async def request_json(
    client: httpx.AsyncClient,
    method: str,
    url: str,
    context: str,
    *,
    json: Any = None,
) -> Any:
    """Send a request and return the decoded JSON body.

    Raises:
        RateLimitError: See raise_for_provider_status.
        ProviderAPIError: On non-success status or an undecodable body.
        NetworkError: When no response was received.
    """
    try:
        response = await client.request(method, url, json=json)
    except httpx.TimeoutException as exc:
        raise NetworkError(
            f"{context}: request timed out", details={"method": method, "url": url}
        ) from exc
    except httpx.TransportError as exc:
        raise NetworkError(
            f"{context}: network error - no response received ({exc})",
            details={"method": method, "url": url},
        ) from exc

    log.debug("http.response", method=method, url=url, status=response.status_code)
    raise_for_provider_status(response, context)

    if not response.content:
        return None
    body = _json_body(response)
    if body is None:
        raise ProviderAPIError(
            f"{context}: response body is not JSON",
            details={"method": method, "url": url, "preview": response.text[:200]},
            status_code=response.status_code,
        )
    return body


async def request_object(
    client: httpx.AsyncClient,
    method: str,
    url: str,
    context: str,
    *,
    json: Any = None,
) -> dict[str, Any]:
    """Like request_json, for endpoints that must answer with a JSON object.

    Raises:
        ProviderAPIError: If the body is empty or not an object, in
            addition to everything request_json raises.
    """
    body = await request_json(client, method, url, context, json=json)
    if not isinstance(body, dict):
        raise ProviderAPIError(
            f"{context}: unexpected empty response" if body is None
            else f"{context}: expected a JSON object, got {type(body).__name__}",
            details={"method": method, "url": url},
        )
    return body
