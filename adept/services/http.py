from __future__ import annotations

import time
from typing import Any

import httpx

from ..core.logging import get_logger
from ..tools.exceptions import IntegrationAuthError, IntegrationError, ToolErrorType
from .backoff import RetryContext, RetryOptions, classify_failure, with_retry

logger = get_logger(name=__name__)

_STATUS_KINDS = {
    400: ToolErrorType.INVALID_REQUEST,
    404: ToolErrorType.NOT_FOUND,
    409: ToolErrorType.INVALID_REQUEST,
    422: ToolErrorType.INVALID_REQUEST,
}


def to_integration_error(integration_id: str, error: httpx.HTTPError) -> IntegrationError:
    """Translate a final httpx failure into the integration error taxonomy."""
    if isinstance(error, httpx.HTTPStatusError):
        status = error.response.status_code
        classification = classify_failure(error)
        if status in (401, 403) and not classification.rate_limited:
            return IntegrationAuthError(
                f"{integration_id} rejected the credentials (HTTP {status}).",
                integration_id=integration_id,
                hint="Reconnect the integration and try again.",
            )
        kind = _STATUS_KINDS.get(status, ToolErrorType.UPSTREAM)
        return IntegrationError(kind, f"{integration_id} request failed with HTTP {status}.", integration_id=integration_id)
    return IntegrationError(
        ToolErrorType.UPSTREAM,
        f"{integration_id} is unreachable: {error}",
        integration_id=integration_id,
    )


class IntegrationHttpClient:
    """Thin httpx wrapper that runs every request through the backoff engine.

    Non-success responses raise ``httpx.HTTPStatusError`` inside the retry loop
    so status and headers drive retry classification; once retries are spent
    the failure surfaces as an ``IntegrationError``.
    """

    def __init__(
        self,
        integration_id: str,
        base_url: str,
        *,
        client: httpx.AsyncClient | None = None,
        timeout_seconds: float = 10.0,
        headers: dict[str, str] | None = None,
        retry_options: RetryOptions | None = None,
    ) -> None:
        self._integration_id = integration_id
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(
            base_url=base_url.rstrip("/"),
            timeout=httpx.Timeout(timeout_seconds),
            headers=headers or {},
        )
        self._retry_options = retry_options or RetryOptions()

    @property
    def integration_id(self) -> str:
        return self._integration_id

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()

    async def __aenter__(self) -> "IntegrationHttpClient":
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.aclose()

    async def request(
        self,
        method: str,
        path: str,
        *,
        json: Any | None = None,
        params: dict[str, Any] | None = None,
        headers: dict[str, str] | None = None,
    ) -> httpx.Response:
        async def _send() -> httpx.Response:
            start = time.perf_counter()
            response = await self._client.request(method, path, json=json, params=params, headers=headers)
            logger.debug(
                "integration_http_response",
                integration=self._integration_id,
                method=method.upper(),
                path=path,
                status=response.status_code,
                latency=round(time.perf_counter() - start, 4),
            )
            response.raise_for_status()
            return response

        context = RetryContext(integration_id=self._integration_id, operation=f"{method.upper()} {path}")
        try:
            return await with_retry(_send, context, self._retry_options)
        except IntegrationError:
            raise
        except httpx.HTTPError as exc:
            raise to_integration_error(self._integration_id, exc) from exc

    async def get_json(self, path: str, *, params: dict[str, Any] | None = None) -> Any:
        response = await self.request("GET", path, params=params)
        return response.json()

    async def post_json(self, path: str, payload: Any) -> Any:
        response = await self.request("POST", path, json=payload)
        return response.json() if response.content else None


__all__ = ["IntegrationHttpClient", "to_integration_error"]
