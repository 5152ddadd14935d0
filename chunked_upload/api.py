import logging
import time
from typing import Any

import httpx

from chunked_upload.config import settings
from chunked_upload.errors import ResponseStatusError, TransportError
from chunked_upload.log import log_request
from chunked_upload.metrics import http_request_duration_seconds
from chunked_upload.tracing import tracer


class ApiClient:
    """Thin async wrapper over httpx bound to the upload API base URL."""

    def __init__(
        self,
        base_url: str | None = None,
        access_token: str | None = None,
        *,
        timeout: float | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self.base_url = base_url or settings.upload_base_url
        token = settings.access_token if access_token is None else access_token
        headers = {"User-Agent": f"{settings.app_name}/{settings.app_version}"}
        if token:
            headers["Authorization"] = f"Bearer {token}"
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(
            base_url=self.base_url,
            headers=headers,
            timeout=timeout if timeout is not None else settings.request_timeout_seconds,
            transport=transport,
        )

    async def __aenter__(self) -> "ApiClient":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()

    async def request(
        self,
        method: str,
        path: str,
        *,
        operation: str,
        json: Any = None,
        content: bytes | None = None,
        params: dict | None = None,
        headers: dict | None = None,
    ) -> httpx.Response:
        start = time.perf_counter()
        with tracer.start_as_current_span(f"upload_api.{operation}") as span:
            span.set_attribute("http.method", method)
            span.set_attribute("http.route", path)
            try:
                response = await self._client.request(
                    method, path, json=json, content=content, params=params, headers=headers
                )
            except httpx.TransportError as exc:
                duration_ms = round((time.perf_counter() - start) * 1000, 2)
                log_request(
                    {
                        "event": "request_failed",
                        "operation": operation,
                        "method": method,
                        "path": path,
                        "duration_ms": duration_ms,
                        "error_class": "transport_error",
                        "detail": str(exc),
                    },
                    level=logging.WARNING,
                )
                raise TransportError(method, path, exc) from exc
            span.set_attribute("http.status_code", response.status_code)

        duration_ms = round((time.perf_counter() - start) * 1000, 2)
        http_request_duration_seconds.labels(
            method=method,
            operation=operation,
            status_code=str(response.status_code),
        ).observe(duration_ms / 1000.0)
        log_request(
            {
                "event": "request_completed",
                "operation": operation,
                "method": method,
                "path": path,
                "status_code": response.status_code,
                "duration_ms": duration_ms,
            }
        )
        return response


def expect_status(response: httpx.Response, *expected: int) -> httpx.Response:
    if expected:
        if response.status_code not in expected:
            raise ResponseStatusError.from_response(response)
    elif not response.is_success:
        raise ResponseStatusError.from_response(response)
    return response


def json_body(response: httpx.Response) -> dict:
    try:
        body = response.json()
    except ValueError as exc:
        raise ResponseStatusError(
            response.status_code, "Malformed API Response", body=response.text
        ) from exc
    if not isinstance(body, dict):
        raise ResponseStatusError(response.status_code, "Malformed API Response", body=body)
    return body
