"""HTTP tools for calling external APIs."""

import time
from typing import Any
from urllib.parse import urlparse

import httpx

from agent_engine.agent.guards import get_tool_timeout
from agent_engine.agent.tools.base import (
    Tool,
    ToolContext,
    ToolMetadata,
    ToolResult,
    ValidationResult,
)

HTTP_CREDITS = 5


def _validate_url(params: dict[str, Any]) -> ValidationResult:
    url = params.get("url")
    if not url or not isinstance(url, str):
        return ValidationResult.invalid("url parameter required (string)")

    parsed = urlparse(url)
    if parsed.scheme not in ("http", "https") or not parsed.netloc:
        return ValidationResult.invalid("Invalid URL format")
    return ValidationResult.ok()


def _to_result(response: httpx.Response, started: float) -> ToolResult:
    body = response.text
    if "application/json" in response.headers.get("content-type", ""):
        try:
            body = response.json()
        except ValueError:
            # mislabelled body, keep the raw text
            pass

    return ToolResult(
        success=response.is_success,
        data={
            "status": response.status_code,
            "status_text": response.reason_phrase,
            "headers": dict(response.headers),
            "body": body,
        },
        error=None
        if response.is_success
        else f"HTTP {response.status_code}: {response.reason_phrase}",
        metadata=ToolMetadata(
            duration=int((time.monotonic() - started) * 1000), credits=HTTP_CREDITS
        ),
    )


class _HttpTool(Tool):
    category = "integration"

    def __init__(self, client: httpx.Client | None = None):
        self._client = client

    def _get_client(self) -> httpx.Client:
        if self._client is None:
            self._client = httpx.Client(
                timeout=get_tool_timeout(self.name), follow_redirects=True
            )
        return self._client

    def validate(self, params: dict[str, Any]) -> ValidationResult:
        return _validate_url(params)

    def estimate_cost(self, params: dict[str, Any]) -> int:
        return HTTP_CREDITS

    def execute(self, params: dict[str, Any], context: ToolContext) -> ToolResult:
        started = time.monotonic()
        try:
            response = self._send(params)
        except httpx.HTTPError as e:
            return ToolResult(
                success=False,
                error=str(e) or type(e).__name__,
                metadata=ToolMetadata(
                    duration=int((time.monotonic() - started) * 1000),
                    credits=HTTP_CREDITS,
                ),
            )
        return _to_result(response, started)

    def _send(self, params: dict[str, Any]) -> httpx.Response:
        raise NotImplementedError


class HttpGetTool(_HttpTool):
    name = "http.get"
    description = "Make an HTTP GET request to an API"

    def _send(self, params: dict[str, Any]) -> httpx.Response:
        return self._get_client().get(
            params["url"],
            params=params.get("query") or None,
            headers=params.get("headers") or None,
        )


class HttpPostTool(_HttpTool):
    name = "http.post"
    description = "Make an HTTP POST request to an API"

    def _send(self, params: dict[str, Any]) -> httpx.Response:
        body = params.get("body")
        headers = params.get("headers") or None
        if isinstance(body, (dict, list)):
            return self._get_client().post(params["url"], json=body, headers=headers)
        return self._get_client().post(params["url"], content=body, headers=headers)
