"""
Request executor.

Issues requests through a shared `httpx.AsyncClient` on behalf of the current
VU and records, per request: `http_reqs`, `http_req_duration`,
`http_req_waiting`, `http_req_failed`, `data_sent` and `data_received`, all
tagged with the effective tag-set (run tags < group path < automatic request
tags < per-request tags).

Transport failures never raise into workload code: they come back as a
Response with `status == 0` and `error`/`error_code` set, so checks can react.
"""

from __future__ import annotations

import asyncio
import json as _json
import logging
import time
from dataclasses import dataclass
from typing import Any, Dict, List, Mapping, Optional, Sequence, Tuple, Union

import httpx

from ..metrics.registry import MetricRegistry
from .context import current_scope

logger = logging.getLogger(__name__)

# k6-compatible error codes
ERROR_GENERIC = 1000
ERROR_TIMEOUT = 1050
ERROR_CONNECT = 1211
ERROR_READ = 1220
ERROR_TLS = 1300
ERROR_INVALID_URL = 1020

_MISSING = object()


@dataclass(frozen=True)
class Timings:
    """Timing breakdown in milliseconds."""

    duration: float = 0.0
    waiting: float = 0.0


class Response:
    """Outcome of one request, consumed by checks and discarded with the iteration."""

    def __init__(
        self,
        method: str,
        url: str,
        status: int = 0,
        body: Optional[str] = None,
        headers: Optional[Mapping[str, str]] = None,
        timings: Optional[Timings] = None,
        error: str = "",
        error_code: int = 0,
        name: Optional[str] = None,
    ):
        self.method = method
        self.url = url
        self.status = status
        self.body = body
        self.headers: Dict[str, str] = dict(headers or {})
        self.timings = timings or Timings()
        self.error = error
        self.error_code = error_code
        self.name = name or url

    @property
    def ok(self) -> bool:
        return not self.error and 200 <= self.status < 400

    def json(self, path: Optional[str] = None, default: Any = None) -> Any:
        """
        Parse the body as JSON, optionally selecting a dotted path ("data.items.0.id").

        Raises ValueError if the body is empty or not valid JSON. A path that
        does not resolve returns `default`.
        """
        if not self.body:
            raise ValueError(f"Response from {self.url} has no body to parse as JSON")
        try:
            doc = _json.loads(self.body)
        except _json.JSONDecodeError as e:
            raise ValueError(f"Response from {self.url} is not valid JSON: {e}") from e
        if not path:
            return doc
        node: Any = doc
        for part in path.split("."):
            if isinstance(node, Mapping):
                node = node.get(part, _MISSING)
            elif isinstance(node, list) and part.lstrip("-").isdigit():
                idx = int(part)
                node = node[idx] if -len(node) <= idx < len(node) else _MISSING
            else:
                node = _MISSING
            if node is _MISSING:
                return default
        return node

    def __repr__(self) -> str:
        if self.error:
            return f"Response({self.method} {self.url} error={self.error_code}: {self.error})"
        return f"Response({self.method} {self.url} status={self.status})"


def _error_code_for(exc: BaseException) -> int:
    if isinstance(exc, httpx.TimeoutException):
        return ERROR_TIMEOUT
    if isinstance(exc, (httpx.InvalidURL, httpx.UnsupportedProtocol)):
        return ERROR_INVALID_URL
    if isinstance(exc, httpx.ConnectError):
        text = str(exc).lower()
        if "ssl" in text or "certificate" in text:
            return ERROR_TLS
        return ERROR_CONNECT
    if isinstance(exc, (httpx.ReadError, httpx.RemoteProtocolError)):
        return ERROR_READ
    return ERROR_GENERIC


def _waiting_ms(raw: httpx.Response, fallback: float) -> float:
    # `elapsed` is only set once the response stream was closed.
    try:
        return raw.elapsed.total_seconds() * 1000.0
    except RuntimeError:
        return fallback


BatchItem = Union[str, Sequence[Any], Mapping[str, Any]]


class HttpClient:
    """Per-VU facade over the run's shared httpx.AsyncClient."""

    def __init__(
        self,
        client: httpx.AsyncClient,
        registry: MetricRegistry,
        timeout: Optional[float] = None,
        expected_statuses: Tuple[int, int] = (200, 399),
    ):
        self._client = client
        self._registry = registry
        self._timeout = timeout
        self._expected = expected_statuses

    # Verb helpers -------------------------------------------------------------
    async def get(self, url: str, **params: Any) -> Response:
        return await self.request("GET", url, **params)

    async def head(self, url: str, **params: Any) -> Response:
        return await self.request("HEAD", url, **params)

    async def options(self, url: str, body: Any = None, **params: Any) -> Response:
        return await self.request("OPTIONS", url, body, **params)

    async def post(self, url: str, body: Any = None, **params: Any) -> Response:
        return await self.request("POST", url, body, **params)

    async def put(self, url: str, body: Any = None, **params: Any) -> Response:
        return await self.request("PUT", url, body, **params)

    async def patch(self, url: str, body: Any = None, **params: Any) -> Response:
        return await self.request("PATCH", url, body, **params)

    async def delete(self, url: str, body: Any = None, **params: Any) -> Response:
        return await self.request("DELETE", url, body, **params)

    # Core ---------------------------------------------------------------------
    async def request(
        self,
        method: str,
        url: str,
        body: Any = None,
        *,
        json: Any = None,
        headers: Optional[Mapping[str, str]] = None,
        tags: Optional[Mapping[str, Any]] = None,
        timeout: Optional[float] = None,
    ) -> Response:
        """Issue one request. Suspends the calling VU until the response arrives."""
        method = method.upper()
        request_tags = {str(k): str(v) for k, v in (tags or {}).items()}
        name = request_tags.pop("name", None) or url
        scope_tags = current_scope().effective()

        kwargs: Dict[str, Any] = {"headers": dict(headers or {})}
        if json is not None:
            kwargs["json"] = json
        elif isinstance(body, Mapping):
            kwargs["data"] = {str(k): v for k, v in body.items()}
        elif isinstance(body, (str, bytes)):
            kwargs["content"] = body
        elif body is not None:
            raise TypeError(f"Unsupported request body type: {type(body).__name__}")
        effective_timeout = timeout if timeout is not None else self._timeout
        if effective_timeout is not None:
            kwargs["timeout"] = effective_timeout

        started = time.perf_counter()
        sent_bytes = 0
        try:
            request = self._client.build_request(method, url, **kwargs)
            sent_bytes = len(request.content or b"")
            raw = await self._client.send(request)
            duration_ms = (time.perf_counter() - started) * 1000.0
            response = Response(
                method=method,
                url=url,
                status=raw.status_code,
                body=raw.text,
                headers=raw.headers,
                timings=Timings(duration=duration_ms, waiting=_waiting_ms(raw, duration_ms)),
                name=name,
            )
            received = len(raw.content)
        except (httpx.HTTPError, httpx.InvalidURL) as e:
            duration_ms = (time.perf_counter() - started) * 1000.0
            code = _error_code_for(e)
            logger.debug(f"{method} {url} failed at transport level ({code}): {e}")
            response = Response(
                method=method,
                url=url,
                status=0,
                timings=Timings(duration=duration_ms),
                error=str(e) or type(e).__name__,
                error_code=code,
                name=name,
            )
            received = 0

        self._record(response, scope_tags, request_tags, sent_bytes, received)
        return response

    async def batch(
        self, requests: Union[Sequence[BatchItem], Mapping[str, BatchItem]]
    ) -> Union[List[Response], Dict[str, Response]]:
        """
        Dispatch every request concurrently and return once all completed.

        Items may be a URL string (GET), a sequence (method, url[, body[, params]])
        or a mapping with keys method/url/body/params. A mapping of items returns
        a mapping of responses with the same keys. One member failing never
        cancels its siblings.
        """
        if isinstance(requests, Mapping):
            keys = list(requests.keys())
            items = [requests[k] for k in keys]
        else:
            keys = None
            items = list(requests)

        normalized = [self._normalize_batch_item(item) for item in items]
        results = await asyncio.gather(
            *(self.request(m, u, b, **p) for m, u, b, p in normalized), return_exceptions=True
        )
        responses: List[Response] = []
        for (method, url, _, _), result in zip(normalized, results):
            if isinstance(result, BaseException):
                if isinstance(result, asyncio.CancelledError):
                    raise result
                logger.error(f"Batch member {method} {url} raised: {result}")
                result = Response(
                    method=method,
                    url=url,
                    error=f"{type(result).__name__}: {result}",
                    error_code=ERROR_GENERIC,
                )
            responses.append(result)
        if keys is not None:
            return dict(zip(keys, responses))
        return responses

    @staticmethod
    def _normalize_batch_item(item: BatchItem) -> Tuple[str, str, Any, Dict[str, Any]]:
        if isinstance(item, str):
            return "GET", item, None, {}
        if isinstance(item, Mapping):
            params = dict(item.get("params") or {})
            return str(item.get("method", "GET")), str(item["url"]), item.get("body"), params
        seq = list(item)
        if len(seq) < 2:
            raise ValueError(f"Batch request needs at least (method, url), got {item!r}")
        method, url = str(seq[0]), str(seq[1])
        body = seq[2] if len(seq) > 2 else None
        params = dict(seq[3] or {}) if len(seq) > 3 else {}
        return method, url, body, params

    def _record(
        self,
        response: Response,
        scope_tags: Mapping[str, str],
        request_tags: Mapping[str, str],
        sent_bytes: int,
        received_bytes: int,
    ) -> None:
        lo, hi = self._expected
        expected = not response.error and lo <= response.status <= hi
        tags: Dict[str, Any] = {
            **scope_tags,
            "method": response.method,
            "url": response.url,
            "name": response.name,
            "status": str(response.status),
            "expected_response": "true" if expected else "false",
        }
        if response.error_code:
            tags["error_code"] = str(response.error_code)
        tags.update(request_tags)

        reg = self._registry
        reg.add("http_reqs", 1, tags)
        reg.add("http_req_duration", response.timings.duration, tags)
        reg.add("http_req_waiting", response.timings.waiting, tags)
        reg.add("http_req_failed", 0 if expected else 1, tags)
        reg.add("data_sent", sent_bytes, tags)
        reg.add("data_received", received_bytes, tags)
