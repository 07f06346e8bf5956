# src/employee_portal_bff/proxy.py
"""
Authenticated reverse proxy to the upstream HR API.

The secret (header-name, header-value) pair lives only in server config and is
attached here, on the way out. The browser never sees it. Two entry points
share the same URL and header construction:

- forward(): relays a browser request verbatim and streams the upstream
  response back untouched (status, headers, raw body). Upstream errors are
  not interpreted.
- UpstreamClient: used by server-side callers (the session lifecycle) that
  need a decoded ApiResult instead of a raw relay.
"""

import logging
from dataclasses import dataclass
from typing import Any, Mapping, Optional, Union

import httpx
from fastapi import Request, status
from fastapi.responses import JSONResponse
from pydantic import AnyHttpUrl, TypeAdapter, ValidationError
from starlette.background import BackgroundTask
from starlette.responses import Response, StreamingResponse

from .config import Settings
from .errors import TransportError

logger = logging.getLogger(__name__)

# Never relayed in either direction; they describe a single connection.
HOP_BY_HOP_HEADERS = {
    "connection",
    "keep-alive",
    "proxy-authenticate",
    "proxy-authorization",
    "te",
    "trailer",
    "transfer-encoding",
    "upgrade",
}


# --- Tagged upstream results ---

@dataclass(frozen=True)
class ApiSuccess:
    data: Any
    status_code: int = 200
    message: Optional[str] = None
    # False when the body carried no {success, data} envelope at all.
    enveloped: bool = True


@dataclass(frozen=True)
class ApiFailure:
    message: str
    status_code: int
    data: Any = None


ApiResult = Union[ApiSuccess, ApiFailure]


def decode_api_result(response: httpx.Response) -> ApiResult:
    """
    Decode the upstream envelope {success, data, message} into an ApiResult.
    A non-2xx status is always a failure, whatever the body says.
    """
    try:
        body = response.json()
    except ValueError:
        body = None

    message = None
    if isinstance(body, dict):
        message = body.get("message") or body.get("detail")

    if not response.is_success:
        return ApiFailure(
            message=message or response.reason_phrase or f"HTTP {response.status_code}",
            status_code=response.status_code,
            data=body,
        )

    # Some controllers answer with a bare array instead of the envelope.
    if not isinstance(body, dict) or "success" not in body:
        return ApiSuccess(data=body, status_code=response.status_code, enveloped=False)

    if body.get("success") and body.get("data") is not None:
        return ApiSuccess(data=body["data"], status_code=response.status_code, message=message)

    return ApiFailure(message=message or "Request failed", status_code=response.status_code, data=body)


# --- URL and header construction ---

def rewrite_path(path: str, prefix: str) -> str:
    """Strip the proxy prefix: /api/freelance/Ctl/Action -> /Ctl/Action."""
    if path == prefix:
        return "/"
    if path.startswith(prefix + "/"):
        return path[len(prefix):]
    return path


def build_upstream_url(settings: Settings, path: str, query: str = "") -> str:
    url = f"{settings.API_BASE_STRIPPED}{path}"
    if query:
        url = f"{url}?{query}"
    return url


_HTTP_URL = TypeAdapter(AnyHttpUrl)
_DEFAULT_PORTS = {"http": 80, "https": 443}


def resolve_origin(api_base: str, fallback: str) -> str:
    """scheme://host[:port] of the upstream base, or the fixed fallback if it is not an http(s) URL."""
    try:
        url = _HTTP_URL.validate_python(api_base)
    except ValidationError:
        return fallback
    if not url.host:
        return fallback
    origin = f"{url.scheme}://{url.host}"
    if url.port and url.port != _DEFAULT_PORTS.get(url.scheme):
        origin = f"{origin}:{url.port}"
    return origin


def build_upstream_headers(
        inbound_headers: Mapping[str, str],
        settings: Settings,
        bearer: Optional[str] = None,
) -> dict:
    """
    Outbound headers: the secret pair, content-type, origin headers and the
    caller's Authorization. Nothing else from the inbound request is kept.
    """
    origin = resolve_origin(settings.API_BASE, settings.UPSTREAM_FALLBACK_ORIGIN)
    headers = {
        settings.API_HEADER_KEY: settings.API_KEY.get_secret_value(),
        "Content-Type": inbound_headers.get("content-type") or "application/json",
        "User-Agent": settings.UPSTREAM_USER_AGENT,
        "Origin": origin,
        "Referer": f"{origin}/",
        "Host": httpx.URL(origin).netloc.decode("ascii"),
    }

    auth_header = inbound_headers.get("authorization")
    if auth_header:
        headers["Authorization"] = auth_header
    elif bearer:
        headers["Authorization"] = f"Bearer {bearer}"
    return headers


def relay_headers(upstream_headers: httpx.Headers, secret_header_name: str) -> list:
    secret_name = secret_header_name.lower()
    relayed = []
    for name, value in upstream_headers.multi_items():
        lowered = name.lower()
        if lowered in HOP_BY_HOP_HEADERS or lowered == secret_name:
            continue
        relayed.append((name, value))
    return relayed


# --- Browser-facing relay ---

def inbound_raw_path(request: Request) -> str:
    """The request path still percent-encoded, so %2F, %3F and %23 reach the upstream as sent."""
    raw_path = request.scope.get("raw_path")
    if not raw_path:
        return request.url.path
    return raw_path.split(b"?", 1)[0].decode("latin-1")


async def forward(
        request: Request,
        settings: Settings,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        session_token: Optional[str] = None,
) -> Response:
    path = rewrite_path(inbound_raw_path(request), settings.PROXY_PREFIX)
    target = build_upstream_url(settings, path, request.url.query)
    headers = build_upstream_headers(request.headers, settings, bearer=session_token)
    body = await request.body()

    client = httpx.AsyncClient(transport=transport, timeout=settings.UPSTREAM_TIMEOUT_SECONDS)
    upstream_request = client.build_request(request.method, target, headers=headers, content=body)
    logger.info(f"PROXY: {request.method} {request.url.path} -> {settings.API_BASE_STRIPPED}{path}")
    try:
        upstream_response = await client.send(upstream_request, stream=True)
    except httpx.RequestError as e:
        await client.aclose()
        logger.warning(f"PROXY: Request error calling upstream for {path}: {e!r}")
        return JSONResponse(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            content={"detail": f"Could not connect to upstream API: {str(e)}"},
        )

    logger.info(f"PROXY: {request.method} {path} <- {upstream_response.status_code}")

    async def close_upstream():
        await upstream_response.aclose()
        await client.aclose()

    response = StreamingResponse(
        upstream_response.aiter_raw(),
        status_code=upstream_response.status_code,
        background=BackgroundTask(close_upstream),
    )
    # Replace Starlette's defaults with the upstream headers, duplicates included.
    response.raw_headers = [
        (name.encode("latin-1"), value.encode("latin-1"))
        for name, value in relay_headers(upstream_response.headers, settings.API_HEADER_KEY)
    ]
    return response


# --- Server-side caller ---

class UpstreamClient:
    """Decoded calls to the upstream API with the same credential injection as the relay."""

    def __init__(self, settings: Settings, transport: Optional[httpx.AsyncBaseTransport] = None):
        self.settings = settings
        self.transport = transport

    async def post(self, path: str, payload: Any, bearer: Optional[str] = None) -> ApiResult:
        return await self.request("POST", path, json=payload, bearer=bearer)

    async def request(
            self,
            method: str,
            path: str,
            json: Any = None,
            bearer: Optional[str] = None,
    ) -> ApiResult:
        url = build_upstream_url(self.settings, path)
        headers = build_upstream_headers({}, self.settings, bearer=bearer)
        async with httpx.AsyncClient(
                transport=self.transport, timeout=self.settings.UPSTREAM_TIMEOUT_SECONDS
        ) as client:
            try:
                response = await client.request(method, url, headers=headers, json=json)
            except httpx.RequestError as e:
                logger.warning(f"PROXY: Request error calling upstream {method} {path}: {e!r}")
                raise TransportError(f"Could not connect to upstream API: {str(e)}") from e
        result = decode_api_result(response)
        logger.info(f"PROXY: {method} {path} <- {response.status_code} ({type(result).__name__})")
        return result

    async def get_json(self, url: str) -> Any:
        """Plain GET against a third-party URL; no credentials are attached."""
        async with httpx.AsyncClient(
                transport=self.transport, timeout=self.settings.UPSTREAM_TIMEOUT_SECONDS
        ) as client:
            try:
                response = await client.get(url)
                response.raise_for_status()
            except httpx.HTTPError as e:
                raise TransportError(f"Lookup failed for {url}: {str(e)}") from e
        return response.json()
