"""
HTTP fetch client.

Wraps ``httpx.AsyncClient`` with:
- URL validation (http and https only)
- Per-request timeout, redirect and proxy settings
- Retry with exponential backoff on transport errors
- Classification of failures into FetchErrorCode values

Every status code from 200 to 599 is returned as a FetchResponse; only
failures to obtain a response at all raise FetchError.
"""

from __future__ import annotations

import logging
import time
from typing import Any, Dict, Optional

import httpx

from fetchbox import telemetry
from fetchbox.config import Settings, get_settings
from fetchbox.exceptions import FetchboxConfigError, FetchError, FetchErrorCode
from fetchbox.fetch.models import HTTP_METHODS, Body, FetchOptions, FetchResponse
from fetchbox.retry import with_retry

logger = logging.getLogger(__name__)


class FetchClient:
    """
    Async HTTP client used by the ``fetch_url`` and ``extract_content`` tools.

    Args:
        settings: Source of default timeout, redirect limit, user agent and retries.
        transport: Optional httpx transport (tests pass ``httpx.MockTransport``).
    """

    def __init__(
        self,
        settings: Optional[Settings] = None,
        *,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        settings = settings or get_settings()
        self.timeout_ms: int = settings.fetch_timeout_ms
        self.max_redirects: int = settings.fetch_max_redirects
        self.user_agent: str = settings.fetch_user_agent
        self.retry_attempts: int = settings.fetch_retry_attempts
        self._default_headers: Dict[str, str] = {}
        self._transport = transport

    # -------------------------------------------------------------------------
    # Defaults
    # -------------------------------------------------------------------------

    def set_default_timeout(self, timeout_ms: int) -> None:
        self.timeout_ms = timeout_ms
        logger.debug("Default fetch timeout set to %dms", timeout_ms)

    def set_user_agent(self, user_agent: str) -> None:
        self.user_agent = user_agent

    def set_default_headers(self, headers: Dict[str, str]) -> None:
        self._default_headers.update(headers)

    def config(self) -> Dict[str, Any]:
        return {
            "timeout_ms": self.timeout_ms,
            "max_redirects": self.max_redirects,
            "headers": {"User-Agent": self.user_agent, **self._default_headers},
        }

    # -------------------------------------------------------------------------
    # Requests
    # -------------------------------------------------------------------------

    @staticmethod
    def validate_url(url: str) -> httpx.URL:
        """
        Parse ``url`` and make sure it is an absolute http(s) URL.

        Raises:
            FetchError: INVALID_URL or UNSUPPORTED_PROTOCOL.
        """
        try:
            parsed = httpx.URL(url)
        except (httpx.InvalidURL, TypeError) as exc:
            raise FetchError(
                f"Invalid URL: {url}", code=FetchErrorCode.INVALID_URL, url=str(url)
            ) from exc
        if not parsed.scheme:
            raise FetchError(f"Invalid URL: {url}", code=FetchErrorCode.INVALID_URL, url=url)
        if parsed.scheme not in ("http", "https"):
            raise FetchError(
                f"Unsupported protocol: {parsed.scheme}:",
                code=FetchErrorCode.UNSUPPORTED_PROTOCOL,
                url=url,
            )
        if not parsed.host:
            raise FetchError(f"Invalid URL: {url}", code=FetchErrorCode.INVALID_URL, url=url)
        return parsed

    async def fetch(self, url: str, options: Optional[FetchOptions] = None) -> FetchResponse:
        """
        Perform one HTTP request.

        Raises:
            FetchError: The URL is invalid or no response could be obtained.
        """
        options = options or FetchOptions()
        self.validate_url(url)

        method = options.method.upper()
        if method not in HTTP_METHODS:
            raise FetchboxConfigError(
                f"Unsupported HTTP method: {options.method}",
                code="invalid_method",
                details={"method": options.method},
            )

        headers = {
            "User-Agent": options.user_agent or self.user_agent,
            **self._default_headers,
            **options.headers,
        }
        body_kwargs = _body_kwargs(options.body, headers)

        max_redirects = self.max_redirects if options.max_redirects is None else options.max_redirects
        follow = options.follow_redirects and max_redirects > 0
        timeout = (options.timeout_ms or self.timeout_ms) / 1000

        client_kwargs: Dict[str, Any] = {
            "timeout": timeout,
            "follow_redirects": follow,
            "max_redirects": max(max_redirects, 0),
        }
        if self._transport is not None:
            client_kwargs["transport"] = self._transport
        if options.proxy:
            client_kwargs["proxy"] = options.proxy

        logger.info("Fetching %s %s", method, url)
        start = time.perf_counter()

        @with_retry(max_attempts=self.retry_attempts + 1)
        async def send(client: httpx.AsyncClient) -> httpx.Response:
            return await client.request(method, url, headers=headers, **body_kwargs)

        try:
            with telemetry.span("fetch", method=method, url=url):
                async with httpx.AsyncClient(**client_kwargs) as client:
                    response = await send(client)
        except httpx.TimeoutException as exc:
            raise self._error(url, FetchErrorCode.TIMEOUT, f"Request timeout while fetching {url}", exc)
        except httpx.TooManyRedirects as exc:
            raise self._error(
                url, FetchErrorCode.TOO_MANY_REDIRECTS, f"Too many redirects while fetching {url}", exc
            )
        except httpx.UnsupportedProtocol as exc:
            raise self._error(url, FetchErrorCode.UNSUPPORTED_PROTOCOL, str(exc), exc)
        except httpx.InvalidURL as exc:
            raise self._error(url, FetchErrorCode.INVALID_URL, f"Invalid URL: {url}", exc)
        except httpx.TransportError as exc:
            raise self._error(
                url, FetchErrorCode.NETWORK, f"Network error while fetching {url}: {exc}", exc
            )
        except httpx.HTTPError as exc:
            raise self._error(
                url, FetchErrorCode.REQUEST_FAILED, f"Request failed while fetching {url}: {exc}", exc
            )

        result = _build_response(url, response, (time.perf_counter() - start) * 1000)
        logger.info(
            "Fetched %s -> %d (%d redirect(s), %.0fms)",
            url,
            result.status,
            result.redirect_count,
            result.elapsed_ms,
        )
        return result

    def _error(
        self, url: str, code: FetchErrorCode, message: str, cause: Exception
    ) -> FetchError:
        logger.warning("Fetch of %s failed (%s): %s", url, code.value, cause)
        error = FetchError(message, code=code, url=url)
        error.__cause__ = cause
        return error

    async def get(self, url: str, **options: Any) -> FetchResponse:
        return await self.fetch(url, FetchOptions(method="GET", **options))

    async def head(self, url: str, **options: Any) -> FetchResponse:
        return await self.fetch(url, FetchOptions(method="HEAD", **options))

    async def delete(self, url: str, **options: Any) -> FetchResponse:
        return await self.fetch(url, FetchOptions(method="DELETE", **options))

    async def post(self, url: str, body: Optional[Body] = None, **options: Any) -> FetchResponse:
        return await self.fetch(url, FetchOptions(method="POST", body=body, **options))

    async def put(self, url: str, body: Optional[Body] = None, **options: Any) -> FetchResponse:
        return await self.fetch(url, FetchOptions(method="PUT", body=body, **options))

    async def patch(self, url: str, body: Optional[Body] = None, **options: Any) -> FetchResponse:
        return await self.fetch(url, FetchOptions(method="PATCH", body=body, **options))


def _body_kwargs(body: Optional[Body], headers: Dict[str, str]) -> Dict[str, Any]:
    if body is None:
        return {}
    if isinstance(body, (dict, list)):
        if not any(key.lower() == "content-type" for key in headers):
            headers["Content-Type"] = "application/json"
        return {"json": body}
    return {"content": body}


def _build_response(url: str, response: httpx.Response, elapsed_ms: float) -> FetchResponse:
    headers = {key: value for key, value in response.headers.items()}
    content_length = None
    raw_length = response.headers.get("content-length")
    if raw_length is not None:
        try:
            content_length = int(raw_length)
        except ValueError:
            content_length = None

    return FetchResponse(
        url=url,
        final_url=str(response.url),
        status=response.status_code,
        status_text=response.reason_phrase,
        headers=headers,
        body=response.text,
        content_type=response.headers.get("content-type", "application/octet-stream"),
        content_length=content_length,
        redirect_count=len(response.history),
        elapsed_ms=elapsed_ms,
    )
