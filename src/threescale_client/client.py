import asyncio
import time
from typing import Callable

import httpx
import structlog

from threescale_client.config import Config
from threescale_client.decoder import decode_authorize, decode_report
from threescale_client.encoder import CallKind, build_request
from threescale_client.errors import DecodeError, ValidationError
from threescale_client.models import AuthorizeResult, ReportResult, Request

logger = structlog.get_logger()

DEFAULT_BACKEND_URL = "https://su1.3scale.net:443"
DEFAULT_TIMEOUT_SECONDS = 10.0
STATUS_ENDPOINT = "/status"

# called with (peer hostname, status code, request duration in seconds)
InstrumentationCallback = Callable[[str, int, float], None]


def _verify_backend_url(backend_url: "str") -> "httpx.URL":
    try:
        url = httpx.URL(backend_url)
    except httpx.InvalidURL as e:
        raise ValidationError(f"invalid backend url {backend_url!r}: {e}") from e

    if url.scheme not in ("http", "https") or not url.host:
        raise ValidationError(
            f"unsupported backend url {backend_url!r}, expected http(s)://host[:port]"
        )
    return url


class Client:
    """
    Client talks to the 3scale Service Management API. It encodes
    requests for the authorize, authrep and report endpoints and decodes
    the answers into typed results.

    Rejections reported by the backend come back as results, while
    invalid input raises ValidationError before anything is sent.
    Transport errors, timeouts and cancellation propagate unchanged,
    no retries are attempted.

    When http_client is given it stays owned by the caller: its own
    timeout applies, the timeout argument is ignored, and close() leaves
    it open.
    """

    def __init__(
        self,
        backend_url: "str" = DEFAULT_BACKEND_URL,
        http_client: "httpx.AsyncClient | None" = None,
        timeout: "float" = DEFAULT_TIMEOUT_SECONDS,
    ) -> "None":
        url = _verify_backend_url(backend_url)
        self._backend_host: "str" = url.host
        self._base_url: "str" = backend_url.rstrip("/")
        # only a client created here is closed by close()
        self._owns_client: "bool" = http_client is None
        self._client: "httpx.AsyncClient" = http_client or httpx.AsyncClient(
            timeout=timeout
        )

    @classmethod
    def from_config(cls, config: "Config") -> "Client":
        return cls(backend_url=config.backend_url, timeout=config.timeout)

    async def __aenter__(self) -> "Client":
        return self

    async def __aexit__(self, *args: "object") -> "None":
        await self.close()

    async def close(self) -> "None":
        """
        closes the underlying HTTP client unless the caller provided it.
        """
        if self._owns_client:
            await self._client.aclose()

    def get_peer(self) -> "str":
        """
        returns the hostname of the backend this client talks to.
        """
        return self._backend_host

    async def authorize(
        self,
        request: "Request",
        *,
        timeout: "float | None" = None,
        instrumentation_callback: "InstrumentationCallback | None" = None,
    ) -> "AuthorizeResult":
        """
        read-only check of whether the application may perform the
        usage in the first transaction.
        """
        return await self._auth_call(
            request, CallKind.AUTH, timeout, instrumentation_callback
        )

    async def auth_rep(
        self,
        request: "Request",
        *,
        timeout: "float | None" = None,
        instrumentation_callback: "InstrumentationCallback | None" = None,
    ) -> "AuthorizeResult":
        """
        authorizes and, when authorized, reports the usage of the first
        transaction in a single call.
        """
        return await self._auth_call(
            request, CallKind.AUTH_REP, timeout, instrumentation_callback
        )

    async def report(
        self,
        request: "Request",
        *,
        timeout: "float | None" = None,
        instrumentation_callback: "InstrumentationCallback | None" = None,
    ) -> "ReportResult":
        """
        reports every transaction of the request as one batch.
        """
        http_request = build_request(
            self._client, self._base_url, request, CallKind.REPORT, timeout
        )
        response = await self._send(
            http_request, CallKind.REPORT, instrumentation_callback
        )
        return decode_report(response)

    async def get_version(self) -> "str":
        """
        returns the backend version reported by the status endpoint.
        """
        resp = await self._client.get(f"{self._base_url}{STATUS_ENDPOINT}")
        resp.raise_for_status()
        try:
            return str(resp.json()["version"]["backend"])
        except (ValueError, KeyError, TypeError) as e:
            raise DecodeError(f"malformed status response: {e!r}") from e

    async def _auth_call(
        self,
        request: "Request",
        kind: "CallKind",
        timeout: "float | None",
        instrumentation_callback: "InstrumentationCallback | None",
    ) -> "AuthorizeResult":
        http_request = build_request(
            self._client, self._base_url, request, kind, timeout
        )
        response = await self._send(http_request, kind, instrumentation_callback)
        return decode_authorize(response, request.extensions)

    async def _send(
        self,
        http_request: "httpx.Request",
        kind: "CallKind",
        instrumentation_callback: "InstrumentationCallback | None",
    ) -> "httpx.Response":
        logger.debug(
            "threescale_request",
            kind=kind.value,
            method=http_request.method,
            path=http_request.url.path,
        )

        start = time.monotonic()
        response = await self._client.send(http_request)
        duration = time.monotonic() - start

        logger.debug(
            "threescale_response",
            kind=kind.value,
            status_code=response.status_code,
            duration=duration,
        )

        if instrumentation_callback is not None:
            self._dispatch_instrumentation(
                instrumentation_callback, response.status_code, duration
            )
        return response

    def _dispatch_instrumentation(
        self,
        callback: "InstrumentationCallback",
        status_code: "int",
        duration: "float",
    ) -> "None":
        """
        runs the callback in the loop's default executor so a slow
        callback never delays the result.
        """
        loop = asyncio.get_running_loop()
        loop.run_in_executor(
            None,
            _run_instrumentation,
            callback,
            self._backend_host,
            status_code,
            duration,
        )


def _run_instrumentation(
    callback: "InstrumentationCallback",
    host: "str",
    status_code: "int",
    duration: "float",
) -> "None":
    try:
        callback(host, status_code, duration)
    except Exception:
        logger.exception("instrumentation_callback_failed", host=host)
