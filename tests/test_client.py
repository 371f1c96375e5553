import asyncio
import threading

import httpx
import pytest
import respx
from xml_bodies import (
    AUTH_SUCCESS_XML,
    HIERARCHY_XML,
    METRIC_INVALID_XML,
    USER_KEY_INVALID_XML,
)

from threescale_client.client import Client
from threescale_client.config import Config
from threescale_client.errors import DecodeError, ServerError, ValidationError
from threescale_client.models import (
    AuthType,
    ClientAuth,
    Params,
    RateLimits,
    Request,
    Transaction,
)

BACKEND_URL = "https://backend.example.com"
AUTHORIZE_URL = f"{BACKEND_URL}/transactions/authorize.xml"
AUTHREP_URL = f"{BACKEND_URL}/transactions/authrep.xml"
REPORT_URL = f"{BACKEND_URL}/transactions.xml"


class TestClientConstruction:
    def test_peer_is_backend_hostname(self) -> "None":
        assert Client(BACKEND_URL).get_peer() == "backend.example.com"

    def test_default_backend(self) -> "None":
        assert Client().get_peer() == "su1.3scale.net"

    def test_from_config(self) -> "None":
        client = Client.from_config(Config(backend_url="http://localhost:3001"))
        assert client.get_peer() == "localhost"

    def test_from_config_ignores_logging_settings(self) -> "None":
        config = Config(timeout=2.5, log_level="debug", log_json=True)
        client = Client.from_config(config)
        assert client._client.timeout == httpx.Timeout(2.5)

    @pytest.mark.parametrize(
        "url",
        ["ftp://backend.example.com", "backend.example.com", "https://"],
    )
    def test_rejects_invalid_urls(self, url: "str") -> "None":
        with pytest.raises(ValidationError):
            Client(url)

    @pytest.mark.asyncio
    async def test_close_leaves_provided_http_client_open(self) -> "None":
        shared = httpx.AsyncClient(timeout=5.0)

        async with Client(BACKEND_URL, http_client=shared, timeout=1.0):
            pass

        assert shared.is_closed is False
        assert shared.timeout == httpx.Timeout(5.0)
        await shared.aclose()

    @pytest.mark.asyncio
    async def test_close_closes_own_http_client(self) -> "None":
        client = Client(BACKEND_URL)
        await client.close()
        assert client._client.is_closed is True


class TestClientAuthorize:
    @pytest.mark.asyncio
    @respx.mock
    async def test_authorized(self, auth_request: "Request") -> "None":
        route = respx.get(AUTHORIZE_URL).mock(
            return_value=httpx.Response(200, content=AUTH_SUCCESS_XML)
        )

        async with Client(BACKEND_URL) as client:
            result = await client.authorize(auth_request)

        assert result.authorized is True
        assert route.call_count == 1
        sent = route.calls.last.request
        assert sent.headers["Accept"] == "application/xml"
        assert sent.url.params["service_token"] == "tok"
        assert sent.url.params["usage[hits]"] == "1"

    @pytest.mark.asyncio
    @respx.mock
    async def test_rejected_key_is_a_result(self) -> "None":
        respx.get(AUTHORIZE_URL).mock(
            return_value=httpx.Response(403, content=USER_KEY_INVALID_XML)
        )
        request = Request(
            auth=ClientAuth(AuthType.SERVICE_TOKEN, "tok"),
            service="svc",
            transactions=[Transaction(params=Params(user_key="abc"))],
        )

        async with Client(BACKEND_URL) as client:
            result = await client.authorize(request)

        assert result.authorized is False
        assert result.error_code == "user_key_invalid"

    @pytest.mark.asyncio
    @respx.mock
    async def test_extensions_round_trip(self) -> "None":
        route = respx.get(AUTHREP_URL).mock(
            return_value=httpx.Response(
                200,
                content=HIERARCHY_XML,
                headers={"3scale-Limit-Remaining": "9", "3scale-Limit-Reset": "30"},
            )
        )
        request = Request(
            auth=ClientAuth(AuthType.PROVIDER_KEY, "pk"),
            service="svc",
            transactions=[Transaction(params=Params(app_id="a"), metrics={"hits": 1})],
            extensions={"hierarchy": "1", "limit_headers": "1"},
        )

        async with Client(BACKEND_URL) as client:
            result = await client.auth_rep(request)

        assert route.calls.last.request.headers["3scale-options"] == (
            "hierarchy=1&limit_headers=1"
        )
        assert result.hierarchy == {"hits": ["example", "sample", "test"]}
        assert result.rate_limits == RateLimits(limit_remaining=9, limit_reset=30)

    @pytest.mark.asyncio
    @respx.mock
    async def test_invalid_request_is_not_sent(self) -> "None":
        route = respx.get(AUTHORIZE_URL).mock(
            return_value=httpx.Response(200, content=AUTH_SUCCESS_XML)
        )
        request = Request(
            auth=ClientAuth(AuthType.SERVICE_TOKEN, "tok"),
            service="svc",
            transactions=[Transaction(params=Params(referrer="*"))],
        )

        async with Client(BACKEND_URL) as client:
            with pytest.raises(ValidationError):
                await client.authorize(request)

        assert route.call_count == 0

    @pytest.mark.asyncio
    @respx.mock
    async def test_server_error_raises(self, auth_request: "Request") -> "None":
        respx.get(AUTHORIZE_URL).mock(return_value=httpx.Response(502))

        async with Client(BACKEND_URL) as client:
            with pytest.raises(ServerError):
                await client.authorize(auth_request)

    @pytest.mark.asyncio
    @respx.mock
    async def test_transport_errors_propagate(self, auth_request: "Request") -> "None":
        respx.get(AUTHORIZE_URL).mock(side_effect=httpx.ConnectTimeout("timed out"))

        async with Client(BACKEND_URL) as client:
            with pytest.raises(httpx.ConnectTimeout):
                await client.authorize(auth_request, timeout=0.1)

    @pytest.mark.asyncio
    @respx.mock
    async def test_caller_deadline_cancels_call(self, auth_request: "Request") -> "None":
        async def never_answer(request: "httpx.Request") -> "httpx.Response":
            await asyncio.Event().wait()
            return httpx.Response(200, content=AUTH_SUCCESS_XML)

        route = respx.get(AUTHORIZE_URL).mock(side_effect=never_answer)

        async with Client(BACKEND_URL) as client:
            with pytest.raises(TimeoutError):
                async with asyncio.timeout(0.05):
                    await client.authorize(auth_request)

        assert route.call_count == 1


class TestClientReport:
    @pytest.mark.asyncio
    @respx.mock
    async def test_accepted(self) -> "None":
        route = respx.post(REPORT_URL).mock(return_value=httpx.Response(202))
        request = Request(
            auth=ClientAuth(AuthType.SERVICE_TOKEN, "tok"),
            service="svc",
            transactions=[
                Transaction(params=Params(app_id="a"), metrics={"hits": 1}),
                Transaction(
                    params=Params(app_id="b"), metrics={"hits": 2}, timestamp=1000
                ),
            ],
        )

        async with Client(BACKEND_URL) as client:
            result = await client.report(request)

        assert result.accepted is True
        params = route.calls.last.request.url.params
        assert params["transactions[0][app_id]"] == "a"
        assert params["transactions[1][usage][hits]"] == "2"
        assert params["transactions[1][timestamp]"] == "1000"
        assert "transactions[0][timestamp]" not in params

    @pytest.mark.asyncio
    @respx.mock
    async def test_rejected(self, auth_request: "Request") -> "None":
        respx.post(REPORT_URL).mock(
            return_value=httpx.Response(404, content=METRIC_INVALID_XML)
        )

        async with Client(BACKEND_URL) as client:
            result = await client.report(auth_request)

        assert result.accepted is False
        assert result.error_code == "metric_invalid"


class TestClientInstrumentation:
    @pytest.mark.asyncio
    @respx.mock
    async def test_callback_receives_round_trip(self, auth_request: "Request") -> "None":
        respx.get(AUTHORIZE_URL).mock(
            return_value=httpx.Response(200, content=AUTH_SUCCESS_XML)
        )
        called = threading.Event()
        seen: "list[tuple[str, int, float]]" = []

        def callback(host: "str", status_code: "int", duration: "float") -> "None":
            seen.append((host, status_code, duration))
            called.set()

        async with Client(BACKEND_URL) as client:
            result = await client.authorize(
                auth_request, instrumentation_callback=callback
            )
            assert await asyncio.to_thread(called.wait, 2.0)

        assert result.authorized is True
        host, status_code, duration = seen[0]
        assert host == "backend.example.com"
        assert status_code == 200
        assert duration >= 0

    @pytest.mark.asyncio
    @respx.mock
    async def test_failing_callback_does_not_reach_caller(
        self, auth_request: "Request"
    ) -> "None":
        respx.post(REPORT_URL).mock(return_value=httpx.Response(202))
        called = threading.Event()

        def callback(host: "str", status_code: "int", duration: "float") -> "None":
            called.set()
            raise RuntimeError("boom")

        async with Client(BACKEND_URL) as client:
            result = await client.report(
                auth_request, instrumentation_callback=callback
            )
            assert await asyncio.to_thread(called.wait, 2.0)

        assert result.accepted is True


class TestClientGetVersion:
    @pytest.mark.asyncio
    @respx.mock
    async def test_reads_backend_version(self) -> "None":
        respx.get(f"{BACKEND_URL}/status").mock(
            return_value=httpx.Response(
                200, json={"status": "OK", "version": {"backend": "2.96.2"}}
            )
        )

        async with Client(BACKEND_URL) as client:
            assert await client.get_version() == "2.96.2"

    @pytest.mark.asyncio
    @respx.mock
    async def test_non_json_body(self) -> "None":
        respx.get(f"{BACKEND_URL}/status").mock(
            return_value=httpx.Response(200, content=b"<html>oops</html>")
        )

        async with Client(BACKEND_URL) as client:
            with pytest.raises(DecodeError):
                await client.get_version()

    @pytest.mark.asyncio
    @respx.mock
    async def test_unexpected_json_shape(self) -> "None":
        respx.get(f"{BACKEND_URL}/status").mock(
            return_value=httpx.Response(200, json={"version": "2.96"})
        )

        async with Client(BACKEND_URL) as client:
            with pytest.raises(DecodeError):
                await client.get_version()
