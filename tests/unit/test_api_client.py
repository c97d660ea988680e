"""Unit tests for the commerce API client using an httpx mock transport."""

import json

import httpx
import pytest

from catalog_feeds.api.client import CommerceApiClient, build_http_client
from catalog_feeds.api.exceptions import ApiResponseError, ApiTransportError, RequestLimitReached
from catalog_feeds.api.retry_handler import RetryHandler
from catalog_feeds.api.throttle import RateLimitThrottle
from catalog_feeds.models.config import ApiConfig, RequestPolicy


class FakeClock:
    def __init__(self):
        self.t = 0.0
        self.sleeps = []

    def now(self) -> float:
        return self.t

    async def sleep(self, dt: float) -> None:
        self.sleeps.append(dt)
        self.t += dt


def usage(**values):
    return {"X-Business-Use-Case-Usage": json.dumps(values)}


def error_body(code, message="Error"):
    return {"error": {"message": message, "code": code}}


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def api_config():
    return ApiConfig(
        base_url="http://graph.test",
        api_version="v21.0",
        access_token="secret-token",
        commerce_partner_integration_id="cpi-1",
        request_policies={
            "feed_upload_create": RequestPolicy(retry_limit=3, retry_codes=[2]),
        }
    )


@pytest.fixture
def make_client(api_config, clock):
    """Build a client around a request handler; returns (client, seen requests)."""
    def factory(handler):
        seen = []

        def recording(request):
            seen.append(request)
            return handler(request)

        http_client = build_http_client(api_config, transport=httpx.MockTransport(recording))
        client = CommerceApiClient(
            api_config,
            http_client,
            throttle=RateLimitThrottle(now=clock.now, sleeper=clock.sleep),
            retry_handler=RetryHandler(jitter_max=0.0, sleeper=clock.sleep)
        )
        return client, seen
    return factory


class TestCommerceApiClient:

    @pytest.mark.asyncio
    async def test_feed_upload_request(self, make_client):
        client, seen = make_client(lambda request: httpx.Response(200, json={"id": "upload-1"}))

        async with client.http_client:
            response = await client.create_feed_upload("cpi-1", {"url": "http://feeds.test/feeds/products"})

        assert response.id == "upload-1"
        request = seen[0]
        assert request.method == "POST"
        assert request.url.path == "/v21.0/cpi-1/file_update"
        assert request.headers["Authorization"] == "Bearer secret-token"
        assert len(request.headers["Idempotency-Key"]) == 36
        assert json.loads(request.content) == {"url": "http://feeds.test/feeds/products"}

    @pytest.mark.asyncio
    async def test_idempotency_key_stable_across_retries(self, make_client):
        responses = iter([
            httpx.Response(500, json=error_body(2, "Temporary")),
            httpx.Response(500, json=error_body(2, "Temporary")),
            httpx.Response(200, json={"id": "upload-1"}),
        ])
        client, seen = make_client(lambda request: next(responses))

        async with client.http_client:
            await client.create_feed_upload("cpi-1", {"url": "u"})

        keys = {request.headers["Idempotency-Key"] for request in seen}
        assert len(seen) == 3
        assert len(keys) == 1

    @pytest.mark.asyncio
    async def test_separate_calls_use_separate_keys(self, make_client):
        client, seen = make_client(lambda request: httpx.Response(200, json={"id": "x"}))

        async with client.http_client:
            await client.create_feed_upload("cpi-1", {"url": "u"})
            await client.create_feed_upload("cpi-1", {"url": "u"})

        assert seen[0].headers["Idempotency-Key"] != seen[1].headers["Idempotency-Key"]

    @pytest.mark.asyncio
    async def test_retry_stops_at_policy_limit(self, make_client):
        client, seen = make_client(lambda request: httpx.Response(500, json=error_body(2)))

        async with client.http_client:
            with pytest.raises(ApiResponseError) as exc_info:
                await client.create_feed_upload("cpi-1", {"url": "u"})

        assert exc_info.value.code == 2
        assert len(seen) == 4  # first attempt plus three retries

    @pytest.mark.asyncio
    async def test_code_not_opted_in_is_not_retried(self, make_client):
        client, seen = make_client(lambda request: httpx.Response(400, json=error_body(100, "Invalid parameter")))

        async with client.http_client:
            with pytest.raises(ApiResponseError, match="Invalid parameter"):
                await client.create_feed_upload("cpi-1", {"url": "u"})

        assert len(seen) == 1

    @pytest.mark.asyncio
    async def test_default_policy_does_not_retry_api_errors(self, make_client):
        client, seen = make_client(lambda request: httpx.Response(500, json=error_body(2)))

        async with client.http_client:
            with pytest.raises(ApiResponseError):
                await client.update_product_item("p-1", {"price": "1.00 USD"})

        assert len(seen) == 1

    @pytest.mark.asyncio
    @pytest.mark.parametrize("status,code", [(400, 4), (400, 17), (400, 32), (400, 613), (400, 80004), (429, None)])
    async def test_rate_limit_errors(self, make_client, status, code):
        body = error_body(code) if code is not None else {}
        client, _ = make_client(lambda request: httpx.Response(status, json=body))

        async with client.http_client:
            with pytest.raises(RequestLimitReached):
                await client.read_product_item("p-1")

    @pytest.mark.asyncio
    async def test_regain_time_defers_endpoint(self, make_client, clock):
        responses = iter([
            httpx.Response(400, json=error_body(80004, "Too many calls"), headers=usage(
                call_count=100, estimated_time_to_regain_access=7
            )),
            httpx.Response(200, json={"id": "p-1"}),
        ])
        client, _ = make_client(lambda request: next(responses))

        async with client.http_client:
            with pytest.raises(RequestLimitReached) as exc_info:
                await client.read_product_item("p-1")
            assert exc_info.value.retry_after == 7

            await client.read_product_item("p-1")

        assert clock.sleeps == [7]

    @pytest.mark.asyncio
    async def test_usage_recorded_on_response(self, make_client):
        client, _ = make_client(lambda request: httpx.Response(200, json={"id": "x"}, headers=usage(call_count=42)))

        async with client.http_client:
            response = await client.read_product_item("p-1", fields=("id", "name"))

        assert response.usage.call_count == 42
        assert response.get_rate_limit_usage(response.headers) == 42
        assert response.usage.estimated_time_to_regain_access is None

    @pytest.mark.asyncio
    async def test_transport_errors_retried(self, make_client, clock):
        attempts = []

        def handler(request):
            attempts.append(request)
            if len(attempts) < 3:
                raise httpx.ConnectError("connection refused", request=request)
            return httpx.Response(200, json={"success": True})

        client, _ = make_client(handler)

        async with client.http_client:
            response = await client.update_product_item("p-1", {"price": "1.00 USD"})

        assert response.get("success") is True
        assert clock.sleeps == [0.5, 1.0]
        assert len({request.headers["Idempotency-Key"] for request in attempts}) == 1

    @pytest.mark.asyncio
    async def test_transport_error_after_limit(self, make_client):
        def handler(request):
            raise httpx.ReadTimeout("timed out", request=request)

        client, seen = make_client(handler)

        async with client.http_client:
            with pytest.raises(ApiTransportError):
                await client.delete_product_item("p-1")

        assert len(seen) == 6  # default limit of five retries

    @pytest.mark.asyncio
    async def test_get_sends_no_body(self, make_client):
        client, seen = make_client(lambda request: httpx.Response(200, json={"id": "p-1"}))

        async with client.http_client:
            await client.read_product_item("p-1", fields=("id", "price"))

        assert seen[0].method == "GET"
        assert seen[0].url.params["fields"] == "id,price"
        assert seen[0].content == b""

    @pytest.mark.asyncio
    async def test_log_event_payload(self, make_client):
        client, seen = make_client(lambda request: httpx.Response(200, json={"success": True}))

        async with client.http_client:
            await client.log_event("cpi-1", {"flow_name": "feed_upload", "error": "boom"})

        assert seen[0].url.path == "/v21.0/cpi-1/logs"
        assert json.loads(seen[0].content) == {"context": {"flow_name": "feed_upload", "error": "boom"}}

    def test_build_request_applies_policy(self, make_client):
        client, _ = make_client(lambda request: httpx.Response(200))

        from catalog_feeds.api.request import FeedUploadCreateRequest, ProductReadRequest

        upload = client.build_request(FeedUploadCreateRequest, "cpi-1", {"url": "u"})
        read = client.build_request(ProductReadRequest, "p-1")

        assert upload.get_retry_limit() == 3
        assert upload.get_retry_codes() == frozenset({2})
        assert read.get_retry_codes() == frozenset()
