"""FastAPI mock servers for local runs and integration tests.

- ``create_mock_commerce_api``: the commerce platform's Graph-style API
  (feed uploads, product items, logs) with usage headers, injected failures
  and idempotent replay
- ``create_mock_store``: a store REST API serving paginated records per
  feed type
"""

import json
import os
import random
import time
import uuid
from typing import Any, Dict, List, Optional

from fastapi import FastAPI, HTTPException, Request, Response
from fastapi.responses import JSONResponse
from pydantic import BaseModel

IDEMPOTENCY_KEY_HEADER = "Idempotency-Key"
USAGE_HEADER = "X-Business-Use-Case-Usage"


class InjectedFailure(BaseModel):
    """Error returned by the next matching call."""
    status_code: int = 500
    code: Optional[int] = None
    message: str = "Injected failure"
    estimated_time_to_regain_access: int = 0


class MockPlatformState:
    """Everything the mock platform has received, for assertions."""

    def __init__(self):
        self.calls: List[Dict[str, Any]] = []
        self.feed_uploads: List[Dict[str, Any]] = []
        self.products: Dict[str, Dict[str, Any]] = {}
        self.logs: List[Dict[str, Any]] = []
        self.responses_by_key: Dict[str, Dict[str, Any]] = {}
        self.failures: List[InjectedFailure] = []
        self.replayed = 0
        self.call_count = 0

    def usage_header(self, regain: int = 0) -> str:
        """Business-use-case usage payload (percentages of the quota)."""
        return json.dumps({
            "call_count": min(100, self.call_count),
            "total_time": min(100, self.call_count // 2),
            "total_cputime": min(100, self.call_count // 4),
            "estimated_time_to_regain_access": regain,
        })


def create_mock_commerce_api(
    random_seed: Optional[int] = None,
    error_rate: float = 0.0,
    extra_latency_ms: int = 0,
    state: Optional[MockPlatformState] = None
) -> FastAPI:
    """
    Create a mock commerce platform API.

    Mutating calls carrying an ``Idempotency-Key`` already seen are answered
    with the stored response and not applied again.

    Args:
        random_seed: Seed for deterministic random failures
        error_rate: Probability of a random 500 response (0.0-1.0)
        extra_latency_ms: Additional latency in milliseconds
        state: Shared state object (a new one when None)

    Returns:
        FastAPI application; its state is at ``app.state.platform``
    """
    app = FastAPI(title="Mock commerce API")
    platform = state or MockPlatformState()
    app.state.platform = platform
    rng = random.Random(random_seed)

    def error_response(failure: InjectedFailure) -> JSONResponse:
        body = {"error": {"message": failure.message, "type": "OAuthException"}}
        if failure.code is not None:
            body["error"]["code"] = failure.code
        return JSONResponse(
            status_code=failure.status_code,
            content=body,
            headers={USAGE_HEADER: platform.usage_header(failure.estimated_time_to_regain_access)}
        )

    async def handle(request: Request, node_id: str, action: str, apply) -> Response:
        if extra_latency_ms > 0:
            time.sleep(extra_latency_ms / 1000.0)

        platform.call_count += 1
        key = request.headers.get(IDEMPOTENCY_KEY_HEADER)
        body = {}
        if request.method in ("POST", "DELETE"):
            raw = await request.body()
            body = json.loads(raw) if raw else {}
        platform.calls.append({
            "action": action,
            "node_id": node_id,
            "method": request.method,
            "idempotency_key": key,
            "body": body,
        })

        if platform.failures:
            return error_response(platform.failures.pop(0))
        if rng.random() < error_rate:
            return error_response(InjectedFailure(status_code=500, code=2, message="Simulated error"))

        if key and request.method != "GET" and key in platform.responses_by_key:
            platform.replayed += 1
            content = platform.responses_by_key[key]
        else:
            content = apply(body)
            if key and request.method != "GET":
                platform.responses_by_key[key] = content

        return JSONResponse(content=content, headers={USAGE_HEADER: platform.usage_header()})

    @app.post("/_mock/failures")
    async def inject_failures(failures: List[InjectedFailure]):
        """Queue failures answered to the next calls, in order."""
        platform.failures.extend(failures)
        return {"queued": len(platform.failures)}

    @app.get("/_mock/state")
    async def get_state():
        """Snapshot of what the mock received."""
        return {
            "calls": len(platform.calls),
            "feed_uploads": platform.feed_uploads,
            "products": platform.products,
            "logs": len(platform.logs),
            "replayed": platform.replayed,
        }

    @app.get("/health")
    async def health():
        """Health check endpoint."""
        return {"status": "healthy", "server": "mock-commerce-api"}

    @app.post("/{version}/{integration_id}/file_update")
    async def create_feed_upload(version: str, integration_id: str, request: Request):
        def apply(body):
            missing = [field for field in ("url", "feed_type", "update_type") if not body.get(field)]
            if missing:
                raise HTTPException(status_code=400, detail=f"Missing fields: {', '.join(missing)}")
            upload = {"id": uuid.uuid4().hex, **body}
            platform.feed_uploads.append(upload)
            return {"id": upload["id"]}
        return await handle(request, integration_id, "feed_upload_create", apply)

    @app.post("/{version}/{catalog_id}/products")
    async def create_product(version: str, catalog_id: str, request: Request):
        def apply(body):
            product_id = uuid.uuid4().hex
            platform.products[product_id] = {"catalog_id": catalog_id, **body}
            return {"id": product_id}
        return await handle(request, catalog_id, "product_create", apply)

    @app.post("/{version}/{integration_id}/logs")
    async def log_event(version: str, integration_id: str, request: Request):
        def apply(body):
            platform.logs.append(body)
            return {"success": True}
        return await handle(request, integration_id, "log_event", apply)

    def require_product(product_id: str) -> Dict[str, Any]:
        if product_id not in platform.products:
            raise HTTPException(status_code=404, detail=f"Unknown product {product_id}")
        return platform.products[product_id]

    @app.post("/{version}/{product_id}")
    async def update_product(version: str, product_id: str, request: Request):
        def apply(body):
            require_product(product_id).update(body)
            return {"success": True}
        return await handle(request, product_id, "product_update", apply)

    @app.delete("/{version}/{product_id}")
    async def delete_product(version: str, product_id: str, request: Request):
        def apply(body):
            require_product(product_id)
            del platform.products[product_id]
            return {"success": True}
        return await handle(request, product_id, "product_delete", apply)

    @app.get("/{version}/{product_id}")
    async def read_product(version: str, product_id: str, request: Request, fields: str = "id"):
        def apply(body):
            product = require_product(product_id)
            values = {"id": product_id, **product}
            return {field: values.get(field) for field in fields.split(",")}
        return await handle(request, product_id, "product_read", apply)

    return app


def _sample_record(data_stream_name: str, record_id: int, rng: random.Random) -> Dict[str, Any]:
    if data_stream_name == "products":
        return {
            "id": record_id,
            "sku": f"SKU-{record_id:05d}",
            "name": f"Product {record_id}",
            "description": f"Description of product {record_id}, with a comma",
            "price": f"{rng.uniform(5.0, 300.0):.2f}",
            "stock_status": rng.choice(["instock", "outofstock", "onbackorder"]),
            "permalink": f"https://shop.example.com/product/{record_id}",
            "images": [{"src": f"https://shop.example.com/img/{record_id}.jpg"}],
            "categories": [{"name": rng.choice(["Clothing", "Books", "Electronics"])}],
        }
    if data_stream_name == "ratings_and_reviews":
        return {
            "id": record_id,
            "rating": rng.randint(1, 5),
            "review": f"Review {record_id}: \"great\"",
            "reviewer": f"Reviewer {record_id}",
            "reviewer_id": rng.choice([0, record_id]),
            "date_created": "2024-01-01T00:00:00",
            "product": {"name": f"Product {record_id}", "sku": f"SKU-{record_id:05d}"},
        }
    if data_stream_name == "promotions":
        return {
            "id": record_id,
            "code": f"SAVE{record_id}",
            "discount_type": rng.choice(["percent", "fixed_cart"]),
            "amount": str(rng.randint(5, 50)),
        }
    if data_stream_name == "shipping_profiles":
        return {
            "id": record_id,
            "zone_name": f"Zone {record_id}",
            "locations": [{"country": "US", "states": ["CA", "NY"]}],
            "methods": [{"title": "Flat rate", "cost": "5.00"}],
        }
    return {
        "id": record_id,
        "name": f"Menu {record_id}",
        "items": [{"title": "Shop", "items": [{"title": "Books", "id": 10}]}],
    }


def create_mock_store(
    random_seed: Optional[int] = None,
    error_rate: float = 0.0,
    record_counts: Optional[Dict[str, int]] = None
) -> FastAPI:
    """
    Create a mock store API serving ``/store/{data_stream_name}`` collections.

    Records are generated deterministically per id. Pages past the end
    answer 204.

    Args:
        random_seed: Seed for record contents and random failures
        error_rate: Probability of a random 503 response (0.0-1.0)
        record_counts: Records per data stream name (default 250 products,
            120 reviews, 30 promotions, 3 shipping zones, 1 menu)
    """
    app = FastAPI(title="Mock store API")
    counts = {
        "products": 250,
        "ratings_and_reviews": 120,
        "promotions": 30,
        "shipping_profiles": 3,
        "navigation_menu": 1,
        **(record_counts or {}),
    }
    seed = 0 if random_seed is None else random_seed
    failure_rng = random.Random(seed)

    @app.get("/store/{data_stream_name}")
    async def get_records(data_stream_name: str, page: Optional[int] = None, per_page: int = 100):
        """Paginated records; no ``page`` returns the whole collection."""
        if data_stream_name not in counts:
            raise HTTPException(status_code=404, detail="Unknown collection")
        if failure_rng.random() < error_rate:
            raise HTTPException(status_code=503, detail="Simulated error")
        if page is not None and (page < 1 or per_page < 1):
            raise HTTPException(status_code=400, detail="Invalid page number")

        total = counts[data_stream_name]
        if page is None:
            ids = range(1, total + 1)
        else:
            start = (page - 1) * per_page
            if start >= total:
                return Response(status_code=204)  # No content
            ids = range(start + 1, min(total, start + per_page) + 1)

        return [
            _sample_record(data_stream_name, record_id, random.Random(seed * 100003 + record_id))
            for record_id in ids
        ]

    @app.get("/health")
    async def health():
        """Health check endpoint."""
        return {"status": "healthy", "server": "mock-store"}

    return app


def create_app() -> FastAPI:
    """
    Factory function for uvicorn --factory.

    Reads MOCK_SERVER ("commerce" or "store") from the environment.
    """
    seed = int(os.getenv("RANDOM_SEED", 42))
    error_rate = float(os.getenv("ERROR_RATE", 0.0))
    if os.getenv("MOCK_SERVER", "commerce") == "store":
        return create_mock_store(random_seed=seed, error_rate=error_rate)
    return create_mock_commerce_api(
        random_seed=seed,
        error_rate=error_rate,
        extra_latency_ms=int(os.getenv("EXTRA_LATENCY_MS", 0))
    )
