# Centralized pytest configuration file (fixtures, hooks, plugins, etc.)
import json

import pytest
from asgi_lifespan import LifespanManager
from fastapi import FastAPI, Request
from httpx import AsyncClient, ASGITransport
from redis.asyncio import Redis

from crawlgate.config import settings
from crawlgate.main import application as gateway_app
from crawlgate.rate_limit import RateLimiter
from crawlgate.testing.fake_limiter import FakeRateLimiter

API_HOST = 'crawl.example.com'
API_RULE = {
    'name': 'crawler-api',
    'host': API_HOST,
    'path_prefixes': ['/crawl', '/task', '/results'],
    'priority': 100,
    'target_port': 11235,
}
ADMIN_TOKEN = 'admin-token'


#----Route overrides for tests----
@pytest.fixture
def routes_file(tmp_path, monkeypatch):
    path = tmp_path / 'routes.json'
    path.write_text(json.dumps({'default_port': 80, 'rules': [API_RULE]}))

    monkeypatch.setattr(settings, 'routes_file', str(path))
    monkeypatch.setattr(settings, 'backend_host', 'crawl4ai')
    monkeypatch.setattr(settings, 'admin_token', None)
    return path


@pytest.fixture
def admin_headers(routes_file, monkeypatch) -> dict:
    """Turn on the management API and return the headers that unlock it."""
    monkeypatch.setattr(settings, 'admin_token', ADMIN_TOKEN)
    return {'x-gateway-token': ADMIN_TOKEN}


@pytest.fixture
async def redis_client():
    """Real Redis client for integration testing"""
    redis = Redis.from_url('redis://localhost:6379', decode_responses=True)

    # Verify Redis is running
    try:
        await redis.ping()
    except Exception as e:
        await redis.aclose()
        pytest.skip(f'Redis not available: {e}')

    yield redis

    # Cleanup
    await redis.flushdb()
    await redis.aclose()


@pytest.fixture
async def rate_limiter(redis_client):
    """Real rate limiter for integration testing"""
    limiter = RateLimiter(redis_client)
    await limiter.load()

    yield limiter


@pytest.fixture
def upstream_app() -> FastAPI:
    app = FastAPI()     # fake backend; echoes what the gateway forwarded

    @app.api_route('/{path:path}', methods=['GET', 'POST', 'PUT', 'DELETE', 'PATCH'])
    async def echo(path: str, request: Request):
        return {
            'path': '/' + path,
            'method': request.method,
            'query': dict(request.query_params),
            'body': (await request.body()).decode(),
            'received_headers': dict(request.headers),
        }

    return app


@pytest.fixture
def fake_limiter() -> FakeRateLimiter:
    return FakeRateLimiter()


@pytest.fixture
async def gateway_client(upstream_app: FastAPI, routes_file, fake_limiter):
    """Gateway test client with upstream mocked via ASGITransport"""
    upstream_client = AsyncClient(transport=ASGITransport(app=upstream_app))

    # Pre-set state so the lifespan skips Redis and the real HTTP client
    gateway_app.state.limiter = fake_limiter
    gateway_app.state.http_client = upstream_client

    async with LifespanManager(gateway_app):
        async with AsyncClient(
                transport=ASGITransport(app=gateway_app),
                base_url=f'http://{API_HOST}') as client:
            yield client

    await upstream_client.aclose()
    del gateway_app.state.limiter
    del gateway_app.state.http_client
