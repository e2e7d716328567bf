import logging
import secrets
from contextlib import asynccontextmanager

import httpx
from fastapi import Depends, FastAPI, HTTPException, Request, Response
from fastapi.security import APIKeyHeader
from redis.asyncio import Redis

from .config import default_rule_set, load_rule_set, settings
from .errors import RuleConfigError
from .middleware import RateLimitMiddleware
from .models import RouteRequest, RuleSet
from .rate_limit import RateLimiter
from .routing import find_gaps, route_table

logger = logging.getLogger("uvicorn.error")

HOP_BY_HOP_HEADERS = {
    b'connection',
    b'keep-alive',
    b'proxy-authenticate',
    b'proxy-authorization',
    b'te',
    b'trailers',
    b'transfer-encoding',
    b'upgrade',
    b'host',
}
DROPPED_RESPONSE_HEADERS = {"content-encoding", "transfer-encoding", "connection"}
admin_token_header = APIKeyHeader(name="x-gateway-token", auto_error=False)


def request_host(host_header: str) -> str:
    """Host header without its port, case preserved."""
    if host_header.startswith("["):
        return host_header[:host_header.find("]") + 1]
    host, sep, port = host_header.rpartition(":")
    return host if sep and port.isdigit() else host_header


def forward_path(request: Request) -> str:
    """Path as sent by the client, still percent-encoded."""
    raw_path = request.scope.get("raw_path")
    if not raw_path:
        return request.url.path
    return raw_path.split(b"?", 1)[0].decode("latin-1")


def initial_rule_set() -> RuleSet:
    if settings.routes_file:
        return load_rule_set(settings.routes_file, settings.default_port)
    return default_rule_set(settings)


def warn_about_gaps(rule_set: RuleSet) -> None:
    """Log required paths that would fall through to the default port."""
    hosts = sorted({rule.host for rule in rule_set.rules})
    if not hosts:
        logger.warning("No routing rules configured; all traffic goes to port %d",
                       rule_set.default_port)
    for host in hosts:
        gaps = find_gaps(rule_set, host, settings.required_paths)
        if gaps:
            logger.warning("Paths %s on %s are not routed and will reach port %d",
                           ", ".join(gaps), host, rule_set.default_port)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Lifespan context manager for startup and shutdown logic."""
    #---- Startup ----
    created = []    # state attributes owned (and closed) by this lifespan

    if not hasattr(app.state, 'limiter'):
        redis = Redis.from_url(settings.redis_url)
        await redis.ping()
        limiter = RateLimiter(redis)
        await limiter.load()

        app.state.redis = redis
        app.state.limiter = limiter
        created += ['redis', 'limiter']

    if not hasattr(app.state, 'http_client'):
        app.state.http_client = httpx.AsyncClient(timeout=settings.upstream_timeout)
        created.append('http_client')

    route_table.reload(initial_rule_set())
    warn_about_gaps(route_table.snapshot)

    try:
        yield
    finally:
        #---- Shutdown ----
        if 'http_client' in created:
            await app.state.http_client.aclose()
        if 'redis' in created:
            await app.state.redis.aclose()
        for name in created:
            delattr(app.state, name)


application = FastAPI(lifespan=lifespan)
application.add_middleware(RateLimitMiddleware)


def admin_enabled() -> bool:
    return bool(settings.admin_token)


def check_admin_token(token: str | None) -> None:
    if token is None or not secrets.compare_digest(token, settings.admin_token):
        raise HTTPException(status_code=401, detail="Invalid gateway token")


@application.get("/_gateway/routes")
async def list_routes(request: Request, token: str | None = Depends(admin_token_header)):
    # without ADMIN_TOKEN the management API is off and the path belongs to the backend
    if not admin_enabled():
        return await proxy(request.url.path, request)
    check_admin_token(token)
    return route_table.snapshot.model_dump()


@application.post("/_gateway/routes/reload")
async def reload_routes(request: Request, token: str | None = Depends(admin_token_header)):
    if not admin_enabled():
        return await proxy(request.url.path, request)
    check_admin_token(token)
    if not settings.routes_file:
        raise HTTPException(status_code=409, detail="No rule file configured")
    try:
        rule_set = load_rule_set(settings.routes_file, settings.default_port)
    except RuleConfigError as exc:
        logger.warning("Rule reload rejected: %s", exc)
        raise HTTPException(status_code=422, detail=str(exc))

    route_table.reload(rule_set)
    warn_about_gaps(rule_set)
    return rule_set.model_dump()


@application.api_route(
    path="/{path:path}",
    methods=["GET", "POST", "PUT", "DELETE", "PATCH", "OPTIONS", "HEAD"],
)
async def proxy(path: str, request: Request):
    original_host = request.headers.get("host", "")
    route_request = RouteRequest(host=request_host(original_host), path=request.url.path)
    decision = route_table.resolve(route_request)

    url = f"http://{settings.backend_host}:{decision.target_port}{forward_path(request)}"
    headers = [
        (k, v) for k, v in request.headers.raw if k.lower() not in HOP_BY_HOP_HEADERS
    ]
    headers += [
        (b'x-forwarded-host', original_host.encode()),
        (b'x-forwarded-proto', request.url.scheme.encode()),
    ]
    if request.client:
        headers.append((b'x-forwarded-for', request.client.host.encode()))

    body = await request.body()

    # ---- Proxy Request ----
    try:
        resp = await request.app.state.http_client.request(
            request.method,
            url,
            headers=headers,
            content=body,
            params=request.query_params,
        )
    except httpx.TimeoutException:
        logger.warning("Upstream %s timed out", url)
        raise HTTPException(status_code=504, detail="Upstream timed out")
    except httpx.HTTPError as exc:
        logger.warning("Upstream %s failed: %s", url, exc)
        raise HTTPException(status_code=502, detail=str(exc))

    filtered_headers = {
        k: v for k, v in resp.headers.items()
        if k.lower() not in DROPPED_RESPONSE_HEADERS
    }

    return Response(
        content=resp.content,
        status_code=resp.status_code,
        headers=filtered_headers,
    )
