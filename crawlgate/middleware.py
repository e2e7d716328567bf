from fastapi import Request
from fastapi.responses import JSONResponse

from .config import settings


def client_key(request: Request) -> str:
    """Bucket identity: bearer token, else API key, else client address."""
    auth = request.headers.get("authorization", "")
    scheme, _, token = auth.partition(" ")
    if scheme.lower() == "bearer" and token.strip():
        return f"rl:token:{token.strip()}"
    api_key = request.headers.get("x-api-key")
    if api_key:
        return f"rl:key:{api_key}"
    host = request.client.host if request.client else "unknown"
    return f"rl:ip:{host}"


class RateLimitMiddleware:
    """
    Pure ASGI rate limiting in front of the proxy.

    The limiter is looked up on ``app.state`` per request so it can be created
    in the lifespan (or replaced in tests) after the middleware is installed.
    """
    def __init__(self, app, capacity: int | None = None, rate: float | None = None):
        self.app = app
        self.capacity = capacity or settings.rate_limit_capacity
        self.rate = rate or settings.rate_limit_rate

    async def __call__(self, scope, receive, send):
        if scope["type"] != "http":
            await self.app(scope, receive, send)
            return

        request = Request(scope, receive=receive)
        limiter = request.app.state.limiter
        allowed, remaining = await limiter.allow(
            client_key(request), capacity=self.capacity, rate=self.rate
        )
        if not allowed:
            response = JSONResponse(
                {"detail": "Rate limit exceeded"},
                status_code=429,
                headers={"x-ratelimit-remaining": "0"},
            )
            await response(scope, receive, send)
            return

        remaining_header = (b"x-ratelimit-remaining", str(int(remaining)).encode())

        async def send_with_remaining(message):
            if message["type"] == "http.response.start":
                message = {**message, "headers": [*message.get("headers", []), remaining_header]}
            await send(message)

        await self.app(scope, receive, send_with_remaining)
