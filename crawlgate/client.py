import logging
from typing import Iterable

import httpx

from .errors import AuthenticationError, CrawlerAPIError, CrawlValidationError, GatewayError
from .schemas import CrawlRequest, ErrorDetail, HealthStatus

logger = logging.getLogger("uvicorn.error")


class CrawlerClient:
    """
    Async client for the crawler API as exposed through the gateway.

    Calls other than ``health`` carry ``Authorization: Bearer <token>``.
    Error responses are raised as :class:`CrawlerAPIError` subclasses.
    """
    def __init__(self,
                 base_url: str,
                 token: str,
                 http_client: httpx.AsyncClient | None = None,
                 timeout: float = 20.0):
        self.base_url = base_url.rstrip("/")
        self.token = token
        self._owns_client = http_client is None
        self.http_client = http_client or httpx.AsyncClient(timeout=timeout)

    async def __aenter__(self):
        return self

    async def __aexit__(self, *exc_info):
        await self.aclose()

    async def aclose(self) -> None:
        if self._owns_client:
            await self.http_client.aclose()

    async def health(self) -> HealthStatus:
        data = await self._request("GET", "/health", authenticated=False)
        return HealthStatus.model_validate(data)

    async def submit(self, urls: Iterable[str]) -> dict:
        if isinstance(urls, (str, bytes)):
            raise TypeError("submit() takes a list of URLs, not a single URL")
        body = CrawlRequest(urls=list(urls))
        return await self._request("POST", "/crawl", json=body.model_dump())

    async def task(self, task_id: str) -> dict:
        return await self._request("GET", f"/task/{task_id}")

    async def results(self, task_id: str) -> dict:
        return await self._request("GET", f"/results/{task_id}")

    async def _request(self, method: str, path: str, authenticated: bool = True, **kwargs):
        headers = {"Authorization": f"Bearer {self.token}"} if authenticated else {}
        try:
            resp = await self.http_client.request(
                method, self.base_url + path, headers=headers, **kwargs
            )
        except httpx.HTTPError as exc:
            raise GatewayError(502, str(exc)) from exc

        if resp.is_success:
            return resp.json()
        raise_for_response(resp)


def raise_for_response(resp: httpx.Response) -> None:
    """Map a crawler error response onto the matching exception."""
    try:
        body = resp.json()
    except ValueError:
        body = resp.text
    detail = body.get("detail", body) if isinstance(body, dict) else body
    status = resp.status_code
    logger.debug("Crawler API error %s: %s", status, detail)

    if status in (401, 403):
        raise AuthenticationError(status, detail)
    if status == 422 and isinstance(detail, list):
        raise CrawlValidationError(status, [ErrorDetail.model_validate(item) for item in detail])
    if status in (502, 503, 504):
        raise GatewayError(status, detail)
    raise CrawlerAPIError(status, detail)
