from typing import Any

from pydantic import BaseModel, ConfigDict, Field


class HealthStatus(BaseModel):
    status: str
    available_slots: int
    memory_usage: float
    cpu_usage: float


class CrawlRequest(BaseModel):
    """Body of ``POST /crawl``. Only the ``urls`` list is accepted."""
    model_config = ConfigDict(extra='forbid')

    urls: list[str] = Field(min_length=1)


class ErrorDetail(BaseModel):
    """One entry of a validation error response."""
    type: str
    loc: list[str | int]
    msg: str
    input: Any = None
