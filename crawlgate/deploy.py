"""
Deployment description for the crawler container behind the gateway.

Validates what an operator would otherwise paste into a dashboard by hand
(image reference, host port) and produces the matching routing rule and
Traefik labels.
"""
import re
import socket

from pydantic import BaseModel, Field, field_validator

from .config import API_PATHS
from .errors import PortInUseError
from .labels import render_labels
from .models import RoutingRule, RuleSet

_COMPONENT = r'[a-z0-9]+(?:(?:[._]|__|-+)[a-z0-9]+)*'
IMAGE_REFERENCE = re.compile(
    r'^(?:(?P<registry>localhost(?::\d+)?|(?:[a-zA-Z0-9-]+\.)+[a-zA-Z0-9-]+(?::\d+)?|[a-zA-Z0-9-]+:\d+)/)?'
    rf'(?P<name>{_COMPONENT}(?:/{_COMPONENT})*)'
    r'(?::(?P<tag>\w[\w.-]{0,127}))?'
    r'(?:@(?P<digest>[A-Za-z][A-Za-z0-9]*(?:[-_+.][A-Za-z][A-Za-z0-9]*)*:[0-9a-fA-F]{32,}))?$'
)


class ServiceDeployment(BaseModel):
    image: str
    hostname: str = Field(min_length=1)
    host_port: int = Field(ge=1, le=65535)
    container_port: int = Field(default=11235, ge=1, le=65535)
    api_paths: tuple[str, ...] = API_PATHS
    priority: int = 100
    router: str = Field(default='crawl4ai', pattern=r'^[A-Za-z0-9_-]+$')

    @field_validator('image')
    @classmethod
    def _check_image(cls, value: str) -> str:
        if not IMAGE_REFERENCE.match(value):
            raise ValueError(f'Malformed image reference {value!r}')
        return value

    def routing_rule(self) -> RoutingRule:
        return RoutingRule(
            name=self.router,
            host=self.hostname,
            path_prefixes=self.api_paths,
            priority=self.priority,
            target_port=self.container_port,
        )

    def rule_set(self, default_port: int = 80) -> RuleSet:
        return RuleSet(rules=(self.routing_rule(),), default_port=default_port)

    def labels(self) -> dict[str, str]:
        return {'traefik.enable': 'true', **render_labels(self.router, self.routing_rule())}

    def ensure_port_available(self, bind_host: str = '0.0.0.0') -> None:
        """Raise PortInUseError if ``host_port`` cannot be bound on ``bind_host``."""
        with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as sock:
            try:
                sock.bind((bind_host, self.host_port))
            except OSError as exc:
                raise PortInUseError(self.host_port, exc.strerror or str(exc)) from exc
