import json
from os import getenv
from pathlib import Path

from pydantic import BaseModel, Field, TypeAdapter, ValidationError

from .errors import RuleConfigError
from .labels import parse_labels
from .models import RoutingRule, RuleSet

API_PATHS = ('/crawl', '/task', '/results')
LABELS = TypeAdapter(dict[str, str])


class Settings(BaseModel):
    redis_url: str = 'redis://localhost:6379'
    backend_host: str = 'crawl4ai'
    api_host: str = 'localhost'
    api_port: int = 11235
    default_port: int = 80
    routes_file: str | None = None
    admin_token: str | None = None
    upstream_timeout: float = 20.0
    rate_limit_capacity: int = 50
    rate_limit_rate: float = 1.0
    required_paths: list[str] = Field(default_factory=lambda: list(API_PATHS))

    @classmethod
    def from_env(cls) -> 'Settings':
        values = {
            'redis_url': getenv('REDIS_URL'),
            'backend_host': getenv('BACKEND_HOST'),
            'api_host': getenv('API_HOST'),
            'api_port': getenv('API_PORT'),
            'default_port': getenv('DEFAULT_PORT'),
            'routes_file': getenv('ROUTES_FILE'),
            'admin_token': getenv('ADMIN_TOKEN'),
            'upstream_timeout': getenv('UPSTREAM_TIMEOUT'),
            'rate_limit_capacity': getenv('RATE_LIMIT_CAPACITY'),
            'rate_limit_rate': getenv('RATE_LIMIT_RATE'),
        }
        required = getenv('REQUIRED_PATHS')
        if required is not None:
            values['required_paths'] = [p.strip() for p in required.split(',') if p.strip()]

        return cls(**{k: v for k, v in values.items() if v is not None})


def default_rule_set(config: Settings) -> RuleSet:
    """In-memory rules used when no rule file is configured."""
    return RuleSet(
        rules=(
            RoutingRule(
                name='crawler-api',
                host=config.api_host,
                path_prefixes=API_PATHS,
                priority=100,
                target_port=config.api_port,
            ),
        ),
        default_port=config.default_port,
    )


def load_rule_set(path: str | Path, default_port: int = 80) -> RuleSet:
    """
    Load a rule set from JSON. Accepts either explicit rules or Traefik labels:

        {"default_port": 80, "rules": [{"host": ..., "path_prefixes": [...], ...}]}
        {"default_port": 80, "labels": {"traefik.http.routers.api.rule": ...}}

    Both keys may be present; label rules follow the explicit ones.
    """
    try:
        data = json.loads(Path(path).read_text())
    except (OSError, ValueError) as exc:
        raise RuleConfigError(f'Cannot read rule file {path}: {exc}') from exc
    if not isinstance(data, dict):
        raise RuleConfigError(f'Rule file {path} must contain a JSON object')

    data.setdefault('default_port', default_port)
    labels = data.pop('labels', None)

    try:
        if labels is not None:
            rules = data.get('rules', [])
            if not isinstance(rules, list):
                raise RuleConfigError(f'Rule file {path}: "rules" must be a list')
            data['rules'] = [*rules, *parse_labels(LABELS.validate_python(labels))]
        return RuleSet.model_validate(data)
    except ValidationError as exc:
        raise RuleConfigError(f'Invalid rule file {path}: {exc}') from exc


settings = Settings.from_env()
