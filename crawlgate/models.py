from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from .errors import ConflictingRulesError


class RoutingRule(BaseModel):
    """
    Maps requests for one host whose path starts with any of ``path_prefixes``
    to a backend port. Higher ``priority`` wins when several rules match.

    Prefix matching is case-sensitive. A rule without prefixes is invalid.
    """
    model_config = ConfigDict(frozen=True)

    host: str = Field(min_length=1)
    path_prefixes: tuple[str, ...]
    priority: int = 0
    target_port: int = Field(ge=1, le=65535)
    name: str | None = None

    @field_validator('path_prefixes', mode='before')
    @classmethod
    def _order_prefixes(cls, value):
        # sets carry no order; sort so the stored tuple is deterministic
        if isinstance(value, (set, frozenset)):
            return tuple(sorted(value))
        return value

    @field_validator('path_prefixes')
    @classmethod
    def _check_prefixes(cls, value: tuple[str, ...]) -> tuple[str, ...]:
        if not value:
            raise ValueError('path_prefixes must contain at least one prefix')
        if any(not prefix for prefix in value):
            raise ValueError('path prefixes must be non-empty strings')
        return tuple(dict.fromkeys(value))

    def matches(self, host: str, path: str) -> bool:
        return host == self.host and any(path.startswith(p) for p in self.path_prefixes)

    def overlaps(self, other: 'RoutingRule') -> bool:
        """True if some request path on the same host matches both rules."""
        if self.host != other.host:
            return False
        return any(
            p.startswith(q) or q.startswith(p)
            for p in self.path_prefixes
            for q in other.path_prefixes
        )

    def label(self) -> str:
        return self.name or f'{self.host}{list(self.path_prefixes)}'


class RuleSet(BaseModel):
    """Immutable snapshot of the configured rules plus the fallback port."""
    model_config = ConfigDict(frozen=True)

    rules: tuple[RoutingRule, ...] = ()
    default_port: int = Field(default=80, ge=1, le=65535)

    @model_validator(mode='after')
    def _reject_ambiguous_rules(self) -> 'RuleSet':
        for i, rule in enumerate(self.rules):
            for other in self.rules[i + 1:]:
                if rule.priority == other.priority and rule.overlaps(other):
                    raise ConflictingRulesError(rule, other)
        return self


class RouteRequest(BaseModel):
    model_config = ConfigDict(frozen=True)

    host: str
    path: str


class RoutingDecision(BaseModel):
    model_config = ConfigDict(frozen=True)

    matched: bool
    target_port: int
    rule: RoutingRule | None = None
