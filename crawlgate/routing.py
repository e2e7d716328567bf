import logging
from typing import Iterable, Sequence

from .models import RouteRequest, RoutingDecision, RoutingRule, RuleSet

logger = logging.getLogger("uvicorn.error")


def resolve(request: RouteRequest,
            rules: Sequence[RoutingRule],
            default_port: int) -> RoutingDecision:
    """
    Pick the rule that handles ``request``.

    The highest priority match wins. Among equal priorities the earliest rule
    in ``rules`` wins. Without a match the request goes to ``default_port``.
    """
    best = None
    for rule in rules:
        if not rule.matches(request.host, request.path):
            continue
        # strict comparison keeps the first of equal-priority matches
        if best is None or rule.priority > best.priority:
            best = rule

    if best is None:
        return RoutingDecision(matched=False, target_port=default_port)
    return RoutingDecision(matched=True, target_port=best.target_port, rule=best)


def find_gaps(rule_set: RuleSet, host: str, paths: Iterable[str]) -> list[str]:
    """Paths on ``host`` that no rule covers and that fall through to the default port."""
    return [
        path for path in paths
        if not resolve(RouteRequest(host=host, path=path), rule_set.rules, rule_set.default_port).matched
    ]


class RouteTable:
    """
    Holder of the active rule snapshot.

    Snapshots are immutable; ``reload`` publishes a new one with a single
    reference assignment, so concurrent ``resolve`` calls always see either
    the old or the new rule set in full.
    """
    def __init__(self, rule_set: RuleSet | None = None):
        self._snapshot = rule_set or RuleSet()

    @property
    def snapshot(self) -> RuleSet:
        return self._snapshot

    def resolve(self, request: RouteRequest) -> RoutingDecision:
        snapshot = self._snapshot
        decision = resolve(request, snapshot.rules, snapshot.default_port)
        logger.debug(
            "Route %s%s -> port %s (%s)",
            request.host, request.path, decision.target_port,
            decision.rule.label() if decision.rule else "default",
        )
        return decision

    def reload(self, rule_set: RuleSet) -> RuleSet:
        """Swap in ``rule_set`` and return the snapshot it replaces."""
        previous, self._snapshot = self._snapshot, rule_set
        logger.info("Loaded %d routing rule(s), default port %d",
                    len(rule_set.rules), rule_set.default_port)
        return previous


route_table = RouteTable()
