"""
Translation between Traefik docker labels and routing rules.

Only the subset of the Traefik rule language that maps onto a
:class:`RoutingRule` is understood: one ``Host`` matcher, alone or combined with one or
more ``PathPrefix`` matchers, e.g.::

    Host(`crawl.example.com`) && (PathPrefix(`/crawl`) || PathPrefix(`/task`))
"""
import re
from itertools import product
from typing import Mapping

from pydantic import ValidationError

from .errors import LabelParseError
from .models import RoutingRule

ROUTER_LABEL = re.compile(r'^traefik\.http\.routers\.([^.]+)\.(rule|priority|service)$')
SERVICE_PORT_LABEL = re.compile(r'^traefik\.http\.services\.([^.]+)\.loadbalancer\.server\.port$')
TOKEN = re.compile(
    r'\s*(?:(?P<matcher>\w+)\(\s*`(?P<arg>[^`]*)`\s*\)|(?P<op>&&|\|\||\(|\)))'
)


def _tokenize(expression: str) -> list[tuple]:
    tokens = []
    pos = 0
    stripped = expression.rstrip()
    while pos < len(stripped):
        m = TOKEN.match(stripped, pos)
        if not m:
            raise LabelParseError(f'Cannot parse rule near {stripped[pos:]!r}')
        if m.group('op'):
            tokens.append((m.group('op'), None))
        else:
            tokens.append((m.group('matcher'), m.group('arg')))
        pos = m.end()
    return tokens


class _RuleParser:
    """
    Recursive descent over the token list. Each sub-expression is returned in
    disjunctive normal form: a list of alternatives, each a list of matchers.
    ``&&`` binds tighter than ``||``, as in Traefik.
    """
    def __init__(self, tokens: list[tuple]):
        self.tokens = tokens
        self.pos = 0

    def parse(self) -> list[list[tuple]]:
        result = self._or()
        if self.pos != len(self.tokens):
            raise LabelParseError(f'Unexpected {self.tokens[self.pos][0]!r} in rule')
        return result

    def _peek(self):
        return self.tokens[self.pos][0] if self.pos < len(self.tokens) else None

    def _or(self):
        alternatives = self._and()
        while self._peek() == '||':
            self.pos += 1
            alternatives = alternatives + self._and()
        return alternatives

    def _and(self):
        alternatives = self._atom()
        while self._peek() == '&&':
            self.pos += 1
            right = self._atom()
            alternatives = [a + b for a, b in product(alternatives, right)]
        return alternatives

    def _atom(self):
        kind = self._peek()
        if kind is None:
            raise LabelParseError('Rule ends unexpectedly')
        if kind == '(':
            self.pos += 1
            inner = self._or()
            if self._peek() != ')':
                raise LabelParseError('Unbalanced parentheses in rule')
            self.pos += 1
            return inner
        if kind in ('&&', '||', ')'):
            raise LabelParseError(f'Unexpected {kind!r} in rule')
        if kind not in ('Host', 'PathPrefix'):
            raise LabelParseError(f'Unsupported matcher {kind}()')
        token = self.tokens[self.pos]
        self.pos += 1
        return [[token]]


def parse_rule(expression: str) -> tuple[str, list[str]]:
    """
    Parse a router rule into ``(host, path_prefixes)``.

    Every alternative of the expression must pair the same single ``Host``
    with at most one ``PathPrefix``; anything else cannot be expressed as a
    single routing rule. A bare ``Host`` alternative covers every path and
    yields the prefix ``/``.
    """
    hosts, prefixes = set(), []
    for alternative in _RuleParser(_tokenize(expression)).parse():
        alt_hosts = [arg for kind, arg in alternative if kind == 'Host']
        alt_prefixes = [arg for kind, arg in alternative if kind == 'PathPrefix']
        if len(alt_hosts) != 1 or len(alt_prefixes) > 1:
            raise LabelParseError(
                f'Rule {expression!r} must combine one Host with PathPrefix matchers'
            )
        hosts.add(alt_hosts[0])
        prefixes.append(alt_prefixes[0] if alt_prefixes else '/')

    if len(hosts) != 1:
        raise LabelParseError(f'Rule {expression!r} mixes several hosts')
    return hosts.pop(), list(dict.fromkeys(prefixes))


def parse_labels(labels: Mapping[str, str]) -> list[RoutingRule]:
    """
    Build routing rules from a container's Traefik labels.

    A router without a ``service`` label is bound to the service of the same
    name, or to the only service declared. Without a ``priority`` label the
    rule length is used, which is Traefik's own default.
    """
    if str(labels.get('traefik.enable', 'true')).lower() == 'false':
        return []

    routers: dict[str, dict[str, str]] = {}
    ports: dict[str, int] = {}
    for key, value in labels.items():
        if m := ROUTER_LABEL.match(key):
            routers.setdefault(m.group(1), {})[m.group(2)] = value
        elif m := SERVICE_PORT_LABEL.match(key):
            try:
                ports[m.group(1)] = int(value)
            except ValueError:
                raise LabelParseError(f'Service {m.group(1)!r} has invalid port {value!r}')

    rules = []
    for router, fields in routers.items():
        if 'rule' not in fields:
            raise LabelParseError(f'Router {router!r} has no rule label')
        host, prefixes = parse_rule(fields['rule'])

        service = fields.get('service')
        if service is None:
            if router in ports:
                service = router
            elif len(ports) == 1:
                service = next(iter(ports))
        if service not in ports:
            raise LabelParseError(f'Router {router!r} has no service port')

        try:
            priority = int(fields.get('priority', len(fields['rule'])))
        except ValueError:
            raise LabelParseError(f'Router {router!r} has invalid priority {fields["priority"]!r}')

        try:
            rules.append(RoutingRule(
                name=router,
                host=host,
                path_prefixes=prefixes,
                priority=priority,
                target_port=ports[service],
            ))
        except ValidationError as exc:
            raise LabelParseError(f'Router {router!r} is not a valid rule: {exc}') from exc
    return rules


def render_labels(router: str, rule: RoutingRule) -> dict[str, str]:
    paths = ' || '.join(f'PathPrefix(`{prefix}`)' for prefix in rule.path_prefixes)
    if len(rule.path_prefixes) > 1:
        paths = f'({paths})'

    return {
        f'traefik.http.routers.{router}.rule': f'Host(`{rule.host}`) && {paths}',
        f'traefik.http.routers.{router}.priority': str(rule.priority),
        f'traefik.http.routers.{router}.service': router,
        f'traefik.http.services.{router}.loadbalancer.server.port': str(rule.target_port),
    }
