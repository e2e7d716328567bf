import socket

import pytest
from pydantic import ValidationError

from crawlgate.deploy import ServiceDeployment
from crawlgate.errors import PortInUseError
from crawlgate.labels import parse_labels
from crawlgate.routing import resolve
from crawlgate.models import RouteRequest


def deployment(**overrides) -> ServiceDeployment:
    values = {
        'image': 'unclecode/crawl4ai:0.6.0rc1-r2',
        'hostname': 'crawl.example.com',
        'host_port': 11235,
    }
    return ServiceDeployment(**{**values, **overrides})


@pytest.mark.parametrize('image', [
    'unclecode/crawl4ai',
    'unclecode/crawl4ai:latest',
    'unclecode/crawl4ai:0.6.0rc1-r2',
    'ghcr.io/unclecode/crawl4ai:0.6.0',
    'localhost:5000/crawl4ai',
    'crawl4ai@sha256:' + 'a' * 64,
])
def test_valid_image_references(image):
    assert deployment(image=image).image == image


@pytest.mark.parametrize('image', [
    '',
    'unclecode/Crawl4ai',
    'unclecode/crawl4ai:',
    'unclecode/crawl4ai:0.6 ',
    'https://hub.docker.com/r/unclecode/crawl4ai',
    'docker pull unclecode/crawl4ai',
    'unclecode//crawl4ai',
])
def test_malformed_image_references_are_rejected(image):
    with pytest.raises(ValidationError):
        deployment(image=image)


def test_host_port_range():
    with pytest.raises(ValidationError):
        deployment(host_port=0)


def test_routing_rule_covers_api_paths():
    rule_set = deployment().rule_set(default_port=80)

    def port(path):
        return resolve(RouteRequest(host='crawl.example.com', path=path),
                       rule_set.rules, rule_set.default_port).target_port

    assert port('/crawl') == 11235
    assert port('/task/42') == 11235
    assert port('/results/42') == 11235
    assert port('/') == 80


def test_labels_describe_the_same_rule():
    dep = deployment(router='crawler')
    labels = dep.labels()

    assert labels['traefik.enable'] == 'true'
    assert labels['traefik.http.services.crawler.loadbalancer.server.port'] == '11235'
    assert parse_labels(labels) == [dep.routing_rule()]


def test_port_in_use_is_reported():
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as sock:
        sock.bind(('127.0.0.1', 0))
        sock.listen(1)
        busy_port = sock.getsockname()[1]

        with pytest.raises(PortInUseError) as exc_info:
            deployment(host_port=busy_port).ensure_port_available('127.0.0.1')

    assert exc_info.value.port == busy_port


def test_free_port_passes():
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as sock:
        sock.bind(('127.0.0.1', 0))
        free_port = sock.getsockname()[1]

    deployment(host_port=free_port).ensure_port_available('127.0.0.1')
