import httpx
import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient

import pod_router.vars as vars_module
from pod_router.discovery import HealthAggregator, PodCache, PodDiscovery
from pod_router.server import app, build_components


def test_build_components_shares_one_cache_and_prober(settings):
    target = FastAPI()
    client = httpx.AsyncClient()

    build_components(target, settings, client)

    assert isinstance(target.state.discovery, PodDiscovery)
    assert isinstance(target.state.health, HealthAggregator)
    assert isinstance(target.state.cache, PodCache)
    assert target.state.discovery.cache is target.state.cache
    assert target.state.discovery.prober is target.state.health.prober
    assert target.state.discovery.enumerator.hostname == "pods.internal"
    assert target.state.discovery.probe_timeout == 3.0
    assert target.state.health.timeout == 2.0
    assert target.state.cache.ttl == 18.0
    assert target.state.discovery.prober.identity_url("10.0.0.1") == "http://10.0.0.1:2567/podid"
    assert target.state.probe_client is client


def test_build_components_probes_on_separate_pool(settings):
    target = FastAPI()
    client = httpx.AsyncClient()
    probe_client = httpx.AsyncClient()

    build_components(target, settings, client, probe_client=probe_client)

    assert target.state.http_client is client
    assert target.state.discovery.prober.client is probe_client
    assert target.state.health.prober.client is probe_client


def test_startup_fails_without_pool_hostname(monkeypatch):
    monkeypatch.setattr(vars_module, "POD_DNS_NAME", "")

    with pytest.raises(vars_module.ConfigurationError):
        with TestClient(app):
            pass


def test_startup_wires_state(monkeypatch):
    monkeypatch.setattr(vars_module, "POD_DNS_NAME", "pods.internal")
    monkeypatch.setattr(vars_module, "POD_CACHE_TTL", "15")

    with TestClient(app):
        assert app.state.settings["dns_name"] == "pods.internal"
        assert app.state.cache.ttl == 15.0
        assert app.state.discovery.coalesce is True
        assert not app.state.http_client.is_closed
        assert app.state.probe_client is not app.state.http_client
        assert app.state.discovery.prober.client is app.state.probe_client

    assert app.state.http_client.is_closed
    assert app.state.probe_client.is_closed


def test_metrics_exposed_ahead_of_pod_routes():
    client = TestClient(app)

    response = client.get(vars_module.METRICS_PATH)

    assert response.status_code == 200
    assert "fastapi_app_info" in response.text
