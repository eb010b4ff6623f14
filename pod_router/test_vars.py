import importlib

import pytest

import pod_router.vars as vars_module


@pytest.fixture
def reload_vars(monkeypatch):
    """Reload pod_router.vars under a patched environment, restoring it afterwards."""
    for name in ("POD_DNS_NAME", "COLYSEUS_INTERNAL_URL", "POD_PORT", "COLYSEUS_PORT"):
        monkeypatch.delenv(name, raising=False)

    def _reload(**env):
        for key, value in env.items():
            monkeypatch.setenv(key, value)
        return importlib.reload(vars_module)

    yield _reload
    monkeypatch.undo()
    importlib.reload(vars_module)


def test_defaults(reload_vars):
    module = reload_vars(POD_DNS_NAME="pods.internal")

    settings = module.validate_config()

    assert settings["dns_name"] == "pods.internal"
    assert settings["pod_port"] == 2567
    assert settings["pod_id_path"] == "/podid"
    assert settings["cache_ttl"] == 18
    assert settings["probe_timeout"] == 3.0
    assert settings["health_timeout"] == 2.0
    assert settings["failure_status"] == 504
    assert settings["coalesce"] is True


def test_colyseus_variable_names_are_accepted(reload_vars):
    module = reload_vars(
        COLYSEUS_INTERNAL_URL="colyseus.up.railway.internal", COLYSEUS_PORT="3000"
    )

    settings = module.validate_config()

    assert settings["dns_name"] == "colyseus.up.railway.internal"
    assert settings["pod_port"] == 3000


def test_missing_dns_name_is_fatal(reload_vars):
    module = reload_vars()

    with pytest.raises(module.ConfigurationError, match="POD_DNS_NAME"):
        module.validate_config()


def test_non_numeric_port_is_fatal(reload_vars):
    module = reload_vars(POD_DNS_NAME="pods.internal", POD_PORT="game")

    with pytest.raises(module.ConfigurationError, match="POD_PORT"):
        module.validate_config()


def test_failure_status_must_be_404_or_504(reload_vars):
    module = reload_vars(POD_DNS_NAME="pods.internal", DISCOVERY_FAILURE_STATUS="500")

    with pytest.raises(module.ConfigurationError, match="DISCOVERY_FAILURE_STATUS"):
        module.validate_config()


def test_minimal_variant_status(reload_vars):
    module = reload_vars(POD_DNS_NAME="pods.internal", DISCOVERY_FAILURE_STATUS="404")

    assert module.validate_config()["failure_status"] == 404


def test_pod_id_path_normalised(reload_vars):
    module = reload_vars(POD_DNS_NAME="pods.internal", POD_ID_PATH="identity")

    assert module.validate_config()["pod_id_path"] == "/identity"
