import logging

import pytest

from haproxy_lb.config import Config, HAProxyTunables, parse_log_level


def test_from_env_requires_server_and_token(monkeypatch):
    monkeypatch.delenv("KUBE_SERVER", raising=False)
    monkeypatch.delenv("KUBE_SERVICE_TOKEN", raising=False)
    with pytest.raises(SystemExit):
        Config.from_env()


def test_from_env_defaults(monkeypatch):
    for name in (
        "KUBE_NAMESPACE", "UPDATE_INTERVAL", "HAPROXY_CONFIG", "HAPROXY_MAX_CONN", "CONFIG_TEMPLATE"
    ):
        monkeypatch.delenv(name, raising=False)
    monkeypatch.setenv("KUBE_SERVER", "https://k8s:6443/")
    monkeypatch.setenv("KUBE_SERVICE_TOKEN", "tok")

    config = Config.from_env()
    assert config.kube_server == "https://k8s:6443"
    assert config.namespace == "default"
    assert config.update_interval == 60
    assert config.haproxy_config == "/var/lib/haproxy/haproxy.cfg"
    assert config.tunables == HAProxyTunables()
    assert config.config_template == ""


def test_from_env_overrides(monkeypatch):
    monkeypatch.setenv("KUBE_SERVER", "https://k8s:6443")
    monkeypatch.setenv("KUBE_SERVICE_TOKEN", "tok")
    monkeypatch.setenv("KUBE_NAMESPACE", "edge")
    monkeypatch.setenv("UPDATE_INTERVAL", "15")
    monkeypatch.setenv("HAPROXY_MAX_CONN", "500")
    monkeypatch.setenv("HAPROXY_TIMEOUT_CLIENT", "30s")

    config = Config.from_env()
    assert config.namespace == "edge"
    assert config.update_interval == 15
    assert config.tunables.maxconn == 500
    assert config.tunables.timeout_client == "30s"


def test_from_env_rejects_zero_interval(monkeypatch):
    monkeypatch.setenv("KUBE_SERVER", "https://k8s:6443")
    monkeypatch.setenv("KUBE_SERVICE_TOKEN", "tok")
    monkeypatch.setenv("UPDATE_INTERVAL", "0")
    with pytest.raises(SystemExit):
        Config.from_env()


def test_parse_log_level():
    assert parse_log_level("debug") == logging.DEBUG
    assert parse_log_level("WARN") == logging.WARNING
    assert parse_log_level("nonsense") == logging.WARNING


def test_from_env_accepts_existing_template(monkeypatch, tmp_path):
    template = tmp_path / "haproxy.cfg.j2"
    template.write_text("global\n", encoding="utf-8")
    monkeypatch.setenv("KUBE_SERVER", "https://k8s:6443")
    monkeypatch.setenv("KUBE_SERVICE_TOKEN", "tok")
    monkeypatch.setenv("CONFIG_TEMPLATE", str(template))
    assert Config.from_env().config_template == str(template)


def test_from_env_rejects_missing_template(monkeypatch, tmp_path):
    monkeypatch.setenv("KUBE_SERVER", "https://k8s:6443")
    monkeypatch.setenv("KUBE_SERVICE_TOKEN", "tok")
    monkeypatch.setenv("CONFIG_TEMPLATE", str(tmp_path / "absent.j2"))
    with pytest.raises(SystemExit):
        Config.from_env()
