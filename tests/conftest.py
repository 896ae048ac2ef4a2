import pytest

from haproxy_lb.config import HAProxyTunables
from haproxy_lb.haproxy import ProcessHandle, ReloadOutcome, ReloadResult
from haproxy_lb.reconciler import Reconciler
from haproxy_lb.renderer import HAProxyRenderer


class FakeKubeClient:
    def __init__(self, services=None, nodes=None):
        self.services = services or []
        self.nodes = nodes or []
        self.patched = []
        self.patch_ok = True
        self.fail_with = None
        self.on_fetch = None

    def list_nodes(self):
        if self.on_fetch:
            self.on_fetch()
        if self.fail_with:
            raise self.fail_with
        return self.nodes

    def list_services(self):
        return self.services

    def update_service_status(self, service):
        self.patched.append(service)
        return self.patch_ok


class FakeController:
    """Records calls; validates unless told otherwise; hands out pids 100, 101..."""

    def __init__(self):
        self.calls = []
        self.valid = True
        self.exit_on_reload = False
        self.spawn_error = None
        self.next_pid = 100
        self.validated_texts = []

    def validate(self, path):
        self.calls.append(("validate", path))
        with open(path, encoding="utf-8") as f:
            self.validated_texts.append(f.read())
        return self.valid

    def reload(self, path, previous):
        self.calls.append(("reload", path, previous.pid))
        if self.spawn_error:
            raise self.spawn_error
        if self.exit_on_reload:
            return ReloadResult(ReloadOutcome.EXITED, previous, 1)
        pid = self.next_pid
        self.next_pid += 1
        return ReloadResult(ReloadOutcome.STARTED, ProcessHandle(pid))

    @property
    def reloads(self):
        return [c for c in self.calls if c[0] == "reload"]


@pytest.fixture
def renderer():
    return HAProxyRenderer(HAProxyTunables())


@pytest.fixture
def controller():
    return FakeController()


@pytest.fixture
def kube():
    return FakeKubeClient()


@pytest.fixture
def config_path(tmp_path):
    return str(tmp_path / "haproxy.cfg")


@pytest.fixture
def reconciler(kube, renderer, controller, config_path):
    return Reconciler(kube, renderer, controller, config_path, interval=3600)
