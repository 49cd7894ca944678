"""Tests for the async Kubernetes wrapper."""

from types import SimpleNamespace

import pytest
from kubernetes.client.exceptions import ApiException
from kubernetes.config import ConfigException
from urllib3.exceptions import MaxRetryError

from maas_dashboard import kube as kube_module
from maas_dashboard.kube import KubeClient, KubeUnavailableError, PodInfo, label_selector
from maas_dashboard.live_requests import LiveRequestService


def pod(name, phase="Running"):
    return SimpleNamespace(metadata=SimpleNamespace(name=name), status=SimpleNamespace(phase=phase))


class FakeCoreApi:
    def __init__(self, pods=None, logs="", error=None):
        self.pods = pods or []
        self.logs = logs
        self.error = error
        self.calls = []

    def list_namespaced_pod(self, namespace, label_selector=None):
        self.calls.append(("list", namespace, label_selector))
        if self.error:
            raise self.error
        return SimpleNamespace(items=self.pods)

    def read_namespaced_pod_log(self, name, namespace, **kwargs):
        self.calls.append(("logs", name, namespace, kwargs))
        if self.error:
            raise self.error
        return self.logs


class FakeCustomApi:
    def __init__(self, items=None, error=None):
        self.items = items or []
        self.error = error
        self.calls = []

    def list_namespaced_custom_object(self, group, version, namespace, plural):
        self.calls.append(("namespaced", group, version, namespace, plural))
        if self.error:
            raise self.error
        return {"items": self.items}

    def list_cluster_custom_object(self, group, version, plural):
        self.calls.append(("cluster", group, version, plural))
        if self.error:
            raise self.error
        return {"items": self.items}


def test_label_selector():
    assert label_selector({"app": "gateway"}) == "app=gateway"
    assert label_selector({"a": "1", "b": "2"}) == "a=1,b=2"


def test_pod_info_running():
    assert PodInfo("p", "Running").is_running
    assert not PodInfo("p", "Pending").is_running
    assert not PodInfo("p").is_running


class TestPods:
    """Pod listing and log reads."""

    async def test_find_pods(self):
        core = FakeCoreApi(pods=[pod("gw-1"), pod("gw-2", "Pending"), SimpleNamespace(metadata=None, status=None)])
        kube = KubeClient(core_api=core)

        pods = await kube.find_pods("llm", {"app": "gateway"})

        assert pods == [PodInfo("gw-1", "Running"), PodInfo("gw-2", "Pending")]
        assert core.calls == [("list", "llm", "app=gateway")]
        assert kube.mode == "injected"

    async def test_find_pods_api_error_returns_empty(self):
        kube = KubeClient(core_api=FakeCoreApi(error=ApiException(status=403, reason="Forbidden")))

        assert await kube.find_pods("llm", {"app": "gateway"}) == []

    async def test_read_pod_logs_passes_window(self):
        core = FakeCoreApi(logs="line-1\nline-2")
        kube = KubeClient(core_api=core)

        logs = await kube.read_pod_logs("llm", "gw-1", tail_lines=100, since_seconds=3600)

        assert logs == "line-1\nline-2"
        assert core.calls == [("logs", "gw-1", "llm", {"tail_lines": 100, "since_seconds": 3600})]

    async def test_read_pod_logs_without_window(self):
        core = FakeCoreApi(logs=None)
        kube = KubeClient(core_api=core)

        assert await kube.read_pod_logs("llm", "gw-1") == ""
        assert core.calls[0][3] == {}

    async def test_read_pod_logs_raises(self):
        kube = KubeClient(core_api=FakeCoreApi(error=ApiException(status=404, reason="Not Found")))

        with pytest.raises(ApiException):
            await kube.read_pod_logs("llm", "gone")


class TestCustomObjects:
    """Custom resource listing."""

    async def test_namespaced(self):
        custom = FakeCustomApi(items=[{"metadata": {"name": "a"}}])
        kube = KubeClient(custom_api=custom)

        items = await kube.list_custom_objects("kuadrant.io", "v1", "authpolicies", "llm")

        assert items == [{"metadata": {"name": "a"}}]
        assert custom.calls == [("namespaced", "kuadrant.io", "v1", "llm", "authpolicies")]

    async def test_cluster_scope(self):
        custom = FakeCustomApi(items=[])
        kube = KubeClient(custom_api=custom)

        assert await kube.list_custom_objects("kuadrant.io", "v1", "authpolicies") == []
        assert custom.calls == [("cluster", "kuadrant.io", "v1", "authpolicies")]

    async def test_errors_propagate(self):
        kube = KubeClient(custom_api=FakeCustomApi(error=ApiException(status=404)))

        with pytest.raises(ApiException):
            await kube.list_custom_objects("kuadrant.io", "v1", "authpolicies", "llm")


class TestConfigLoading:
    """Credential resolution on first use."""

    def _fail(self, *args, **kwargs):
        raise ConfigException("no config")

    async def test_unavailable(self, monkeypatch):
        monkeypatch.setattr(kube_module.config, "load_incluster_config", self._fail)
        monkeypatch.setattr(kube_module.config, "load_kube_config", self._fail)
        kube = KubeClient()

        assert await kube.find_pods("llm", {"app": "gateway"}) == []
        assert kube.mode == "unavailable"
        with pytest.raises(KubeUnavailableError):
            await kube.list_custom_objects("kuadrant.io", "v1", "authpolicies")

    async def test_in_cluster_preferred(self, monkeypatch):
        core = FakeCoreApi(pods=[pod("limitador-0")])
        monkeypatch.setattr(kube_module.config, "load_incluster_config", lambda: None)
        monkeypatch.setattr(kube_module.config, "load_kube_config", self._fail)
        monkeypatch.setattr(kube_module.client, "CoreV1Api", lambda: core)
        monkeypatch.setattr(kube_module.client, "CustomObjectsApi", lambda: FakeCustomApi())
        kube = KubeClient()

        pods = await kube.find_pods("kuadrant-system", {"app": "limitador"})

        assert kube.mode == "in-cluster"
        assert [p.name for p in pods] == ["limitador-0"]

    async def test_kubeconfig_fallback(self, monkeypatch):
        monkeypatch.setattr(kube_module.config, "load_incluster_config", self._fail)
        monkeypatch.setattr(kube_module.config, "load_kube_config", lambda: None)
        monkeypatch.setattr(kube_module.client, "CoreV1Api", lambda: FakeCoreApi())
        monkeypatch.setattr(kube_module.client, "CustomObjectsApi", lambda: FakeCustomApi())
        kube = KubeClient()

        await kube.find_pods("llm", {"app": "gateway"})

        assert kube.mode == "kubeconfig"


class TestUnreachableApiServer:
    """Connection failures below the API client degrade like API errors."""

    def refused(self):
        return MaxRetryError(None, "/api/v1/namespaces/llm/pods", reason="Connection refused")

    async def test_find_pods_returns_empty(self):
        kube = KubeClient(core_api=FakeCoreApi(error=self.refused()))

        assert await kube.find_pods("llm", {"app": "gateway"}) == []

    async def test_live_requests_empty(self, config):
        kube = KubeClient(core_api=FakeCoreApi(error=self.refused()))

        assert await LiveRequestService(kube, config).get_live_requests() == []

    async def test_custom_objects_raise_for_caller(self):
        kube = KubeClient(custom_api=FakeCustomApi(error=self.refused()))

        with pytest.raises(MaxRetryError):
            await kube.list_custom_objects("kuadrant.io", "v1", "authpolicies")
