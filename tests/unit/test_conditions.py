"""Unit tests for readiness conditions and anomaly probes."""

from __future__ import annotations

import socket
import subprocess
import typing as typ

import httpx
import pytest
from conftest import make_subprocess_mock, pod, pod_list_json

from k3d_gitops.conditions import (
    ApplicationRecognized,
    DeploymentPodsRunning,
    ImagePullAnomaly,
    NamespacePodsReady,
    NodesReady,
    PortOpen,
    RunningPodsAtLeast,
    UrlReachable,
)
from k3d_gitops.validation import ExecutableNotFoundError, TransientCheckError

if typ.TYPE_CHECKING:
    import collections.abc as cabc


def _patch_kubectl(
    monkeypatch: pytest.MonkeyPatch, stdout: str, returncode: int = 0
) -> list[tuple[str, ...]]:
    calls: list[tuple[str, ...]] = []
    monkeypatch.setattr(
        "subprocess.run",
        make_subprocess_mock(calls, stdout=stdout, returncode=returncode),
    )
    return calls


def _client(handler: cabc.Callable[[httpx.Request], httpx.Response]) -> httpx.Client:
    return httpx.Client(transport=httpx.MockTransport(handler))


class TestUrlReachable:
    """Tests for the HTTP reachability condition."""

    @pytest.mark.parametrize(
        ("status_code", "expected"),
        [(200, True), (302, True), (404, False), (502, False)],
    )
    def test_status_codes(
        self, status_code: int, expected: bool  # noqa: FBT001
    ) -> None:
        """Should treat statuses below 400 as reachable."""
        condition = UrlReachable(
            "https://gitlab.iot.local",
            client=_client(lambda _request: httpx.Response(status_code)),
        )

        assert condition.evaluate() is expected

    def test_transport_error_is_transient(self) -> None:
        """Should raise TransientCheckError when the connection fails."""

        def _refuse(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("connection refused", request=request)

        condition = UrlReachable("https://gitlab.iot.local", client=_client(_refuse))

        with pytest.raises(TransientCheckError, match="connection refused"):
            condition.evaluate()

    def test_description_is_url(self) -> None:
        """Should describe itself by URL."""
        assert UrlReachable("http://localhost:8888").description == (
            "http://localhost:8888"
        )

    def test_default_client_disables_verification(
        self, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        """Should pass verify and timeout to httpx.get."""
        captured: dict[str, object] = {}

        def _fake_get(url: str, **kwargs: object) -> httpx.Response:
            captured.update(kwargs, url=url)
            return httpx.Response(200)

        monkeypatch.setattr("httpx.get", _fake_get)

        assert UrlReachable("https://gitlab.iot.local", request_timeout=2).evaluate()
        assert captured == {
            "url": "https://gitlab.iot.local",
            "verify": False,
            "timeout": 2,
        }


class TestNamespacePodsReady:
    """Tests for NamespacePodsReady."""

    def test_all_ready(
        self, monkeypatch: pytest.MonkeyPatch, test_env: dict[str, str]
    ) -> None:
        """Should be satisfied when every pod is Ready."""
        calls = _patch_kubectl(
            monkeypatch, pod_list_json(pod("controller"), pod("speaker"))
        )

        assert NamespacePodsReady("metallb-system", test_env).evaluate() is True
        assert calls == [
            ("kubectl", "get", "pods", "--namespace=metallb-system", "-o", "json")
        ]

    def test_one_not_ready(
        self, monkeypatch: pytest.MonkeyPatch, test_env: dict[str, str]
    ) -> None:
        """Should not be satisfied while any pod is not Ready."""
        _patch_kubectl(
            monkeypatch,
            pod_list_json(pod("controller"), pod("speaker", ready=False)),
        )

        assert NamespacePodsReady("metallb-system", test_env).evaluate() is False

    def test_empty_namespace(
        self, monkeypatch: pytest.MonkeyPatch, test_env: dict[str, str]
    ) -> None:
        """Should not be satisfied before any pod exists."""
        _patch_kubectl(monkeypatch, pod_list_json())

        assert NamespacePodsReady("metallb-system", test_env).evaluate() is False

    def test_kubectl_failure(
        self, monkeypatch: pytest.MonkeyPatch, test_env: dict[str, str]
    ) -> None:
        """Should not be satisfied when kubectl fails."""
        _patch_kubectl(monkeypatch, "", returncode=1)

        assert NamespacePodsReady("metallb-system", test_env).evaluate() is False


class TestRunningPodsAtLeast:
    """Tests for RunningPodsAtLeast."""

    def test_counts_running_ready_pods(
        self, monkeypatch: pytest.MonkeyPatch, test_env: dict[str, str]
    ) -> None:
        """Should count only Running pods whose containers are all ready."""
        _patch_kubectl(
            monkeypatch,
            pod_list_json(
                pod("a"),
                pod("b"),
                pod("c", containers_ready=(True, False)),
                pod("d", phase="Pending"),
            ),
        )

        assert RunningPodsAtLeast("argocd", 2, test_env).evaluate() is True
        assert RunningPodsAtLeast("argocd", 3, test_env).evaluate() is False

    def test_pod_without_container_statuses_counts(
        self, monkeypatch: pytest.MonkeyPatch, test_env: dict[str, str]
    ) -> None:
        """Should treat a Running pod without container statuses as ready."""
        _patch_kubectl(monkeypatch, pod_list_json(pod("a", containers_ready=())))

        assert RunningPodsAtLeast("argocd", 1, test_env).evaluate() is True

    def test_rejects_non_positive_minimum(self, test_env: dict[str, str]) -> None:
        """Should reject a minimum below one."""
        with pytest.raises(ValueError, match="minimum must be >= 1"):
            RunningPodsAtLeast("argocd", 0, test_env)

    def test_description_mentions_count(self, test_env: dict[str, str]) -> None:
        """Should describe the threshold and namespace."""
        condition = RunningPodsAtLeast("argocd", 7, test_env)

        assert condition.description == "7 running pods in namespace 'argocd'"


class TestDeploymentPodsRunning:
    """Tests for DeploymentPodsRunning."""

    def test_matching_pods_running(
        self, monkeypatch: pytest.MonkeyPatch, test_env: dict[str, str]
    ) -> None:
        """Should be satisfied when a matching pod is Running."""
        _patch_kubectl(
            monkeypatch,
            pod_list_json(
                pod("wil-playground-7d9f-abc"), pod("other", phase="Pending")
            ),
        )

        assert DeploymentPodsRunning("dev", "wil-playground", test_env).evaluate()

    def test_no_matching_pods(
        self, monkeypatch: pytest.MonkeyPatch, test_env: dict[str, str]
    ) -> None:
        """Should not be satisfied when no pod matches."""
        _patch_kubectl(monkeypatch, pod_list_json(pod("other")))

        assert not DeploymentPodsRunning("dev", "wil-playground", test_env).evaluate()

    def test_leftover_failed_pod(
        self, monkeypatch: pytest.MonkeyPatch, test_env: dict[str, str]
    ) -> None:
        """Should not be held back by a Failed pod from an older rollout."""
        _patch_kubectl(
            monkeypatch,
            pod_list_json(
                pod("wil-playground-new-1"),
                pod("wil-playground-old-2", phase="Failed", ready=False),
            ),
        )

        assert DeploymentPodsRunning("dev", "wil-playground", test_env).evaluate()

    def test_matching_pods_not_running(
        self, monkeypatch: pytest.MonkeyPatch, test_env: dict[str, str]
    ) -> None:
        """Should not be satisfied while no matching pod is Running."""
        _patch_kubectl(
            monkeypatch,
            pod_list_json(
                pod("wil-playground-1", phase="Pending"),
                pod("wil-playground-2", phase="Failed"),
            ),
        )

        assert not DeploymentPodsRunning("dev", "wil-playground", test_env).evaluate()


class TestNodesReady:
    """Tests for NodesReady."""

    def test_ready_node(
        self, monkeypatch: pytest.MonkeyPatch, test_env: dict[str, str]
    ) -> None:
        """Should be satisfied by one Ready node."""
        calls = _patch_kubectl(
            monkeypatch, pod_list_json(pod("server-0", ready=False), pod("agent-0"))
        )

        assert NodesReady(test_env).evaluate() is True
        assert calls[0][:3] == ("kubectl", "get", "nodes")

    def test_no_ready_node(
        self, monkeypatch: pytest.MonkeyPatch, test_env: dict[str, str]
    ) -> None:
        """Should not be satisfied without a Ready node."""
        _patch_kubectl(monkeypatch, pod_list_json(pod("server-0", ready=False)))

        assert NodesReady(test_env).evaluate() is False


class TestApplicationRecognized:
    """Tests for ApplicationRecognized."""

    @pytest.mark.parametrize(("returncode", "expected"), [(0, True), (20, False)])
    def test_exit_status(
        self,
        monkeypatch: pytest.MonkeyPatch,
        returncode: int,
        expected: bool,  # noqa: FBT001
    ) -> None:
        """Should follow the exit status of argocd app get."""
        calls = _patch_kubectl(monkeypatch, "", returncode=returncode)

        assert ApplicationRecognized("will42").evaluate() is expected
        assert calls == [("argocd", "app", "get", "will42")]

    def test_missing_cli(self, monkeypatch: pytest.MonkeyPatch) -> None:
        """Should raise ExecutableNotFoundError when argocd is absent."""

        def _missing(args: list[str], **_kwargs: object) -> None:
            raise FileNotFoundError(args[0])

        monkeypatch.setattr("subprocess.run", _missing)

        with pytest.raises(ExecutableNotFoundError, match="argocd"):
            ApplicationRecognized("will42").evaluate()

    def test_timeout_is_transient(self, monkeypatch: pytest.MonkeyPatch) -> None:
        """Should raise TransientCheckError when the CLI hangs."""

        def _hang(args: list[str], **_kwargs: object) -> None:
            raise subprocess.TimeoutExpired(args, 30)

        monkeypatch.setattr("subprocess.run", _hang)

        with pytest.raises(TransientCheckError):
            ApplicationRecognized("will42").evaluate()


class TestPortOpen:
    """Tests for PortOpen."""

    def test_listening_port(self) -> None:
        """Should connect to a listening socket."""
        with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as server:
            server.bind(("127.0.0.1", 0))
            server.listen(1)
            port = server.getsockname()[1]

            assert PortOpen(port).evaluate() is True

    def test_closed_port(self) -> None:
        """Should report a port nobody listens on as closed."""
        with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as probe:
            probe.bind(("127.0.0.1", 0))
            port = probe.getsockname()[1]

        assert PortOpen(port, connect_timeout=0.2).evaluate() is False


class TestImagePullAnomaly:
    """Tests for ImagePullAnomaly."""

    @pytest.mark.parametrize("reason", ["ErrImagePull", "ImagePullBackOff"])
    def test_detects_pull_failures(
        self,
        monkeypatch: pytest.MonkeyPatch,
        test_env: dict[str, str],
        reason: str,
    ) -> None:
        """Should name every pod stuck pulling an image."""
        _patch_kubectl(
            monkeypatch,
            pod_list_json(
                pod("webservice-1", phase="Pending", waiting_reason=reason),
                pod("gitaly-0"),
                pod("sidekiq-1", phase="Pending", waiting_reason=reason),
            ),
        )

        message = ImagePullAnomaly("gitlab", test_env).detect()

        assert message == (
            "Error while pulling image in namespace 'gitlab': sidekiq-1, webservice-1"
        )

    @pytest.mark.parametrize(
        "status_key", ["initContainerStatuses", "ephemeralContainerStatuses"]
    )
    def test_detects_failures_outside_main_containers(
        self,
        monkeypatch: pytest.MonkeyPatch,
        test_env: dict[str, str],
        status_key: str,
    ) -> None:
        """Should report pull failures of init and ephemeral containers."""
        stuck = pod("migrations-1", phase="Pending", containers_ready=(False,))
        stuck["status"][status_key] = [
            {"name": "certificates", "state": {"waiting": {"reason": "ErrImagePull"}}}
        ]
        _patch_kubectl(monkeypatch, pod_list_json(stuck, pod("gitaly-0")))

        message = ImagePullAnomaly("gitlab", test_env).detect()

        assert message == (
            "Error while pulling image in namespace 'gitlab': migrations-1"
        )

    def test_quiet_when_healthy(
        self, monkeypatch: pytest.MonkeyPatch, test_env: dict[str, str]
    ) -> None:
        """Should return None when no container is stuck."""
        _patch_kubectl(
            monkeypatch,
            pod_list_json(
                pod(
                    "migrations",
                    phase="Pending",
                    waiting_reason="ContainerCreating",
                )
            ),
        )

        assert ImagePullAnomaly("gitlab", test_env).detect() is None
