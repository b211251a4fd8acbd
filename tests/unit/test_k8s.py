"""Unit tests for Kubernetes helpers."""

from __future__ import annotations

import base64
import json
import subprocess
import typing as typ

import pytest
from conftest import make_subprocess_mock, pod, pod_list_json

from k3d_gitops.k8s import (
    apply_manifest,
    apply_manifest_url,
    ensure_namespace,
    exec_in_pod,
    get_json,
    list_pods,
    patch_resource,
    read_secret_field,
    rollout_restart,
    rollout_status,
)
from k3d_gitops.validation import (
    ExecutableNotFoundError,
    SecretDecodeError,
    TransientCheckError,
)

if typ.TYPE_CHECKING:
    from conftest import MockSubprocessCapture


class TestEnsureNamespace:
    """Tests for ensure_namespace."""

    def test_skips_existing_namespace(
        self, monkeypatch: pytest.MonkeyPatch, test_env: dict[str, str]
    ) -> None:
        """Should only check when the namespace exists."""
        calls: list[tuple[str, ...]] = []
        monkeypatch.setattr(
            "subprocess.run", make_subprocess_mock(calls, namespace_exists=True)
        )

        ensure_namespace("argocd", test_env)

        assert calls == [("kubectl", "get", "namespace", "argocd")]

    def test_creates_missing_namespace(
        self, monkeypatch: pytest.MonkeyPatch, test_env: dict[str, str]
    ) -> None:
        """Should render the namespace with a dry run and apply it."""
        calls: list[tuple[str, ...]] = []
        monkeypatch.setattr(
            "subprocess.run", make_subprocess_mock(calls, namespace_exists=False)
        )

        ensure_namespace("argocd", test_env)

        assert calls == [
            ("kubectl", "get", "namespace", "argocd"),
            (
                "kubectl",
                "create",
                "namespace",
                "argocd",
                "--dry-run=client",
                "-o",
                "yaml",
            ),
            ("kubectl", "apply", "-f", "-"),
        ]


class TestApply:
    """Tests for apply_manifest and apply_manifest_url."""

    def test_apply_manifest_uses_stdin(
        self, mock_subprocess_run: MockSubprocessCapture, test_env: dict[str, str]
    ) -> None:
        """Should pipe the manifest into kubectl apply."""
        apply_manifest("kind: ConfigMap\n", test_env)

        assert mock_subprocess_run.calls == [("kubectl", "apply", "-f", "-")]
        assert mock_subprocess_run.inputs == ["kind: ConfigMap\n"]

    def test_apply_manifest_url_with_namespace(
        self, mock_subprocess_run: MockSubprocessCapture, test_env: dict[str, str]
    ) -> None:
        """Should pass the namespace before the URL."""
        apply_manifest_url("https://example.test/install.yaml", test_env, "argocd")

        assert mock_subprocess_run.calls == [
            (
                "kubectl",
                "apply",
                "-n",
                "argocd",
                "-f",
                "https://example.test/install.yaml",
            )
        ]


class TestGetJson:
    """Tests for get_json and list_pods."""

    def test_parses_object(
        self, monkeypatch: pytest.MonkeyPatch, test_env: dict[str, str]
    ) -> None:
        """Should return the parsed object."""
        calls: list[tuple[str, ...]] = []
        monkeypatch.setattr(
            "subprocess.run", make_subprocess_mock(calls, stdout='{"items": []}')
        )

        assert get_json(["get", "pods"], test_env) == {"items": []}
        assert calls == [("kubectl", "get", "pods", "-o", "json")]

    @pytest.mark.parametrize(
        ("stdout", "returncode"),
        [("[]", 0), ("garbage", 0), ('{"items": []}', 1)],
    )
    def test_returns_none_on_bad_output(
        self,
        monkeypatch: pytest.MonkeyPatch,
        test_env: dict[str, str],
        stdout: str,
        returncode: int,
    ) -> None:
        """Should return None for non-objects, invalid JSON or failures."""
        calls: list[tuple[str, ...]] = []
        monkeypatch.setattr(
            "subprocess.run",
            make_subprocess_mock(calls, stdout=stdout, returncode=returncode),
        )

        assert get_json(["get", "pods"], test_env) is None

    def test_missing_kubectl(
        self, monkeypatch: pytest.MonkeyPatch, test_env: dict[str, str]
    ) -> None:
        """Should raise ExecutableNotFoundError when kubectl is absent."""

        def _missing(args: list[str], **_kwargs: object) -> None:
            raise FileNotFoundError(args[0])

        monkeypatch.setattr("subprocess.run", _missing)

        with pytest.raises(ExecutableNotFoundError, match="kubectl"):
            get_json(["get", "pods"], test_env)

    def test_timeout_is_transient(
        self, monkeypatch: pytest.MonkeyPatch, test_env: dict[str, str]
    ) -> None:
        """Should raise TransientCheckError when kubectl hangs."""

        def _hang(args: list[str], **_kwargs: object) -> None:
            raise subprocess.TimeoutExpired(args, 30)

        monkeypatch.setattr("subprocess.run", _hang)

        with pytest.raises(TransientCheckError, match="timed out"):
            get_json(["get", "pods"], test_env)

    def test_list_pods_returns_items(
        self, monkeypatch: pytest.MonkeyPatch, test_env: dict[str, str]
    ) -> None:
        """Should return the pod items."""
        calls: list[tuple[str, ...]] = []
        monkeypatch.setattr(
            "subprocess.run",
            make_subprocess_mock(calls, stdout=pod_list_json(pod("a"))),
        )

        pods = list_pods("dev", test_env)

        assert pods is not None
        assert [p["metadata"]["name"] for p in pods] == ["a"]


class TestRollout:
    """Tests for rollout helpers."""

    def test_restart(
        self, mock_subprocess_run: MockSubprocessCapture, test_env: dict[str, str]
    ) -> None:
        """Should restart kind/name in the namespace."""
        rollout_restart("deployment", "coredns", "kube-system", test_env)

        assert mock_subprocess_run.calls == [
            (
                "kubectl",
                "rollout",
                "restart",
                "deployment/coredns",
                "--namespace=kube-system",
            )
        ]

    def test_status_passes_timeout(
        self, mock_subprocess_run: MockSubprocessCapture, test_env: dict[str, str]
    ) -> None:
        """Should pass kubectl's timeout and outlive it."""
        rollout_status("deployment", "argocd-server", "argocd", test_env, timeout=300)

        assert mock_subprocess_run.calls[0][-1] == "--timeout=300s"
        assert mock_subprocess_run.kwargs[0]["timeout"] == 330

    @pytest.mark.parametrize("timeout", [0, 3601])
    def test_status_rejects_invalid_timeout(
        self, test_env: dict[str, str], timeout: int
    ) -> None:
        """Should reject timeouts outside 1-3600 seconds."""
        with pytest.raises(ValueError, match="timeout must be between"):
            rollout_status("deployment", "x", "y", test_env, timeout=timeout)


class TestPatchAndExec:
    """Tests for patch_resource and exec_in_pod."""

    def test_patch_serialises_json(
        self, mock_subprocess_run: MockSubprocessCapture, test_env: dict[str, str]
    ) -> None:
        """Should send a strategic merge patch as JSON."""
        patch = {"spec": {"replicas": 2}}

        patch_resource("deployment", "argocd-repo-server", "argocd", patch, test_env)

        call = mock_subprocess_run.calls[0]
        assert call[:6] == (
            "kubectl",
            "patch",
            "deployment",
            "argocd-repo-server",
            "--namespace=argocd",
            "--type=strategic",
        )
        assert json.loads(call[-1]) == patch

    def test_exec_with_container(
        self, monkeypatch: pytest.MonkeyPatch, test_env: dict[str, str]
    ) -> None:
        """Should target the container and return stdout."""
        calls: list[tuple[str, ...]] = []
        monkeypatch.setattr(
            "subprocess.run", make_subprocess_mock(calls, stdout="glpat-123\n")
        )

        output = exec_in_pod(
            "toolbox-0", "gitlab", ["echo", "hi"], test_env, container="toolbox"
        )

        assert output == "glpat-123\n"
        assert calls == [
            (
                "kubectl",
                "exec",
                "--namespace=gitlab",
                "toolbox-0",
                "-c",
                "toolbox",
                "--",
                "echo",
                "hi",
            )
        ]


class TestReadSecretField:
    """Tests for read_secret_field."""

    def test_decodes_value(
        self, monkeypatch: pytest.MonkeyPatch, test_env: dict[str, str]
    ) -> None:
        """Should read the field with a quoted jsonpath and decode it."""
        calls: list[tuple[str, ...]] = []
        encoded = base64.b64encode(b"s3cret").decode()
        monkeypatch.setattr(
            "subprocess.run", make_subprocess_mock(calls, stdout=encoded)
        )

        value = read_secret_field(
            "argocd-initial-admin-secret", "password", "argocd", test_env
        )

        assert value == "s3cret"
        assert calls[0][-1] == "jsonpath={.data['password']}"

    @pytest.mark.parametrize("field", ["", "bad field", "a/b"])
    def test_rejects_invalid_field(self, test_env: dict[str, str], field: str) -> None:
        """Should validate the field name before calling kubectl."""
        with pytest.raises(ValueError, match="field"):
            read_secret_field("secret", field, "ns", test_env)

    def test_rejects_empty_value(
        self, monkeypatch: pytest.MonkeyPatch, test_env: dict[str, str]
    ) -> None:
        """Should raise ValueError when the field is missing."""
        calls: list[tuple[str, ...]] = []
        monkeypatch.setattr("subprocess.run", make_subprocess_mock(calls, stdout=""))

        with pytest.raises(ValueError, match="empty or missing"):
            read_secret_field("secret", "password", "ns", test_env)

    def test_invalid_base64(
        self, monkeypatch: pytest.MonkeyPatch, test_env: dict[str, str]
    ) -> None:
        """Should raise SecretDecodeError for malformed data."""
        calls: list[tuple[str, ...]] = []
        monkeypatch.setattr(
            "subprocess.run", make_subprocess_mock(calls, stdout="!!not-base64!!")
        )

        with pytest.raises(SecretDecodeError):
            read_secret_field("secret", "password", "ns", test_env)
