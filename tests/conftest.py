"""Shared pytest fixtures for k3d_gitops tests.

Subprocess-driven helpers are exercised by replacing ``subprocess.run`` with
recording doubles; readiness gates are driven by a fake sleeper so no test
waits on the wall clock.
"""

from __future__ import annotations

import dataclasses
import json
import os
import subprocess
import typing as typ

import pytest

if typ.TYPE_CHECKING:
    from pathlib import Path


@pytest.fixture
def test_env(tmp_path: Path) -> dict[str, str]:
    """Create a test environment with a temporary KUBECONFIG path.

    Parameters
    ----------
    tmp_path : Path
        Pytest's temporary path fixture.

    Returns
    -------
    dict[str, str]
        Environment dictionary with KUBECONFIG set to a temp file.

    """
    env = dict(os.environ)
    env["KUBECONFIG"] = str(tmp_path / "kubeconfig-test.yaml")
    return env


@dataclasses.dataclass(slots=True)
class MockSubprocessCapture:
    """Captured data from mocked subprocess.run calls."""

    calls: list[tuple[str, ...]]
    inputs: list[str]
    kwargs: list[dict[str, object]]


@pytest.fixture
def mock_subprocess_run(
    monkeypatch: pytest.MonkeyPatch,
) -> MockSubprocessCapture:
    """Mock subprocess.run and return captured calls and inputs.

    Every call succeeds with empty output.

    Parameters
    ----------
    monkeypatch : pytest.MonkeyPatch
        Pytest's monkeypatch fixture.

    Returns
    -------
    MockSubprocessCapture
        MockSubprocessCapture with calls, inputs and keyword arguments.

    """
    capture = MockSubprocessCapture(calls=[], inputs=[], kwargs=[])

    def _mock_run(
        args: list[str], **kwargs: object
    ) -> subprocess.CompletedProcess[str]:
        capture.calls.append(tuple(args))
        capture.kwargs.append(kwargs)
        if "input" in kwargs:
            capture.inputs.append(str(kwargs["input"]))
        return subprocess.CompletedProcess(args=args, returncode=0, stdout="")

    monkeypatch.setattr("subprocess.run", _mock_run)
    return capture


class SubprocessMockCallable(typ.Protocol):
    """Callable protocol for subprocess.run test doubles."""

    def __call__(
        self, args: list[str], **kwargs: object
    ) -> subprocess.CompletedProcess[str]:
        """Execute the mock subprocess run."""


def make_subprocess_mock(
    calls: list[tuple[str, ...]],
    *,
    namespace_exists: bool = True,
    stdout: str = "",
    returncode: int = 0,
) -> SubprocessMockCallable:
    """Create a subprocess.run mock that captures calls.

    Parameters
    ----------
    calls : list[tuple[str, ...]]
        List to append captured command tuples to.
    namespace_exists : bool, default True
        If False, kubectl get namespace commands return non-zero exit code.
    stdout : str, default ""
        Standard output to include in CompletedProcess.
    returncode : int, default 0
        Exit code for every other command.

    Returns
    -------
    Callable
        A mock_run function suitable for monkeypatch.setattr("subprocess.run", ...).

    Examples
    --------
    Mock subprocess with namespace not existing:

        calls = []
        mock_run = make_subprocess_mock(calls, namespace_exists=False)
        monkeypatch.setattr("subprocess.run", mock_run)

    """

    def mock_run(args: list[str], **kwargs: object) -> subprocess.CompletedProcess[str]:
        calls.append(tuple(args))
        code = returncode
        if args[:3] == ["kubectl", "get", "namespace"]:
            code = 0 if namespace_exists else 1
        result = subprocess.CompletedProcess(
            args=args, returncode=code, stdout=stdout, stderr=""
        )
        if kwargs.get("check") and code != 0:
            raise subprocess.CalledProcessError(code, args, stdout, "")
        return result

    return mock_run


def pod(
    name: str,
    *,
    phase: str = "Running",
    ready: bool = True,
    containers_ready: tuple[bool, ...] = (True,),
    waiting_reason: str | None = None,
) -> dict[str, typ.Any]:
    """Build a minimal pod object as returned by ``kubectl get pods -o json``."""
    statuses: list[dict[str, typ.Any]] = []
    for index, container_ready in enumerate(containers_ready):
        status: dict[str, typ.Any] = {"name": f"c{index}", "ready": container_ready}
        if waiting_reason is not None:
            status["state"] = {"waiting": {"reason": waiting_reason}}
        statuses.append(status)
    return {
        "metadata": {"name": name},
        "status": {
            "phase": phase,
            "conditions": [
                {"type": "Ready", "status": "True" if ready else "False"}
            ],
            "containerStatuses": statuses,
        },
    }


def pod_list_json(*pods: dict[str, typ.Any]) -> str:
    """Serialise pods into a ``kind: List`` document."""
    return json.dumps({"kind": "List", "items": list(pods)})


@dataclasses.dataclass(slots=True)
class FakeSleeper:
    """Records requested sleeps instead of sleeping."""

    sleeps: list[float] = dataclasses.field(default_factory=list)

    def __call__(self, seconds: float) -> None:
        self.sleeps.append(seconds)

    @property
    def total(self) -> float:
        """Sum of all requested sleeps."""
        return sum(self.sleeps)


@pytest.fixture
def fake_sleep() -> FakeSleeper:
    """Provide a sleeper that records durations without waiting."""
    return FakeSleeper()
