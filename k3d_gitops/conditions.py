"""Readiness conditions and anomaly probes.

Each condition is a small frozen dataclass exposing ``description`` and
``evaluate()``, suitable for :class:`k3d_gitops.readiness.ReadinessGate`.
Conditions only observe: none of them changes cluster state.

Failure classification follows the gate's contract. A probe that cannot
answer yet (HTTP transport error, kubectl timeout) raises
``TransientCheckError``; a probe whose tool is missing raises
``ExecutableNotFoundError``; a probe that answered "no" returns False.
"""

from __future__ import annotations

import dataclasses
import socket
import subprocess
import typing as typ

import httpx

from k3d_gitops.k8s import list_nodes, list_pods
from k3d_gitops.validation import ExecutableNotFoundError, TransientCheckError

_IMAGE_PULL_REASONS = frozenset({"ErrImagePull", "ImagePullBackOff"})
_STATUS_KEYS = (
    "initContainerStatuses",
    "containerStatuses",
    "ephemeralContainerStatuses",
)


def _pod_name(pod: dict[str, typ.Any]) -> str:
    return str(pod.get("metadata", {}).get("name", ""))


def _pod_phase(pod: dict[str, typ.Any]) -> str:
    return str(pod.get("status", {}).get("phase", ""))


def _has_ready_condition(resource: dict[str, typ.Any]) -> bool:
    """Return True when the resource reports ``Ready=True``."""
    conditions = resource.get("status", {}).get("conditions") or []
    return any(
        cond.get("type") == "Ready" and cond.get("status") == "True"
        for cond in conditions
    )


def _waiting_reasons(pod: dict[str, typ.Any]) -> set[str]:
    """Collect the waiting reasons of every container, init ones included."""
    status = pod.get("status", {})
    return {
        str(entry.get("state", {}).get("waiting", {}).get("reason"))
        for key in _STATUS_KEYS
        for entry in status.get(key) or []
    }


def _containers_ready(pod: dict[str, typ.Any]) -> bool:
    """Return True when every container status is ready.

    A pod without container statuses counts as ready.
    """
    statuses = pod.get("status", {}).get("containerStatuses") or []
    return all(status.get("ready") is True for status in statuses)


@dataclasses.dataclass(frozen=True, slots=True)
class UrlReachable:
    """A URL answers with a non-error HTTP status.

    Redirects are not followed, so a 3xx answer counts as reachable.

    Attributes:
        verify: Verify the server certificate. Off by default because the
            lab's certificates are issued by a private issuer.
        client: Optional preconfigured client (tests inject a mock transport).

    """

    url: str
    verify: bool = False
    request_timeout: float = 5.0
    client: httpx.Client | None = None

    @property
    def description(self) -> str:
        """Describe the condition."""
        return self.url

    def evaluate(self) -> bool:
        """Issue one GET request and report whether it succeeded."""
        try:
            if self.client is not None:
                response = self.client.get(self.url, timeout=self.request_timeout)
            else:
                response = httpx.get(
                    self.url, verify=self.verify, timeout=self.request_timeout
                )
        except httpx.HTTPError as e:
            msg = f"GET {self.url} failed: {e}"
            raise TransientCheckError(msg) from e
        return not response.is_error


@dataclasses.dataclass(frozen=True, slots=True)
class NamespacePodsReady:
    """Every pod in a namespace reports the Ready condition.

    An empty namespace is not ready: operators have not created their pods
    yet.
    """

    namespace: str
    env: dict[str, str] = dataclasses.field(repr=False)

    @property
    def description(self) -> str:
        """Describe the condition."""
        return f"pods in namespace '{self.namespace}'"

    def evaluate(self) -> bool:
        """Query the namespace's pods and check readiness."""
        pods = list_pods(self.namespace, self.env)
        if not pods:
            return False
        return all(_has_ready_condition(pod) for pod in pods)


@dataclasses.dataclass(frozen=True, slots=True)
class RunningPodsAtLeast:
    """At least ``minimum`` pods are Running with all containers ready."""

    namespace: str
    minimum: int
    env: dict[str, str] = dataclasses.field(repr=False)

    def __post_init__(self) -> None:
        """Reject a non-positive minimum."""
        if self.minimum < 1:
            msg = f"minimum must be >= 1, got {self.minimum}"
            raise ValueError(msg)

    @property
    def description(self) -> str:
        """Describe the condition."""
        return f"{self.minimum} running pods in namespace '{self.namespace}'"

    def evaluate(self) -> bool:
        """Count running, fully ready pods."""
        pods = list_pods(self.namespace, self.env) or []
        running = [
            pod
            for pod in pods
            if _pod_phase(pod) == "Running" and _containers_ready(pod)
        ]
        return len(running) >= self.minimum


@dataclasses.dataclass(frozen=True, slots=True)
class DeploymentPodsRunning:
    """At least one pod whose name contains ``name_fragment`` is Running.

    Failed or evicted pods left behind by an earlier rollout do not block
    the condition.
    """

    namespace: str
    name_fragment: str
    env: dict[str, str] = dataclasses.field(repr=False)

    @property
    def description(self) -> str:
        """Describe the condition."""
        return f"'{self.name_fragment}' pods in namespace '{self.namespace}'"

    def evaluate(self) -> bool:
        """Look for a Running pod among the matching ones."""
        pods = list_pods(self.namespace, self.env) or []
        return any(
            _pod_phase(pod) == "Running"
            for pod in pods
            if self.name_fragment in _pod_name(pod)
        )


@dataclasses.dataclass(frozen=True, slots=True)
class NodesReady:
    """At least one cluster node reports the Ready condition."""

    env: dict[str, str] = dataclasses.field(repr=False)

    @property
    def description(self) -> str:
        """Describe the condition."""
        return "a Ready cluster node"

    def evaluate(self) -> bool:
        """Query nodes and look for a Ready one."""
        nodes = list_nodes(self.env) or []
        return any(_has_ready_condition(node) for node in nodes)


@dataclasses.dataclass(frozen=True, slots=True)
class ApplicationRecognized:
    """The GitOps controller can return the named application."""

    name: str
    env: dict[str, str] | None = dataclasses.field(default=None, repr=False)

    @property
    def description(self) -> str:
        """Describe the condition."""
        return f"ArgoCD application '{self.name}'"

    def evaluate(self) -> bool:
        """Run ``argocd app get`` and report whether it succeeded."""
        try:
            # S603/S607: argocd via PATH is standard; name from Config
            result = subprocess.run(  # noqa: S603
                ["argocd", "app", "get", self.name],  # noqa: S607
                capture_output=True,
                env=self.env,
                timeout=30,
            )
        except FileNotFoundError as e:
            msg = "Required executable 'argocd' not found in PATH"
            raise ExecutableNotFoundError(msg) from e
        except subprocess.TimeoutExpired as e:
            msg = f"argocd app get {self.name} timed out"
            raise TransientCheckError(msg) from e
        return result.returncode == 0


@dataclasses.dataclass(frozen=True, slots=True)
class PortOpen:
    """A TCP port accepts connections."""

    port: int
    host: str = "127.0.0.1"
    connect_timeout: float = 1.0

    @property
    def description(self) -> str:
        """Describe the condition."""
        return f"{self.host}:{self.port}"

    def evaluate(self) -> bool:
        """Try to open and immediately close a connection."""
        try:
            with socket.create_connection(
                (self.host, self.port), timeout=self.connect_timeout
            ):
                return True
        except OSError:
            return False


@dataclasses.dataclass(frozen=True, slots=True)
class ImagePullAnomaly:
    """Detect containers stuck pulling their image in a namespace."""

    namespace: str
    env: dict[str, str] = dataclasses.field(repr=False)

    def detect(self) -> str | None:
        """Return a warning naming the affected pods, if any."""
        pods = list_pods(self.namespace, self.env) or []
        affected = sorted(
            _pod_name(pod)
            for pod in pods
            if _waiting_reasons(pod) & _IMAGE_PULL_REASONS
        )
        if not affected:
            return None
        return (
            f"Error while pulling image in namespace '{self.namespace}': "
            f"{', '.join(affected)}"
        )
