"""Owned ``kubectl port-forward`` processes.

Each forward is a child process held by a :class:`PortForwardRegistry`,
keyed by local port. The registry is a context manager: leaving the ``with``
block, normally or through an exception such as ``KeyboardInterrupt``,
terminates every child and kills the ones that ignore the request.

Examples
--------
Reach the ArgoCD API for the duration of a block:

    with PortForwardRegistry(env) as forwards:
        spec = PortForwardSpec("svc/argocd-server", "argocd", 8080, 443)
        forwards.start_and_wait(spec)
        login("localhost:8080", password)

"""

from __future__ import annotations

import dataclasses
import subprocess
import time
import typing as typ

from k3d_gitops.conditions import PortOpen
from k3d_gitops.logging import get_logger, log_debug, log_info, log_warning
from k3d_gitops.readiness import (
    FunctionCondition,
    PollPolicy,
    ReadinessGate,
    require_ready,
)

if typ.TYPE_CHECKING:
    import collections.abc as cabc
    import types

logger = get_logger(__name__)

_TERMINATE_GRACE = 5.0
_HOLD_POLL_INTERVAL = 1.0


@dataclasses.dataclass(frozen=True, slots=True)
class PortForwardSpec:
    """A forward from ``127.0.0.1:local_port`` to ``target:remote_port``.

    Attributes:
        target: kubectl resource reference such as ``svc/argocd-server`` or
            ``deployment/wil-playground``.

    """

    target: str
    namespace: str
    local_port: int
    remote_port: int

    def command(self) -> list[str]:
        """Return the kubectl command line for this forward."""
        return [
            "kubectl",
            "port-forward",
            self.target,
            f"--namespace={self.namespace}",
            f"{self.local_port}:{self.remote_port}",
        ]


def _ensure_running(process: subprocess.Popen[bytes], spec: PortForwardSpec) -> None:
    code = process.poll()
    if code is not None:
        msg = (
            f"kubectl port-forward to {spec.target} on port {spec.local_port} "
            f"exited with status {code}"
        )
        raise RuntimeError(msg)


@dataclasses.dataclass(slots=True)
class _Forward:
    spec: PortForwardSpec
    process: subprocess.Popen[bytes]

    def alive(self) -> bool:
        return self.process.poll() is None


class PortForwardRegistry:
    """Start, track and release port-forward child processes.

    Parameters
    ----------
    env : dict[str, str]
        Environment dict with KUBECONFIG set.
    popen : callable, optional
        Process factory; tests substitute a fake.
    sleep : callable, optional
        Sleep function used while holding forwards and by the port gate.
    grace : float, default 5.0
        Seconds to wait after ``terminate()`` before ``kill()``.

    """

    def __init__(
        self,
        env: dict[str, str],
        *,
        popen: cabc.Callable[..., subprocess.Popen[bytes]] = subprocess.Popen,
        sleep: cabc.Callable[[float], None] = time.sleep,
        grace: float = _TERMINATE_GRACE,
    ) -> None:
        """Create an empty registry."""
        self._env = env
        self._popen = popen
        self._sleep = sleep
        self._grace = grace
        self._forwards: dict[int, _Forward] = {}

    def __enter__(self) -> PortForwardRegistry:
        """Return the registry itself."""
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: types.TracebackType | None,
    ) -> None:
        """Release every forward."""
        self.close()

    @property
    def active_ports(self) -> list[int]:
        """Local ports whose forward process is still running."""
        return sorted(port for port, fwd in self._forwards.items() if fwd.alive())

    def start(self, spec: PortForwardSpec) -> subprocess.Popen[bytes]:
        """Start ``spec`` unless an identical live forward already exists.

        A live forward for the same local port but a different target is
        stopped first; a dead one is replaced.
        """
        existing = self._forwards.get(spec.local_port)
        if existing is not None:
            if existing.alive() and existing.spec == spec:
                log_debug(logger, "Reusing port-forward on %d", spec.local_port)
                return existing.process
            self.stop(spec.local_port)

        log_info(
            logger,
            "Forwarding 127.0.0.1:%d to %s:%d",
            spec.local_port,
            spec.target,
            spec.remote_port,
        )
        # S603: kubectl via PATH is standard; command built from PortForwardSpec
        process = self._popen(
            spec.command(),
            env=self._env,
            stdout=subprocess.DEVNULL,
            stderr=subprocess.DEVNULL,
        )
        self._forwards[spec.local_port] = _Forward(spec, process)
        return process

    def start_and_wait(
        self, spec: PortForwardSpec, timeout: float = 30
    ) -> subprocess.Popen[bytes]:
        """Start ``spec`` and block until its local port accepts connections.

        The port only counts as open while the kubectl child is alive, so a
        stale listener on the same port does not satisfy the wait.

        Raises:
            GateTimeoutError: If the port does not open within ``timeout``.
            RuntimeError: If the kubectl child exits before the port opens.

        """
        process = self.start(spec)
        port_open = PortOpen(spec.local_port)

        def _listening() -> bool:
            _ensure_running(process, spec)
            is_open = port_open.evaluate()
            _ensure_running(process, spec)
            return is_open

        condition = FunctionCondition(port_open.description, _listening)
        policy = PollPolicy(interval=0.5, timeout=timeout)
        result = ReadinessGate(sleep=self._sleep).wait(condition, policy)
        require_ready(result, f"port-forward on {condition.description}", policy)
        return process

    def stop(self, local_port: int) -> None:
        """Stop the forward on ``local_port`` if there is one."""
        forward = self._forwards.pop(local_port, None)
        if forward is None:
            return
        self._terminate(forward)

    def close(self) -> None:
        """Stop every forward."""
        for port in list(self._forwards):
            self.stop(port)

    def hold(self) -> None:
        """Block until interrupted or until every forward has exited.

        ``KeyboardInterrupt`` propagates; the ``with`` block then releases
        the forwards.
        """
        while self.active_ports:
            self._sleep(_HOLD_POLL_INTERVAL)
        if self._forwards:
            log_warning(logger, "All port-forwards exited")

    def _terminate(self, forward: _Forward) -> None:
        process = forward.process
        if process.poll() is not None:
            return
        process.terminate()
        try:
            process.wait(timeout=self._grace)
        except subprocess.TimeoutExpired:
            log_warning(
                logger,
                "Port-forward on %d ignored SIGTERM; killing it",
                forward.spec.local_port,
            )
            process.kill()
            process.wait()
