"""Polling readiness gate.

A readiness gate blocks the calling flow until an external condition holds
or a timeout elapses. It is the single wait primitive used between
orchestration steps: after asking the cluster for something (install a
chart, restart a rollout, start a port-forward) the caller builds a
condition and a :class:`PollPolicy` and calls :meth:`ReadinessGate.wait`.

Elapsed time is the accumulated sleep budget. A condition that is slow to
evaluate (an HTTP probe hitting its own timeout, say) does not shorten the
number of polls the policy allows.

Examples
--------
Wait for GitLab to answer, warning about image pull failures meanwhile:

    policy = PollPolicy(interval=5, timeout=900)
    result = wait(
        UrlReachable("https://gitlab.iot.local", verify=False),
        policy,
        anomalies=[ImagePullAnomaly("gitlab", env)],
    )
    require_ready(result, "GitLab web UI", policy)

"""

from __future__ import annotations

import dataclasses
import enum
import time
import typing as typ

from k3d_gitops.logging import get_logger, log_debug, log_info, log_warning
from k3d_gitops.validation import (
    ExecutableNotFoundError,
    GateExternalError,
    GateTimeoutError,
    TransientCheckError,
)

if typ.TYPE_CHECKING:
    import collections.abc as cabc

logger = get_logger(__name__)

DEFAULT_PROGRESS_INTERVAL = 30.0


class Condition(typ.Protocol):
    """A side-effect-free check that can be evaluated repeatedly."""

    @property
    def description(self) -> str:
        """Human-readable name used in progress and timeout messages."""
        ...

    def evaluate(self) -> bool:
        """Return True once the awaited state has been reached."""
        ...


class AnomalyProbe(typ.Protocol):
    """A check for conditions worth surfacing while a gate is polling."""

    def detect(self) -> str | None:
        """Return a warning message when an anomaly is observed."""
        ...


class PollResult(enum.StrEnum):
    """Terminal outcome of a readiness gate."""

    READY = "ready"
    TIMED_OUT = "timed_out"
    EXTERNAL_ERROR = "external_error"


@dataclasses.dataclass(frozen=True, slots=True)
class PollPolicy:
    """Timing of a readiness gate, in seconds.

    The expected shape is ``interval <= progress_interval <= timeout``.
    Other shapes are accepted: a progress interval longer than the timeout
    simply yields no progress notices, and a timeout shorter than the
    interval times out after the first failed evaluation.

    Raises
    ------
    ValueError
        If any duration is not positive.

    """

    interval: float
    timeout: float
    progress_interval: float = DEFAULT_PROGRESS_INTERVAL

    def __post_init__(self) -> None:
        """Reject non-positive durations."""
        for name in ("interval", "timeout", "progress_interval"):
            value = getattr(self, name)
            if value <= 0:
                msg = f"{name} must be positive, got {value}"
                raise ValueError(msg)


@dataclasses.dataclass(frozen=True, slots=True)
class FunctionCondition:
    """Adapt a plain callable to the :class:`Condition` protocol."""

    description: str
    check: cabc.Callable[[], bool]

    def evaluate(self) -> bool:
        """Invoke the wrapped callable."""
        return self.check()


class ReadinessGate:
    """Blocking poll loop over a :class:`Condition`.

    The gate holds no state between calls; ``sleep`` is injectable so tests
    can drive it without waiting.
    """

    def __init__(
        self, *, sleep: cabc.Callable[[float], None] = time.sleep
    ) -> None:
        """Initialise the gate with the sleep function to use."""
        self._sleep = sleep

    def wait(
        self,
        condition: Condition,
        policy: PollPolicy,
        *,
        anomalies: cabc.Iterable[AnomalyProbe] = (),
    ) -> PollResult:
        """Poll ``condition`` until it holds or ``policy.timeout`` elapses.

        Parameters
        ----------
        condition : Condition
            Check to evaluate. A ``TransientCheckError`` counts as "not yet
            ready"; an ``ExecutableNotFoundError`` ends the wait.
        policy : PollPolicy
            Interval, timeout and progress interval.
        anomalies : Iterable[AnomalyProbe], optional
            Probes run after every failed poll. Detected anomalies are logged
            as warnings; they never end the wait.

        Returns
        -------
        PollResult
            ``READY``, ``TIMED_OUT`` or ``EXTERNAL_ERROR``.

        """
        probes = tuple(anomalies)
        description = condition.description
        elapsed = 0.0
        notices = 0

        log_info(logger, "Waiting for %s", description)
        while True:
            try:
                if self._evaluate(condition):
                    log_info(logger, "%s is ready", description)
                    return PollResult.READY
            except ExecutableNotFoundError as e:
                log_warning(logger, "Cannot check %s: %s", description, e)
                return PollResult.EXTERNAL_ERROR

            self._sleep(policy.interval)
            elapsed += policy.interval

            if elapsed >= policy.timeout:
                log_warning(
                    logger,
                    "Timed out waiting for %s after %gs",
                    description,
                    policy.timeout,
                )
                return PollResult.TIMED_OUT

            crossed = int(elapsed // policy.progress_interval)
            if crossed > notices:
                notices = crossed
                log_info(
                    logger,
                    "Still waiting for %s... (%g/%gs)",
                    description,
                    elapsed,
                    policy.timeout,
                )

            _report_anomalies(probes)

    @staticmethod
    def _evaluate(condition: Condition) -> bool:
        """Evaluate a condition, treating transient failures as not ready."""
        try:
            return condition.evaluate()
        except TransientCheckError as e:
            log_debug(logger, "Check for %s failed: %s", condition.description, e)
            return False


def _report_anomalies(probes: cabc.Iterable[AnomalyProbe]) -> None:
    """Run anomaly probes and log what they find."""
    for probe in probes:
        try:
            message = probe.detect()
        except (TransientCheckError, ExecutableNotFoundError) as e:
            log_debug(logger, "Anomaly probe failed: %s", e)
            continue
        if message:
            log_warning(logger, "%s", message)


def wait(
    condition: Condition,
    policy: PollPolicy,
    *,
    anomalies: cabc.Iterable[AnomalyProbe] = (),
) -> PollResult:
    """Wait on ``condition`` with a default :class:`ReadinessGate`."""
    return ReadinessGate().wait(condition, policy, anomalies=anomalies)


def require_ready(result: PollResult, description: str, policy: PollPolicy) -> None:
    """Raise unless ``result`` is ``READY``.

    For callers that treat a failed gate as fatal. Best-effort callers inspect
    the result themselves instead.

    Raises
    ------
    GateTimeoutError
        If the gate timed out.
    GateExternalError
        If the gate could not run its probe.

    """
    if result is PollResult.TIMED_OUT:
        raise GateTimeoutError(description, policy.timeout)
    if result is PollResult.EXTERNAL_ERROR:
        raise GateExternalError(description)
