"""Generic Helm chart installation."""

from __future__ import annotations

import subprocess
import typing as typ

from k3d_gitops.k8s import ensure_namespace

if typ.TYPE_CHECKING:
    from k3d_gitops.config import HelmChartSpec

# Timeout for Helm repository operations (in seconds).
_HELM_REPO_TIMEOUT = 60

# Added to Helm's own --timeout so the subprocess outlives it.
_HELM_TIMEOUT_BUFFER = 60


def helm_install_command(spec: HelmChartSpec) -> list[str]:
    """Build the ``helm upgrade --install`` command line for ``spec``."""
    cmd = [
        "helm",
        "upgrade",
        "--install",
        spec.release_name,
        spec.chart_name,
        "--namespace",
        spec.namespace,
    ]
    for key, value in spec.values:
        cmd.extend(["--set", f"{key}={value}"])
    cmd.extend(["--timeout", f"{spec.timeout}s"])
    return cmd


def install_helm_chart(
    spec: HelmChartSpec,
    env: dict[str, str],
) -> None:
    """Install a Helm chart with the standard workflow.

    Adds repository, updates, ensures namespace, and installs chart. Running
    it again upgrades the existing release in place.

    Args:
        spec: Helm chart installation specification.
        env: Environment dict with KUBECONFIG set.

    Raises:
        RuntimeError: If any Helm operation fails or times out.

    """
    # S603/S607: helm via PATH is standard; args from validated HelmChartSpec
    try:
        subprocess.run(  # noqa: S603
            [  # noqa: S607
                "helm",
                "repo",
                "add",
                "--force-update",
                spec.repo_name,
                spec.repo_url,
            ],
            check=True,
            env=env,
            timeout=_HELM_REPO_TIMEOUT,
        )
    except (subprocess.CalledProcessError, subprocess.TimeoutExpired) as e:
        msg = f"Failed to add Helm repo '{spec.repo_name}': {e}"
        raise RuntimeError(msg) from e

    # Helm via PATH is standard; no user input.
    try:
        cmd = ["helm", "repo", "update"]
        subprocess.run(  # noqa: S603
            cmd,
            check=True,
            env=env,
            timeout=_HELM_REPO_TIMEOUT,
        )
    except (subprocess.CalledProcessError, subprocess.TimeoutExpired) as e:
        msg = f"Failed to update Helm repositories: {e}"
        raise RuntimeError(msg) from e

    ensure_namespace(spec.namespace, env)
    try:
        subprocess.run(  # noqa: S603
            helm_install_command(spec),
            check=True,
            env=env,
            timeout=spec.timeout + _HELM_TIMEOUT_BUFFER,
        )
    except (subprocess.CalledProcessError, subprocess.TimeoutExpired) as e:
        msg = f"Failed to install Helm chart '{spec.chart_name}': {e}"
        raise RuntimeError(msg) from e
