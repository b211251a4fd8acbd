"""k3d cluster lifecycle operations.

This module wraps the k3d CLI to create, delete and inspect the lab cluster
and to produce a dedicated kubeconfig for it.

All functions that interact with k3d use subprocess calls with appropriate
timeouts and error handling.

Public API
----------
- ``PortMapping``: One ``--port`` mapping of the cluster.
- ``default_port_mappings``: Mappings for HTTP, HTTPS and GitLab SSH.
- ``cluster_exists``: Check whether a named cluster exists.
- ``create_k3d_cluster``: Create a new k3d cluster.
- ``delete_k3d_cluster``: Delete an existing k3d cluster.
- ``write_kubeconfig``: Write and return the kubeconfig path for a cluster.
- ``kubeconfig_env``: Return environment dict with KUBECONFIG set.

Examples
--------
Check if a cluster exists and create one if not:

    if not cluster_exists("gitlab"):
        create_k3d_cluster("gitlab", default_port_mappings(2222), agents=2)

Get the kubeconfig environment for kubectl commands:

    env = kubeconfig_env("gitlab")
    subprocess.run(["kubectl", "get", "pods"], env=env)

"""

from __future__ import annotations

import dataclasses
import json
import os
import subprocess
import typing as typ
from pathlib import Path

if typ.TYPE_CHECKING:
    import collections.abc as cabc

# Default timeout for k3d subprocess operations (seconds)
_K3D_SUBPROCESS_TIMEOUT = 60

_MIN_PORT = 1
_MAX_PORT = 65535

# Traefik is replaced by the ingress controller bundled with the GitLab chart.
DISABLE_TRAEFIK_ARG = "--disable=traefik@server:*"


@dataclasses.dataclass(frozen=True, slots=True)
class PortMapping:
    """A k3d ``--port`` mapping such as ``80:80@loadbalancer``."""

    host_port: int
    container_port: int
    node_filter: str = "loadbalancer"

    def __post_init__(self) -> None:
        """Validate both ports."""
        for port in (self.host_port, self.container_port):
            if not _MIN_PORT <= port <= _MAX_PORT:
                msg = f"port must be between {_MIN_PORT} and {_MAX_PORT}, got {port}"
                raise ValueError(msg)

    def as_arg(self) -> str:
        """Render the mapping in k3d's ``--port`` syntax."""
        return f"{self.host_port}:{self.container_port}@{self.node_filter}"


def default_port_mappings(ssh_port: int = 2222) -> tuple[PortMapping, ...]:
    """Return the HTTP, HTTPS and SSH mappings the lab needs."""
    return (
        PortMapping(80, 80),
        PortMapping(443, 443),
        PortMapping(ssh_port, ssh_port, "server:0"),
    )


def _run_k3d_json(args: list[str], *, timeout: float | None = None) -> typ.Any:  # noqa: ANN401
    """Run a k3d command and parse JSON output."""
    try:
        result = subprocess.run(  # noqa: S603
            # k3d is expected on PATH; shell=False mitigates injection
            ["k3d", *args, "-o", "json"],  # noqa: S607
            check=True,
            capture_output=True,
            text=True,
            timeout=timeout or _K3D_SUBPROCESS_TIMEOUT,
        )
    except (OSError, subprocess.CalledProcessError, subprocess.TimeoutExpired):
        return None
    else:
        try:
            return json.loads(result.stdout)
        except json.JSONDecodeError:
            return None


def cluster_exists(cluster_name: str) -> bool:
    """Check if a k3d cluster already exists.

    Parameters
    ----------
    cluster_name : str
        Name of the cluster to check for.

    Returns
    -------
    bool
        True if the cluster exists, False otherwise. Returns False if k3d
        is unavailable or returns invalid output.

    """
    clusters = _run_k3d_json(["cluster", "list"])
    if not isinstance(clusters, list):
        return False
    return any(cluster.get("name") == cluster_name for cluster in clusters)


def create_k3d_cluster(
    cluster_name: str,
    ports: cabc.Sequence[PortMapping],
    agents: int = 2,
    k3s_args: cabc.Sequence[str] = (f"{DISABLE_TRAEFIK_ARG}",),
    timeout: float = 300,
) -> None:
    """Create a k3d cluster.

    Parameters
    ----------
    cluster_name : str
        Name for the new cluster.
    ports : Sequence[PortMapping]
        Host to cluster port mappings.
    agents : int, default 2
        Number of agent nodes. Must be >= 0.
    k3s_args : Sequence[str]
        Values for repeated ``--k3s-arg`` flags. Traefik is disabled by
        default.
    timeout : float, default 300
        Maximum time in seconds to wait for creation.

    Raises
    ------
    ValueError
        If agents is negative.
    RuntimeError
        If cluster creation times out or fails.

    """
    if agents < 0:
        msg = f"agents must be >= 0, got {agents}"
        raise ValueError(msg)

    cmd = ["k3d", "cluster", "create", cluster_name]
    for mapping in ports:
        cmd.extend(["-p", mapping.as_arg()])
    cmd.extend(["--agents", str(agents)])
    for k3s_arg in k3s_args:
        cmd.extend(["--k3s-arg", k3s_arg])

    try:
        subprocess.run(  # noqa: S603
            # k3d is expected on PATH; shell=False mitigates injection
            cmd,
            check=True,
            timeout=timeout,
        )
    except subprocess.TimeoutExpired as e:
        msg = f"k3d cluster creation timed out after {timeout} seconds"
        raise RuntimeError(msg) from e
    except subprocess.CalledProcessError as e:
        msg = f"k3d cluster creation failed for '{cluster_name}': {e}"
        raise RuntimeError(msg) from e


def delete_k3d_cluster(cluster_name: str, timeout: float = 120) -> None:
    """Delete a k3d cluster.

    Parameters
    ----------
    cluster_name : str
        Name of the cluster to delete.
    timeout : float, default 120
        Maximum time in seconds to wait for deletion.

    Raises
    ------
    RuntimeError
        If cluster deletion fails or times out.

    """
    try:
        subprocess.run(  # noqa: S603
            # k3d is expected on PATH; shell=False mitigates injection
            ["k3d", "cluster", "delete", cluster_name],  # noqa: S607
            check=True,
            timeout=timeout,
        )
    except subprocess.TimeoutExpired as e:
        msg = f"k3d cluster deletion timed out after {timeout} seconds"
        raise RuntimeError(msg) from e
    except subprocess.CalledProcessError as e:
        msg = f"k3d cluster deletion failed for '{cluster_name}': {e}"
        raise RuntimeError(msg) from e


def _run_k3d_kubeconfig_write(cluster_name: str, timeout: float) -> str:
    """Run k3d kubeconfig write and return the path string."""
    try:
        result = subprocess.run(  # noqa: S603
            # k3d is expected on PATH; shell=False mitigates injection
            ["k3d", "kubeconfig", "write", cluster_name],  # noqa: S607
            capture_output=True,
            text=True,
            check=True,
            timeout=timeout,
        )
    except subprocess.TimeoutExpired as e:
        msg = f"k3d kubeconfig write timed out after {timeout} seconds"
        raise RuntimeError(msg) from e
    except subprocess.CalledProcessError as e:
        msg = f"k3d kubeconfig write failed for '{cluster_name}': {e}"
        raise RuntimeError(msg) from e

    kubeconfig_path = result.stdout.strip()
    if not kubeconfig_path:
        msg = f"k3d returned empty kubeconfig path for cluster '{cluster_name}'"
        raise RuntimeError(msg)

    return kubeconfig_path


def write_kubeconfig(cluster_name: str, timeout: float = 30) -> Path:
    """Write and return the kubeconfig path for a k3d cluster.

    Raises
    ------
    RuntimeError
        If the kubeconfig path is empty, the file was not created, or the
        operation times out.

    """
    kubeconfig_path = _run_k3d_kubeconfig_write(cluster_name, timeout)
    path = Path(kubeconfig_path)
    if not path.exists():
        msg = f"Kubeconfig file was not created at {kubeconfig_path}"
        raise RuntimeError(msg)

    return path


def kubeconfig_env(cluster_name: str) -> dict[str, str]:
    """Return environment dict with KUBECONFIG set for the cluster.

    Creates a copy of the current environment with KUBECONFIG pointing to
    the cluster's kubeconfig file.
    """
    kubeconfig = write_kubeconfig(cluster_name)
    env = dict(os.environ)
    env["KUBECONFIG"] = str(kubeconfig)
    return env
