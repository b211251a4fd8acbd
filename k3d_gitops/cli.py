"""Command line interface for the local k3d GitOps lab.

Usage:
    k3d-gitops up           # Create cluster, GitLab, ArgoCD and the app
    k3d-gitops down         # Delete the cluster
    k3d-gitops status       # Show pods of every managed namespace
    k3d-gitops credentials  # Print URLs and passwords
    k3d-gitops forward      # Hold port-forwards until Ctrl+C
    k3d-gitops wait-url URL # Block until a URL answers
    k3d-gitops render SRC OUT KEY=VALUE...  # Render {{KEY}} templates

Environment variables:
    K3D_GITOPS_CLUSTER   - Cluster name (default: gitlab)
    K3D_GITOPS_DOMAIN    - Base domain (default: iot.local)
    K3D_GITOPS_EMAIL     - cert-manager and commit e-mail
    K3D_GITOPS_PROJECT   - GitLab project name (default: p3-app)
    K3D_GITOPS_TLS       - Serve GitLab over HTTPS (default: true)
    K3D_GITOPS_LOG_LEVEL - Logging level (default: INFO)
"""

from __future__ import annotations

import typing as typ
from pathlib import Path

from cyclopts import App, Parameter

from k3d_gitops.config import Config
from k3d_gitops.logging import configure_logging
from k3d_gitops.orchestration import (
    hold_port_forwards,
    setup_environment,
    show_credentials,
    show_environment_status,
    teardown_environment,
    wait_for_url,
)
from k3d_gitops.templates import parse_assignments, render_templates

app = App(
    name="k3d_gitops",
    help="Local k3d lab with GitLab and ArgoCD GitOps",
    version="0.1.0",
)

ClusterName = typ.Annotated[str, Parameter(env_var="K3D_GITOPS_CLUSTER")]
Domain = typ.Annotated[str, Parameter(env_var="K3D_GITOPS_DOMAIN")]
Email = typ.Annotated[str, Parameter(env_var="K3D_GITOPS_EMAIL")]
Project = typ.Annotated[str, Parameter(env_var="K3D_GITOPS_PROJECT")]
Tls = typ.Annotated[bool, Parameter(env_var="K3D_GITOPS_TLS")]
LogLevel = typ.Annotated[str, Parameter(env_var="K3D_GITOPS_LOG_LEVEL")]

_DEFAULTS = Config()


@app.command
def up(
    *,
    cluster_name: ClusterName = _DEFAULTS.cluster_name,
    domain: Domain = _DEFAULTS.domain,
    email: Email = _DEFAULTS.email,
    project: Project = _DEFAULTS.project_name,
    tls: Tls = _DEFAULTS.tls,
    hold: bool = True,
    log_level: LogLevel = "INFO",
) -> int:
    """Create or update the local GitOps environment.

    Creates a k3d cluster with MetalLB, GitLab and ArgoCD, pushes the sample
    manifests to GitLab and deploys them through ArgoCD. An existing cluster
    of the same name is reused.

    Args:
        cluster_name: Name for the k3d cluster.
        domain: Base domain; GitLab is served at gitlab.<domain>.
        email: E-mail for cert-manager and the initial commit.
        project: GitLab project receiving the manifests.
        tls: Serve GitLab over HTTPS and distribute its certificate chain.
        hold: Keep port-forwards open until Ctrl+C.
        log_level: Logging level.

    Returns:
        Exit code (0 for success, non-zero for failure).

    """
    configure_logging(log_level)
    cfg = Config(
        cluster_name=cluster_name,
        domain=domain,
        email=email,
        project_name=project,
        tls=tls,
    )
    return setup_environment(cfg, hold=hold)


@app.command
def down(
    *,
    cluster_name: ClusterName = _DEFAULTS.cluster_name,
    log_level: LogLevel = "INFO",
) -> int:
    """Delete the local k3d cluster.

    Removes the k3d cluster and all associated resources. This operation
    is destructive and cannot be undone.

    Args:
        cluster_name: Name of the k3d cluster to delete.
        log_level: Logging level.

    Returns:
        Exit code (0 for success, non-zero for failure).

    """
    configure_logging(log_level)
    return teardown_environment(Config(cluster_name=cluster_name))


@app.command
def status(
    *,
    cluster_name: ClusterName = _DEFAULTS.cluster_name,
    log_level: LogLevel = "INFO",
) -> int:
    """Show pods of the GitLab, ArgoCD and application namespaces.

    Args:
        cluster_name: Name of the k3d cluster.
        log_level: Logging level.

    Returns:
        Exit code (0 for success, non-zero for failure).

    """
    configure_logging(log_level)
    return show_environment_status(Config(cluster_name=cluster_name))


@app.command
def credentials(
    *,
    cluster_name: ClusterName = _DEFAULTS.cluster_name,
    domain: Domain = _DEFAULTS.domain,
    project: Project = _DEFAULTS.project_name,
    tls: Tls = _DEFAULTS.tls,
    log_level: LogLevel = "INFO",
) -> int:
    """Print service URLs with the ArgoCD and GitLab passwords.

    Args:
        cluster_name: Name of the k3d cluster.
        domain: Base domain GitLab was installed with.
        project: GitLab project name.
        tls: Whether GitLab is served over HTTPS.
        log_level: Logging level.

    Returns:
        Exit code (0 for success, non-zero for failure).

    """
    configure_logging(log_level)
    cfg = Config(
        cluster_name=cluster_name, domain=domain, project_name=project, tls=tls
    )
    return show_credentials(cfg)


@app.command
def forward(
    *,
    cluster_name: ClusterName = _DEFAULTS.cluster_name,
    ssh: bool = True,
    log_level: LogLevel = "INFO",
) -> int:
    """Hold the ArgoCD, application and GitLab SSH port-forwards.

    Args:
        cluster_name: Name of the k3d cluster.
        ssh: Also forward GitLab SSH.
        log_level: Logging level.

    Returns:
        Exit code (0 for success, non-zero for failure).

    """
    configure_logging(log_level)
    return hold_port_forwards(Config(cluster_name=cluster_name), include_ssh=ssh)


@app.command
def wait_url(
    url: str,
    /,
    *,
    timeout: float = 900,
    interval: float = 5,
    verify: bool = False,
    log_level: LogLevel = "INFO",
) -> int:
    """Block until a URL answers with a non-error status.

    Args:
        url: URL to poll.
        timeout: Seconds to wait before giving up.
        interval: Seconds between attempts.
        verify: Verify the server's TLS certificate.
        log_level: Logging level.

    Returns:
        Exit code (0 once reachable, 1 on timeout).

    """
    configure_logging(log_level)
    return wait_for_url(url, timeout=timeout, interval=interval, verify=verify)


@app.command
def render(
    source: Path,
    output_dir: Path,
    /,
    *assignments: str,
    log_level: LogLevel = "INFO",
) -> int:
    """Render {{KEY}} placeholders in a template file or directory.

    Args:
        source: Template file or directory.
        output_dir: Directory receiving the rendered files.
        assignments: KEY=VALUE placeholder values.
        log_level: Logging level.

    Returns:
        Exit code (0 for success, non-zero for failure).

    """
    configure_logging(log_level)
    render_templates(source, output_dir, parse_assignments(assignments))
    return 0


def main() -> int:
    """Run the CLI application."""
    return app()


if __name__ == "__main__":
    raise SystemExit(main())
