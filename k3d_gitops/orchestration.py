"""High-level orchestration for CLI commands."""

from __future__ import annotations

import typing as typ

from rich.console import Console
from rich.panel import Panel

from k3d_gitops.argocd import (
    configure_certificates,
    create_application,
    install_argocd,
    login,
    read_admin_password,
    sync_application,
    wait_for_app_pods,
    wait_for_application,
)
from k3d_gitops.conditions import NodesReady, UrlReachable
from k3d_gitops.dns import configure_cluster_dns
from k3d_gitops.git_repo import publish_sample_repository
from k3d_gitops.gitlab import (
    HOSTS_FILE,
    ensure_hosts_entry,
    generate_access_token,
    install_gitlab,
    read_root_password,
    save_token,
    wait_for_gitlab,
)
from k3d_gitops.k3d import (
    cluster_exists,
    create_k3d_cluster,
    default_port_mappings,
    delete_k3d_cluster,
    kubeconfig_env,
)
from k3d_gitops.k8s import print_pods
from k3d_gitops.logging import get_logger, log_warning
from k3d_gitops.metallb import configure_metallb, install_metallb
from k3d_gitops.port_forward import PortForwardRegistry, PortForwardSpec
from k3d_gitops.readiness import PollPolicy, PollResult, require_ready, wait
from k3d_gitops.tls import (
    fetch_certificate_chain,
    install_git_ca,
    write_certificate_chain,
)
from k3d_gitops.validation import require_exe

if typ.TYPE_CHECKING:
    from pathlib import Path

    from k3d_gitops.config import Config

logger = get_logger(__name__)
console = Console()

_TOTAL_STEPS = 10


def _step(number: int, title: str) -> None:
    """Print a numbered step header."""
    console.print(
        Panel.fit(f"Step {number}/{_TOTAL_STEPS}: {title}", style="bold blue")
    )


def _required_tools(cfg: Config) -> list[str]:
    tools = ["k3d", "kubectl", "helm", "argocd", "git"]
    if cfg.tls:
        tools.append("openssl")
    return tools


def argocd_forward(cfg: Config) -> PortForwardSpec:
    """Forward to the ArgoCD API server."""
    return PortForwardSpec(
        "svc/argocd-server", cfg.argocd_namespace, cfg.argocd_port, 443
    )


def app_forward(cfg: Config) -> PortForwardSpec:
    """Forward to the deployed sample application."""
    return PortForwardSpec(
        f"deployment/{cfg.app_deployment}",
        cfg.app_namespace,
        cfg.app_port,
        cfg.app_port,
    )


def gitlab_ssh_forward(cfg: Config) -> PortForwardSpec:
    """Forward to GitLab's SSH endpoint behind the ingress controller."""
    return PortForwardSpec(
        f"svc/{cfg.gitlab_release}-nginx-ingress-controller",
        cfg.gitlab_namespace,
        cfg.gitlab_ssh_port,
        22,
    )


def _ensure_cluster(cfg: Config) -> dict[str, str]:
    """Create the cluster unless it exists and return its environment.

    Blocks until a node reports Ready, so the steps that follow can schedule
    pods.
    """
    if cluster_exists(cfg.cluster_name):
        console.print(f"Cluster '{cfg.cluster_name}' already exists, reusing...")
    else:
        console.print(f"Creating k3d cluster '{cfg.cluster_name}'...")
        create_k3d_cluster(
            cfg.cluster_name,
            default_port_mappings(cfg.gitlab_ssh_port),
            agents=cfg.agents,
        )
    env = kubeconfig_env(cfg.cluster_name)
    condition = NodesReady(env)
    policy = PollPolicy(interval=2, timeout=cfg.nodes_ready_timeout)
    require_ready(wait(condition, policy), condition.description, policy)
    return env


def _configure_gitlab_access(
    cfg: Config, env: dict[str, str], hosts_path: Path
) -> str | None:
    """Make GitLab reachable from the host and return its chain in TLS mode."""
    ensure_hosts_entry(cfg.gitlab_host, hosts_path)
    wait_for_gitlab(cfg, env)
    if not cfg.tls:
        return None

    blocks = fetch_certificate_chain(cfg.gitlab_host)
    chain_path = write_certificate_chain(blocks, cfg.cert_chain_path)
    install_git_ca(cfg.gitlab_url, chain_path)
    console.print(f"Git now trusts {cfg.gitlab_url} via {chain_path}")
    return "\n".join(blocks) + "\n"


def _setup_gitlab_project(cfg: Config, env: dict[str, str]) -> str:
    """Create an access token and push the sample manifests."""
    token = generate_access_token(cfg, env)
    token_path = save_token(token, cfg.workdir / cfg.token_file)
    console.print(f"GitLab token saved to {token_path}")
    publish_sample_repository(cfg, token)
    return token


def _configure_argocd(
    cfg: Config,
    env: dict[str, str],
    forwards: PortForwardRegistry,
    token: str,
    chain_pem: str | None,
) -> None:
    """Trust GitLab, log in and create the application."""
    if chain_pem is not None:
        console.print("Publishing the GitLab certificate chain to ArgoCD...")
        configure_certificates(cfg, env, chain_pem)

    forwards.start_and_wait(argocd_forward(cfg))
    login(f"localhost:{cfg.argocd_port}", read_admin_password(cfg, env))
    create_application(cfg, env, token)


def _deploy_application(cfg: Config, env: dict[str, str]) -> PollResult:
    """Sync the application and wait for its pods."""
    wait_for_application(cfg)
    sync_application(cfg.app_name)
    return wait_for_app_pods(cfg, env)


def _print_access_banner(
    cfg: Config, argocd_password: str, gitlab_password: str
) -> None:
    """Print URLs and credentials for every service."""
    body = "\n".join(
        [
            "[bold]ArgoCD[/bold]",
            f"  URL:      https://localhost:{cfg.argocd_port}",
            "  Username: admin",
            f"  Password: {argocd_password}",
            "",
            "[bold]GitLab[/bold]",
            f"  URL:      {cfg.gitlab_url}",
            "  Username: root",
            f"  Password: {gitlab_password}",
            f"  Project:  {cfg.gitlab_url}/root/{cfg.project_name}",
            "",
            "[bold]Application[/bold]",
            f"  URL:      http://localhost:{cfg.app_port}",
        ]
    )
    console.print(Panel(body, title="GitOps environment ready", style="green"))


def _hold(forwards: PortForwardRegistry) -> None:
    console.print("Port-forwards active; press Ctrl+C to stop.")
    try:
        forwards.hold()
    except KeyboardInterrupt:
        console.print("Stopping port-forwards...")


def setup_environment(
    cfg: Config,
    *,
    hold: bool = True,
    hosts_path: Path = HOSTS_FILE,
) -> int:
    """Create and configure the entire GitOps environment.

    Args:
        cfg: Environment configuration.
        hold: Keep the ArgoCD and application port-forwards open until
            interrupted. Without it they are released before returning.
        hosts_path: Hosts file receiving the GitLab entry.

    Returns:
        Exit code (0 for success, non-zero for failure).

    """
    console.print("Checking required tools...")
    for exe in _required_tools(cfg):
        require_exe(exe)

    _step(1, f"Creating k3d cluster '{cfg.cluster_name}'")
    env = _ensure_cluster(cfg)

    _step(2, "Setting up MetalLB load balancer")
    install_metallb(cfg, env)
    configure_metallb(cfg, env)

    _step(3, "Installing GitLab")
    install_gitlab(cfg, env)

    _step(4, "Configuring GitLab access")
    chain_pem = _configure_gitlab_access(cfg, env, hosts_path)

    _step(5, "Setting up GitLab project and repository")
    token = _setup_gitlab_project(cfg, env)

    _step(6, "Configuring cluster DNS")
    configure_cluster_dns(cfg, env)

    _step(7, "Installing ArgoCD")
    install_argocd(cfg, env)

    with PortForwardRegistry(env) as forwards:
        _step(8, "Configuring ArgoCD application")
        _configure_argocd(cfg, env, forwards, token, chain_pem)

        _step(9, "Deploying application")
        result = _deploy_application(cfg, env)

        _step(10, "Access information")
        if result is PollResult.READY:
            forwards.start_and_wait(app_forward(cfg))
        _print_access_banner(
            cfg, read_admin_password(cfg, env), read_root_password(cfg, env)
        )
        if hold:
            _hold(forwards)
    return 0


def teardown_environment(cfg: Config) -> int:
    """Delete the k3d cluster and all resources.

    Returns:
        Exit code (0 for success, non-zero for failure).

    """
    require_exe("k3d")

    if not cluster_exists(cfg.cluster_name):
        console.print(f"Cluster '{cfg.cluster_name}' does not exist.")
        return 0

    console.print(f"Deleting cluster '{cfg.cluster_name}'...")
    delete_k3d_cluster(cfg.cluster_name)
    console.print("Cluster deleted successfully.")
    return 0


def _existing_cluster_env(cfg: Config) -> dict[str, str] | None:
    """Return the cluster environment, or None when the cluster is absent."""
    for exe in ("k3d", "kubectl"):
        require_exe(exe)

    if not cluster_exists(cfg.cluster_name):
        console.print(f"Cluster '{cfg.cluster_name}' does not exist.")
        return None
    return kubeconfig_env(cfg.cluster_name)


def show_environment_status(cfg: Config) -> int:
    """Display pods of the GitLab, ArgoCD and application namespaces.

    Returns:
        Exit code (0 for success, 1 if cluster doesn't exist).

    """
    env = _existing_cluster_env(cfg)
    if env is None:
        return 1

    console.print(f"Status for cluster: {cfg.cluster_name}")
    for namespace in (cfg.gitlab_namespace, cfg.argocd_namespace, cfg.app_namespace):
        console.rule(namespace)
        print_pods(namespace, env)
    return 0


def show_credentials(cfg: Config) -> int:
    """Print the access banner without starting port-forwards.

    Returns:
        Exit code (0 for success, 1 if cluster doesn't exist).

    """
    env = _existing_cluster_env(cfg)
    if env is None:
        return 1

    _print_access_banner(
        cfg, read_admin_password(cfg, env), read_root_password(cfg, env)
    )
    return 0


def hold_port_forwards(cfg: Config, *, include_ssh: bool = True) -> int:
    """Open the ArgoCD, application and GitLab SSH forwards until interrupted.

    Returns:
        Exit code (0 for success, 1 if cluster doesn't exist).

    """
    env = _existing_cluster_env(cfg)
    if env is None:
        return 1

    with PortForwardRegistry(env) as forwards:
        forwards.start_and_wait(argocd_forward(cfg))
        forwards.start_and_wait(app_forward(cfg))
        if include_ssh:
            forwards.start(gitlab_ssh_forward(cfg))
        _hold(forwards)
    return 0


def wait_for_url(
    url: str,
    *,
    timeout: float = 900,
    interval: float = 5,
    progress_interval: float = 30,
    verify: bool = False,
) -> int:
    """Block until ``url`` answers.

    Returns:
        0 once the URL answers, 1 on timeout or when it cannot be probed.

    """
    policy = PollPolicy(
        interval=interval, timeout=timeout, progress_interval=progress_interval
    )
    result = wait(UrlReachable(url, verify=verify), policy)
    if result is PollResult.READY:
        console.print(f"{url} is reachable")
        return 0
    log_warning(logger, "%s did not become reachable (%s)", url, result)
    return 1
