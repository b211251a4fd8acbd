"""ArgoCD installation, configuration and application deployment.

Public API:
    install_argocd: Apply the upstream manifest and wait for its pods.
    tls_certs_configmap_manifest: Publish a certificate chain to ArgoCD.
    repo_server_patch: Make the repo server trust the published chain.
    configure_certificates: Apply the chain and restart ArgoCD.
    read_admin_password: Read the initial admin password.
    login: Log the argocd CLI into the API server.
    application_manifest: Generate the Application resource.
    repository_secret_manifest: Generate the repository credentials Secret.
    create_application: Apply both and confirm the Application exists.
    wait_for_application: Block until the CLI can see the Application.
    sync_application: Trigger a sync.
    wait_for_app_pods: Best-effort wait for the deployed pods.

Example:
    >>> install_argocd(cfg, env)
    >>> configure_certificates(cfg, env, chain_pem)
    >>> login("localhost:8080", read_admin_password(cfg, env))
    >>> create_application(cfg, env, token)
    >>> wait_for_application(cfg, env)
    >>> sync_application(cfg.app_name, env)
    >>> wait_for_app_pods(cfg, env)

"""

from __future__ import annotations

import subprocess
import typing as typ

from k3d_gitops.conditions import (
    ApplicationRecognized,
    DeploymentPodsRunning,
    RunningPodsAtLeast,
)
from k3d_gitops.k8s import (
    apply_manifest,
    apply_manifest_url,
    ensure_namespace,
    patch_resource,
    print_pods,
    read_secret_field,
    resource_exists,
    rollout_restart,
    rollout_status,
)
from k3d_gitops.logging import get_logger, log_info, log_warning
from k3d_gitops.manifests import MANAGED_BY_LABELS, to_yaml
from k3d_gitops.readiness import PollPolicy, PollResult, require_ready, wait
from k3d_gitops.validation import BootstrapError

if typ.TYPE_CHECKING:
    from k3d_gitops.config import Config

logger = get_logger(__name__)

TLS_CERTS_CONFIGMAP = "argocd-tls-certs-cm"
REPO_SERVER = "argocd-repo-server"
API_SERVER = "argocd-server"
REPOSITORY_SECRET = "gitlab-repo-credentials"  # noqa: S105

_TLS_MOUNT_PATH = "/app/config/tls"
_SYSTEM_CA_BUNDLE = "/etc/ssl/certs/ca-certificates.crt"
_ROLLOUT_TIMEOUT = 300
_CLI_TIMEOUT = 120


def install_argocd(cfg: Config, env: dict[str, str]) -> None:
    """Apply the ArgoCD manifest and block until its pods are Running.

    Raises:
        GateTimeoutError: If fewer than ``cfg.argocd_min_ready_pods`` pods
            are Running and ready after ``cfg.argocd_ready_timeout`` seconds.

    """
    ensure_namespace(cfg.argocd_namespace, env)
    apply_manifest_url(cfg.argocd_manifest_url, env, namespace=cfg.argocd_namespace)

    condition = RunningPodsAtLeast(cfg.argocd_namespace, cfg.argocd_min_ready_pods, env)
    policy = PollPolicy(interval=2, timeout=cfg.argocd_ready_timeout)
    require_ready(wait(condition, policy), condition.description, policy)


def tls_certs_configmap_manifest(namespace: str, hostname: str, chain_pem: str) -> str:
    """Generate ``argocd-tls-certs-cm`` holding ``chain_pem`` for ``hostname``.

    ArgoCD looks certificates up by server name, so the data key is the
    host name itself.
    """
    manifest = {
        "apiVersion": "v1",
        "kind": "ConfigMap",
        "metadata": {
            "name": TLS_CERTS_CONFIGMAP,
            "namespace": namespace,
            "labels": {
                "app.kubernetes.io/name": TLS_CERTS_CONFIGMAP,
                "app.kubernetes.io/part-of": "argocd",
                **MANAGED_BY_LABELS,
            },
        },
        "data": {hostname: chain_pem},
    }
    return to_yaml(manifest)


def repo_server_patch(hostname: str) -> dict[str, typ.Any]:
    """Strategic merge patch mounting the certificate ConfigMap.

    ``SSL_CERT_FILE`` lists the system bundle and the mounted chain so git
    in the repo server trusts both public hosts and GitLab.
    """
    return {
        "spec": {
            "template": {
                "spec": {
                    "containers": [
                        {
                            "name": REPO_SERVER,
                            "env": [
                                {
                                    "name": "SSL_CERT_FILE",
                                    "value": (
                                        f"{_SYSTEM_CA_BUNDLE}:"
                                        f"{_TLS_MOUNT_PATH}/{hostname}"
                                    ),
                                }
                            ],
                            "volumeMounts": [
                                {
                                    "name": "tls-certs",
                                    "mountPath": _TLS_MOUNT_PATH,
                                    "readOnly": True,
                                }
                            ],
                        }
                    ],
                    "volumes": [
                        {
                            "name": "tls-certs",
                            "configMap": {"name": TLS_CERTS_CONFIGMAP},
                        }
                    ],
                }
            }
        }
    }


def configure_certificates(cfg: Config, env: dict[str, str], chain_pem: str) -> None:
    """Publish the GitLab chain and restart the ArgoCD servers to load it."""
    ns = cfg.argocd_namespace
    apply_manifest(tls_certs_configmap_manifest(ns, cfg.gitlab_host, chain_pem), env)
    patch = repo_server_patch(cfg.gitlab_host)
    patch_resource("deployment", REPO_SERVER, ns, patch, env)

    for deployment in (REPO_SERVER, API_SERVER):
        rollout_restart("deployment", deployment, ns, env)
    for deployment in (REPO_SERVER, API_SERVER):
        rollout_status("deployment", deployment, ns, env, timeout=_ROLLOUT_TIMEOUT)


def read_admin_password(cfg: Config, env: dict[str, str]) -> str:
    """Read the initial ArgoCD admin password."""
    return read_secret_field(
        "argocd-initial-admin-secret", "password", cfg.argocd_namespace, env
    )


def login(server: str, password: str, env: dict[str, str] | None = None) -> None:
    """Log the argocd CLI into ``server`` as admin.

    The server presents a self-signed certificate, so verification is off.

    Raises:
        RuntimeError: If the login fails. The password is not included.

    """
    try:
        # S603/S607: argocd via PATH is standard; server from Config
        subprocess.run(  # noqa: S603
            [  # noqa: S607
                "argocd",
                "login",
                server,
                "--username",
                "admin",
                "--password",
                password,
                "--insecure",
            ],
            check=True,
            env=env,
            timeout=_CLI_TIMEOUT,
        )
    except (subprocess.CalledProcessError, subprocess.TimeoutExpired):
        msg = f"argocd login to {server} failed"
        # The command line carries the password, so it is not chained.
        raise RuntimeError(msg) from None


def application_manifest(cfg: Config) -> dict[str, typ.Any]:
    """Build the Application tracking the GitLab project's ``HEAD``."""
    return {
        "apiVersion": "argoproj.io/v1alpha1",
        "kind": "Application",
        "metadata": {
            "name": cfg.app_name,
            "namespace": cfg.argocd_namespace,
            "labels": dict(MANAGED_BY_LABELS),
        },
        "spec": {
            "project": "default",
            "source": {
                "repoURL": cfg.repo_url,
                "targetRevision": "HEAD",
                "path": ".",
            },
            "destination": {
                "server": "https://kubernetes.default.svc",
                "namespace": cfg.app_namespace,
            },
            "syncPolicy": {
                "automated": {"prune": True, "selfHeal": True},
                "syncOptions": ["CreateNamespace=true"],
            },
        },
    }


def repository_secret_manifest(cfg: Config, token: str) -> dict[str, typ.Any]:
    """Build the repository Secret holding GitLab credentials for ArgoCD."""
    string_data = {
        "type": "git",
        "url": cfg.repo_url,
        "username": "root",
        "password": token,
    }
    if not cfg.tls:
        string_data["insecure"] = "true"
    return {
        "apiVersion": "v1",
        "kind": "Secret",
        "metadata": {
            "name": REPOSITORY_SECRET,
            "namespace": cfg.argocd_namespace,
            "labels": {
                "argocd.argoproj.io/secret-type": "repository",
                **MANAGED_BY_LABELS,
            },
        },
        "type": "Opaque",
        "stringData": string_data,
    }


def create_application(cfg: Config, env: dict[str, str], token: str) -> None:
    """Apply the repository Secret and the Application.

    Raises:
        BootstrapError: If the Application is absent after applying it.

    """
    ensure_namespace(cfg.app_namespace, env)
    apply_manifest(
        to_yaml(repository_secret_manifest(cfg, token), application_manifest(cfg)),
        env,
    )
    if not resource_exists("application", cfg.app_name, cfg.argocd_namespace, env):
        msg = f"Failed to create ArgoCD application '{cfg.app_name}'"
        raise BootstrapError(msg)
    log_info(logger, "ArgoCD application '%s' created", cfg.app_name)


def wait_for_application(cfg: Config, env: dict[str, str] | None = None) -> None:
    """Block until ``argocd app get`` knows the application.

    Raises:
        GateTimeoutError: If it is not recognised within
            ``cfg.app_recognition_timeout`` seconds.
        GateExternalError: If the argocd CLI is missing.

    """
    condition = ApplicationRecognized(cfg.app_name, env)
    policy = PollPolicy(interval=2, timeout=cfg.app_recognition_timeout)
    require_ready(wait(condition, policy), condition.description, policy)


def sync_application(name: str, env: dict[str, str] | None = None) -> None:
    """Trigger a sync of ``name`` and wait for the CLI to return."""
    # S603/S607: argocd via PATH is standard; name from Config
    subprocess.run(  # noqa: S603
        ["argocd", "app", "sync", name],  # noqa: S607
        check=True,
        env=env,
        timeout=_ROLLOUT_TIMEOUT,
    )


def wait_for_app_pods(cfg: Config, env: dict[str, str]) -> PollResult:
    """Wait for the deployed application pods, without failing the run.

    On timeout the namespace's pods are printed so the user can see what is
    stuck, and the result is returned for the caller to report.
    """
    condition = DeploymentPodsRunning(cfg.app_namespace, cfg.app_deployment, env)
    policy = PollPolicy(interval=5, timeout=cfg.app_pods_timeout, progress_interval=30)
    result = wait(condition, policy)
    if result is not PollResult.READY:
        log_warning(
            logger,
            "Application pods are not running yet; ArgoCD may still be syncing",
        )
        print_pods(cfg.app_namespace, env)
    return result
