"""In-cluster DNS override for the GitLab host name.

Pods resolve ``gitlab.<domain>`` through CoreDNS, which knows nothing about
the host's ``/etc/hosts``. k3s' CoreDNS imports ``*.override`` entries from
the ``coredns-custom`` ConfigMap, so a ``hosts`` block there points the name
at the GitLab ingress load balancer.
"""

from __future__ import annotations

import subprocess
import typing as typ

from k3d_gitops.k8s import apply_manifest, get_jsonpath, rollout_restart, rollout_status
from k3d_gitops.logging import get_logger, log_info
from k3d_gitops.manifests import MANAGED_BY_LABELS, to_yaml
from k3d_gitops.readiness import FunctionCondition, PollPolicy, require_ready, wait
from k3d_gitops.validation import ExecutableNotFoundError, TransientCheckError

if typ.TYPE_CHECKING:
    from k3d_gitops.config import Config

logger = get_logger(__name__)

COREDNS_NAMESPACE = "kube-system"
COREDNS_DEPLOYMENT = "coredns"
COREDNS_CUSTOM_CONFIGMAP = "coredns-custom"

_INGRESS_SERVICE_SUFFIX = "nginx-ingress-controller"
_INGRESS_IP_JSONPATH = "{.status.loadBalancer.ingress[0].ip}"


def coredns_override_manifest(hostname: str, ip: str) -> str:
    """Generate the ``coredns-custom`` ConfigMap mapping ``hostname`` to ``ip``."""
    hosts_block = f"hosts {{\n  {ip} {hostname}\n  fallthrough\n}}\n"
    manifest = {
        "apiVersion": "v1",
        "kind": "ConfigMap",
        "metadata": {
            "name": COREDNS_CUSTOM_CONFIGMAP,
            "namespace": COREDNS_NAMESPACE,
            "labels": dict(MANAGED_BY_LABELS),
        },
        "data": {"gitlab.override": hosts_block},
    }
    return to_yaml(manifest)


def read_ingress_ip(cfg: Config, env: dict[str, str]) -> str:
    """Return the load-balancer IP of the GitLab ingress controller.

    Returns an empty string while MetalLB has not assigned one.

    Raises:
        TransientCheckError: If kubectl fails or does not answer in time.
        ExecutableNotFoundError: If kubectl is not installed.

    """
    try:
        return get_jsonpath(
            "service",
            f"{cfg.gitlab_release}-{_INGRESS_SERVICE_SUFFIX}",
            cfg.gitlab_namespace,
            _INGRESS_IP_JSONPATH,
            env,
        )
    except FileNotFoundError as e:
        msg = "Required executable 'kubectl' not found in PATH"
        raise ExecutableNotFoundError(msg) from e
    except (subprocess.CalledProcessError, subprocess.TimeoutExpired) as e:
        msg = f"Could not read the GitLab ingress service: {e}"
        raise TransientCheckError(msg) from e


def wait_for_ingress_ip(cfg: Config, env: dict[str, str], timeout: float = 120) -> str:
    """Block until the GitLab ingress has a load-balancer IP and return it."""
    condition = FunctionCondition(
        "GitLab ingress load-balancer IP", lambda: bool(read_ingress_ip(cfg, env))
    )
    policy = PollPolicy(interval=2, timeout=timeout)
    require_ready(wait(condition, policy), condition.description, policy)
    return read_ingress_ip(cfg, env)


def configure_cluster_dns(cfg: Config, env: dict[str, str]) -> str:
    """Point in-cluster lookups of the GitLab host at the ingress IP.

    Returns:
        The ingress IP the host name now resolves to.

    """
    ip = wait_for_ingress_ip(cfg, env)
    log_info(logger, "CoreDNS: %s -> %s", cfg.gitlab_host, ip)
    apply_manifest(coredns_override_manifest(cfg.gitlab_host, ip), env)
    rollout_restart("deployment", COREDNS_DEPLOYMENT, COREDNS_NAMESPACE, env)
    rollout_status(
        "deployment", COREDNS_DEPLOYMENT, COREDNS_NAMESPACE, env, timeout=120
    )
    return ip
