"""MetalLB load balancer installation.

Public API:
    metallb_config_manifest: Generate the address pool and L2 advertisement.
    install_metallb: Apply the upstream manifest and wait for its pods.
    configure_metallb: Apply the address pool configuration.

Example:
    >>> cfg = Config()
    >>> env = kubeconfig_env("gitlab")
    >>> install_metallb(cfg, env)
    >>> configure_metallb(cfg, env)

"""

from __future__ import annotations

import typing as typ

from k3d_gitops.conditions import NamespacePodsReady
from k3d_gitops.k8s import apply_manifest, apply_manifest_url
from k3d_gitops.logging import get_logger, log_info
from k3d_gitops.manifests import MANAGED_BY_LABELS, to_yaml
from k3d_gitops.readiness import PollPolicy, require_ready, wait

if typ.TYPE_CHECKING:
    from k3d_gitops.config import Config

logger = get_logger(__name__)

_POOL_NAME = "first-pool"
_ADVERTISEMENT_NAME = "example"


def metallb_config_manifest(
    namespace: str,
    ip_range: str,
    pool_name: str = _POOL_NAME,
) -> str:
    """Generate the IPAddressPool and L2Advertisement manifests.

    Args:
        namespace: Namespace MetalLB is installed in.
        ip_range: Address range handed out to LoadBalancer services, for
            example ``172.22.255.200-172.22.255.250``.
        pool_name: Name of the address pool.

    Returns:
        Two-document YAML stream.

    """
    pool = {
        "apiVersion": "metallb.io/v1beta1",
        "kind": "IPAddressPool",
        "metadata": {
            "name": pool_name,
            "namespace": namespace,
            "labels": dict(MANAGED_BY_LABELS),
        },
        "spec": {"addresses": [ip_range]},
    }
    advertisement = {
        "apiVersion": "metallb.io/v1beta1",
        "kind": "L2Advertisement",
        "metadata": {
            "name": _ADVERTISEMENT_NAME,
            "namespace": namespace,
            "labels": dict(MANAGED_BY_LABELS),
        },
        "spec": {"ipAddressPools": [pool_name]},
    }
    return to_yaml(pool, advertisement)


def install_metallb(cfg: Config, env: dict[str, str]) -> None:
    """Apply the MetalLB manifest and block until its pods are Ready.

    Raises:
        GateTimeoutError: If the pods are not Ready within
            ``cfg.metallb_ready_timeout`` seconds.

    """
    apply_manifest_url(cfg.metallb_manifest_url, env)

    condition = NamespacePodsReady(cfg.metallb_namespace, env)
    policy = PollPolicy(interval=5, timeout=cfg.metallb_ready_timeout)
    require_ready(wait(condition, policy), condition.description, policy)


def configure_metallb(cfg: Config, env: dict[str, str]) -> None:
    """Apply the address pool and L2 advertisement."""
    log_info(logger, "Assigning address range %s", cfg.metallb_ip_range)
    apply_manifest(
        metallb_config_manifest(cfg.metallb_namespace, cfg.metallb_ip_range), env
    )
