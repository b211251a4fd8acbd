"""Local k3d GitOps lab management package.

This package stands up a k3d cluster running GitLab and ArgoCD, pushes a
sample application to GitLab and deploys it through ArgoCD. The primary
entrypoints are:

- setup_environment: Create and configure the whole environment
- teardown_environment: Delete the cluster
- show_environment_status: Display pod status of the managed namespaces
- show_credentials: Print URLs and passwords
- hold_port_forwards: Keep service port-forwards open until interrupted

The polling primitive shared by every wait point lives in
``k3d_gitops.readiness``; concrete conditions are in
``k3d_gitops.conditions``.

For lower-level operations, import directly from submodules:

- k3d_gitops.k3d: k3d cluster lifecycle operations
- k3d_gitops.k8s: Kubernetes namespace and resource operations
- k3d_gitops.helm: Helm chart installation
- k3d_gitops.metallb: MetalLB installation
- k3d_gitops.gitlab: GitLab installation and access
- k3d_gitops.tls: Certificate chain handling
- k3d_gitops.git_repo: Publishing the sample repository
- k3d_gitops.dns: In-cluster DNS override
- k3d_gitops.argocd: ArgoCD installation and application deployment
- k3d_gitops.port_forward: Owned port-forward processes
- k3d_gitops.templates: ``{{KEY}}`` template rendering
- k3d_gitops.validation: Errors and utility helpers

"""

from __future__ import annotations

from k3d_gitops.config import Config, HelmChartSpec
from k3d_gitops.orchestration import (
    hold_port_forwards,
    setup_environment,
    show_credentials,
    show_environment_status,
    teardown_environment,
)
from k3d_gitops.readiness import PollPolicy, PollResult, ReadinessGate, wait
from k3d_gitops.validation import (
    BootstrapError,
    ExecutableNotFoundError,
    GateExternalError,
    GateTimeoutError,
    SecretDecodeError,
    TransientCheckError,
)

# Public API: only stable exports for external consumers
# Helpers remain importable via their submodules (e.g., k3d_gitops.k3d.cluster_exists)
__all__ = [
    "BootstrapError",
    "Config",
    "ExecutableNotFoundError",
    "GateExternalError",
    "GateTimeoutError",
    "HelmChartSpec",
    "PollPolicy",
    "PollResult",
    "ReadinessGate",
    "SecretDecodeError",
    "TransientCheckError",
    "hold_port_forwards",
    "setup_environment",
    "show_credentials",
    "show_environment_status",
    "teardown_environment",
    "wait",
]
