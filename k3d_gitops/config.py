"""Configuration for the local k3d GitOps lab."""

from __future__ import annotations

import dataclasses
from pathlib import Path

_METALLB_MANIFEST_URL = (
    "https://raw.githubusercontent.com/metallb/metallb/v0.15.2/"
    "config/manifests/metallb-native.yaml"
)
_ARGOCD_MANIFEST_URL = (
    "https://raw.githubusercontent.com/argoproj/argo-cd/stable/manifests/install.yaml"
)


@dataclasses.dataclass(frozen=True, slots=True)
class Config:
    """Configuration for the local k3d GitOps lab.

    Built once by the CLI layer and passed to every step. All paths are
    relative to the working directory unless absolute.

    Attributes:
        domain: Base domain; GitLab is served at ``gitlab.<domain>``.
        tls: Serve GitLab over HTTPS with cert-manager certificates. When
            False, GitLab is reached over plain HTTP and no certificate
            chain is distributed.
        manifest_files: Files copied from the sample repository into the
            GitLab project. The misspelt deployment file name is the one the
            sample repository ships.
        argocd_min_ready_pods: Number of Running, fully ready pods the stock
            ArgoCD install brings up.
        token_file: Where the generated GitLab access token is persisted.
            This is a file name, not a credential (S105 false positive).

    """

    cluster_name: str = "gitlab"
    agents: int = 2
    domain: str = "iot.local"
    email: str = "admin@example.com"
    project_name: str = "p3-app"
    sample_repo_url: str = "https://github.com/Axiaaa/IoT-p3-lcamerly"
    manifest_files: tuple[str, ...] = ("service.yaml", "deployement.yaml")
    metallb_manifest_url: str = _METALLB_MANIFEST_URL
    metallb_namespace: str = "metallb-system"
    metallb_ip_range: str = "172.22.255.200-172.22.255.250"
    gitlab_namespace: str = "gitlab"
    gitlab_release: str = "gitlab"
    gitlab_helm_repo_url: str = "https://charts.gitlab.io/"
    argocd_namespace: str = "argocd"
    argocd_manifest_url: str = _ARGOCD_MANIFEST_URL
    argocd_min_ready_pods: int = 7
    app_namespace: str = "dev"
    app_name: str = "will42"
    app_deployment: str = "wil-playground"
    app_port: int = 8888
    argocd_port: int = 8080
    gitlab_ssh_port: int = 2222
    tls: bool = True
    workdir: Path = dataclasses.field(default_factory=lambda: Path())
    token_file: Path = dataclasses.field(default_factory=lambda: Path("token"))  # noqa: S105
    cert_dir: Path = dataclasses.field(
        default_factory=lambda: Path("~/.certs").expanduser()
    )
    nodes_ready_timeout: float = 120
    gitlab_ready_timeout: float = 900
    metallb_ready_timeout: float = 90
    argocd_ready_timeout: float = 600
    app_recognition_timeout: float = 60
    app_pods_timeout: float = 300

    @property
    def gitlab_host(self) -> str:
        """Return the GitLab ingress host name."""
        return f"gitlab.{self.domain}"

    @property
    def gitlab_scheme(self) -> str:
        """Return the URL scheme GitLab is served with."""
        return "https" if self.tls else "http"

    @property
    def gitlab_url(self) -> str:
        """Return the GitLab web URL."""
        return f"{self.gitlab_scheme}://{self.gitlab_host}"

    @property
    def repo_url(self) -> str:
        """Return the credential-free clone URL of the GitLab project."""
        return f"{self.gitlab_url}/root/{self.project_name}.git"

    def authenticated_repo_url(self, token: str) -> str:
        """Return the project URL with root credentials embedded."""
        return (
            f"{self.gitlab_scheme}://root:{token}@{self.gitlab_host}"
            f"/root/{self.project_name}.git"
        )

    @property
    def cert_chain_path(self) -> Path:
        """Return where the GitLab certificate chain is stored."""
        return self.cert_dir / f"{self.gitlab_host}-chain.pem"


@dataclasses.dataclass(frozen=True, slots=True)
class HelmChartSpec:
    """Specification for a Helm chart installation.

    Attributes:
        repo_name: Helm repository alias.
        repo_url: Helm repository URL.
        release_name: Helm release name.
        chart_name: Fully qualified chart name (repo/chart).
        namespace: Target namespace for the release.
        values: ``--set`` overrides as ``(key, value)`` pairs.
        timeout: Helm's own ``--timeout`` in seconds.

    """

    repo_name: str
    repo_url: str
    release_name: str
    chart_name: str
    namespace: str
    values: tuple[tuple[str, str], ...] = ()
    timeout: int = 1800
