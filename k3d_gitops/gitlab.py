"""GitLab installation and access.

Public API:
    gitlab_chart_spec: Build the Helm chart specification for GitLab.
    install_gitlab: Install or upgrade the GitLab Helm release.
    ensure_hosts_entry: Map the GitLab host name to the loopback address.
    wait_for_gitlab: Block until the GitLab web UI answers.
    find_toolbox_pod: Locate the GitLab toolbox pod.
    generate_access_token: Create a root personal access token.
    save_token: Persist a token with owner-only permissions.
    read_root_password: Read the initial root password.

Example:
    >>> cfg = Config()
    >>> env = kubeconfig_env("gitlab")
    >>> install_gitlab(cfg, env)
    >>> ensure_hosts_entry(cfg.gitlab_host)
    >>> wait_for_gitlab(cfg, env)
    >>> token = generate_access_token(cfg, env)

"""

from __future__ import annotations

import os
import re
import subprocess
import typing as typ
from pathlib import Path

from k3d_gitops.conditions import ImagePullAnomaly, UrlReachable
from k3d_gitops.config import HelmChartSpec
from k3d_gitops.helm import install_helm_chart
from k3d_gitops.k8s import exec_in_pod, list_pods, read_secret_field
from k3d_gitops.logging import get_logger, log_info
from k3d_gitops.readiness import PollPolicy, require_ready, wait
from k3d_gitops.validation import BootstrapError, ToolboxPodNotFoundError

if typ.TYPE_CHECKING:
    from k3d_gitops.config import Config

logger = get_logger(__name__)

HOSTS_FILE = Path("/etc/hosts")
LOOPBACK = "127.0.0.1"

_TOOLBOX_CONTAINER = "toolbox"
_TOKEN_NAME = "k3d-gitops"

# Runs inside gitlab-rails; prints the new token on the last line.
TOKEN_SCRIPT = f"""\
user = User.find_by_username('root')
token = user.personal_access_tokens.create!(
  name: '{_TOKEN_NAME}',
  scopes: ['api', 'read_repository', 'write_repository'],
  expires_at: 365.days.from_now
)
puts token.token
"""


def gitlab_chart_spec(cfg: Config) -> HelmChartSpec:
    """Build the Helm chart specification for GitLab.

    The chart brings its own nginx ingress controller and cert-manager
    issuer. No runner is installed.
    """
    tls = "true" if cfg.tls else "false"
    return HelmChartSpec(
        repo_name="gitlab",
        repo_url=cfg.gitlab_helm_repo_url,
        release_name=cfg.gitlab_release,
        chart_name="gitlab/gitlab",
        namespace=cfg.gitlab_namespace,
        values=(
            ("global.hosts.domain", cfg.domain),
            ("global.hosts.https", tls),
            ("certmanager-issuer.email", cfg.email),
            ("global.ingress.configureCertmanager", tls),
            ("global.ingress.tls.enabled", tls),
            ("nginx-ingress.enabled", "true"),
            ("global.externalIngress.class", "nginx"),
            ("gitlab-runner.install", "false"),
        ),
        timeout=1800,
    )


def install_gitlab(cfg: Config, env: dict[str, str]) -> None:
    """Install or upgrade the GitLab Helm release.

    Helm returns once the release is recorded; GitLab itself keeps starting
    for several minutes afterwards. Use :func:`wait_for_gitlab` to block.
    """
    install_helm_chart(gitlab_chart_spec(cfg), env)


def _has_hosts_entry(hosts_text: str, hostname: str) -> bool:
    pattern = re.compile(
        rf"^{re.escape(LOOPBACK)}\s+(?:\S+\s+)*{re.escape(hostname)}(?:\s|$)",
        re.MULTILINE,
    )
    return pattern.search(hosts_text) is not None


def ensure_hosts_entry(hostname: str, hosts_path: Path = HOSTS_FILE) -> bool:
    """Ensure ``hosts_path`` maps ``hostname`` to the loopback address.

    Appends directly when the file is writable and through ``sudo tee -a``
    otherwise.

    Returns:
        True if an entry was added, False if one already existed.

    """
    if _has_hosts_entry(hosts_path.read_text(encoding="utf-8"), hostname):
        return False

    line = f"{LOOPBACK}       {hostname}\n"
    log_info(logger, "Adding %s to %s", hostname, hosts_path)
    if os.access(hosts_path, os.W_OK):
        with hosts_path.open("a", encoding="utf-8") as handle:
            handle.write(line)
    else:
        # S603/S607: sudo via PATH is standard; path is fixed or test-supplied
        subprocess.run(  # noqa: S603
            ["sudo", "tee", "-a", str(hosts_path)],  # noqa: S607
            input=line,
            text=True,
            stdout=subprocess.DEVNULL,
            check=True,
            timeout=120,
        )
    return True


def wait_for_gitlab(cfg: Config, env: dict[str, str], *, interval: float = 5) -> None:
    """Block until the GitLab web UI answers.

    Image pull failures in the GitLab namespace are reported while waiting
    but do not end the wait.

    Raises:
        GateTimeoutError: If GitLab does not answer within
            ``cfg.gitlab_ready_timeout`` seconds.

    """
    condition = UrlReachable(cfg.gitlab_url, verify=False)
    policy = PollPolicy(
        interval=interval, timeout=cfg.gitlab_ready_timeout, progress_interval=30
    )
    result = wait(
        condition, policy, anomalies=[ImagePullAnomaly(cfg.gitlab_namespace, env)]
    )
    require_ready(result, "GitLab web UI", policy)


def find_toolbox_pod(namespace: str, env: dict[str, str]) -> str:
    """Return the name of the first toolbox pod in ``namespace``.

    Raises:
        ToolboxPodNotFoundError: If no pod name contains ``toolbox``.

    """
    pods = list_pods(namespace, env) or []
    pod_names = (str(pod.get("metadata", {}).get("name", "")) for pod in pods)
    names = sorted(name for name in pod_names if _TOOLBOX_CONTAINER in name)
    if not names:
        msg = f"No toolbox pod found in namespace '{namespace}'"
        raise ToolboxPodNotFoundError(msg)
    return names[0]


def generate_access_token(cfg: Config, env: dict[str, str]) -> str:
    """Create a root personal access token through ``gitlab-rails runner``.

    Raises:
        ToolboxPodNotFoundError: If the toolbox pod does not exist.
        BootstrapError: If the runner printed no token.

    """
    pod = find_toolbox_pod(cfg.gitlab_namespace, env)
    log_info(logger, "Generating access token in pod %s", pod)
    output = exec_in_pod(
        pod,
        cfg.gitlab_namespace,
        ["gitlab-rails", "runner", TOKEN_SCRIPT],
        env,
        container=_TOOLBOX_CONTAINER,
    )
    lines = [line.strip() for line in output.replace("\r", "").splitlines()]
    lines = [line for line in lines if line]
    if not lines:
        msg = "gitlab-rails runner did not print an access token"
        raise BootstrapError(msg)
    return lines[-1]


def save_token(token: str, path: Path) -> Path:
    """Write ``token`` to ``path`` readable by the owner only."""
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(f"{token}\n", encoding="utf-8")
    path.chmod(0o600)
    return path


def read_root_password(cfg: Config, env: dict[str, str]) -> str:
    """Read GitLab's initial root password."""
    return read_secret_field(
        f"{cfg.gitlab_release}-gitlab-initial-root-password",
        "password",
        cfg.gitlab_namespace,
        env,
    )
