"""Kubernetes namespace and resource operations.

This module wraps the kubectl calls used by the orchestration steps and the
readiness conditions: managing namespaces, applying manifests, restarting
rollouts, querying pods as JSON, executing commands in pods and reading
secret fields. All functions require an environment dictionary with
KUBECONFIG set to target the correct cluster.

Examples
--------
Ensure a namespace exists before deploying resources:

    env = kubeconfig_env("gitlab")
    ensure_namespace("argocd", env)

Restart a deployment and wait for the new pods:

    rollout_restart("deployment", "coredns", "kube-system", env)
    rollout_status("deployment", "coredns", "kube-system", env, timeout=120)

Read the ArgoCD admin password:

    password = read_secret_field(
        "argocd-initial-admin-secret", "password", "argocd", env
    )

"""

from __future__ import annotations

import json
import re
import subprocess
import typing as typ

from k3d_gitops.validation import (
    ExecutableNotFoundError,
    TransientCheckError,
    b64decode_k8s_secret_field,
)

# Kubernetes secret keys must contain only alphanumeric, dot, underscore, or hyphen
_SECRET_KEY_PATTERN = re.compile(r"^[A-Za-z0-9._-]+$")

# Timeout bounds for kubectl rollout status (in seconds).
_MIN_WAIT_TIMEOUT = 1
_MAX_WAIT_TIMEOUT = 3600

_QUERY_TIMEOUT = 30


def namespace_exists(namespace: str, env: dict[str, str]) -> bool:
    """Check if a Kubernetes namespace exists.

    Parameters
    ----------
    namespace : str
        Name of the namespace to check.
    env : dict[str, str]
        Environment dict with KUBECONFIG set.

    Returns
    -------
    bool
        True if the namespace exists, False otherwise.

    """
    # S603/S607: kubectl via PATH is standard; namespace is validated by k8s API
    result = subprocess.run(  # noqa: S603
        ["kubectl", "get", "namespace", namespace],  # noqa: S607
        capture_output=True,
        env=env,
        timeout=_QUERY_TIMEOUT,
    )
    return result.returncode == 0


def create_namespace(namespace: str, env: dict[str, str]) -> None:
    """Create a Kubernetes namespace idempotently.

    Uses dry-run + apply pattern for idempotent upsert behaviour.

    Parameters
    ----------
    namespace : str
        Name of the namespace to create.
    env : dict[str, str]
        Environment dict with KUBECONFIG set.

    """
    # S603/S607: kubectl via PATH is standard; namespace validated by k8s API
    result = subprocess.run(  # noqa: S603
        [  # noqa: S607
            "kubectl",
            "create",
            "namespace",
            namespace,
            "--dry-run=client",
            "-o",
            "yaml",
        ],
        capture_output=True,
        text=True,
        check=True,
        env=env,
        timeout=_QUERY_TIMEOUT,
    )
    apply_manifest(result.stdout, env)


def ensure_namespace(namespace: str, env: dict[str, str]) -> None:
    """Ensure a Kubernetes namespace exists, creating if necessary."""
    if not namespace_exists(namespace, env):
        create_namespace(namespace, env)


def apply_manifest(manifest: str, env: dict[str, str]) -> None:
    """Apply a YAML or JSON manifest to the cluster via kubectl stdin.

    Parameters
    ----------
    manifest : str
        Manifest string to apply. May hold several YAML documents.
    env : dict[str, str]
        Environment dict with KUBECONFIG set.

    """
    # S607: kubectl via PATH is standard; manifest generated internally
    subprocess.run(
        ["kubectl", "apply", "-f", "-"],  # noqa: S607
        input=manifest,
        text=True,
        check=True,
        env=env,
        timeout=60,
    )


def apply_manifest_url(
    url: str, env: dict[str, str], namespace: str | None = None
) -> None:
    """Apply a remote manifest, optionally into a namespace.

    Parameters
    ----------
    url : str
        URL of the manifest (for example an upstream ``install.yaml``).
    env : dict[str, str]
        Environment dict with KUBECONFIG set.
    namespace : str, optional
        Namespace passed to ``kubectl apply -n``.

    """
    cmd = ["kubectl", "apply"]
    if namespace is not None:
        cmd.extend(["-n", namespace])
    cmd.extend(["-f", url])
    # S603: kubectl via PATH is standard; URL comes from Config
    subprocess.run(  # noqa: S603
        cmd,
        check=True,
        env=env,
        timeout=180,
    )


def get_json(args: list[str], env: dict[str, str]) -> dict[str, typ.Any] | None:
    """Run ``kubectl <args> -o json`` and parse the output.

    Used by readiness probes, so failures are classified rather than raised
    as ``CalledProcessError``.

    Returns
    -------
    dict or None
        Parsed JSON object, or None when kubectl exits non-zero or prints
        something that is not a JSON object.

    Raises
    ------
    TransientCheckError
        If kubectl does not answer within the query timeout.
    ExecutableNotFoundError
        If kubectl is not installed.

    """
    try:
        # S603/S607: kubectl via PATH is standard; args built internally
        result = subprocess.run(  # noqa: S603
            ["kubectl", *args, "-o", "json"],  # noqa: S607
            capture_output=True,
            text=True,
            env=env,
            timeout=_QUERY_TIMEOUT,
        )
    except FileNotFoundError as e:
        msg = "Required executable 'kubectl' not found in PATH"
        raise ExecutableNotFoundError(msg) from e
    except subprocess.TimeoutExpired as e:
        msg = f"kubectl {' '.join(args)} timed out after {_QUERY_TIMEOUT}s"
        raise TransientCheckError(msg) from e

    if result.returncode != 0:
        return None
    try:
        data = json.loads(result.stdout)
    except json.JSONDecodeError:
        return None
    return data if isinstance(data, dict) else None


def list_pods(namespace: str, env: dict[str, str]) -> list[dict[str, typ.Any]] | None:
    """List pods in a namespace as parsed JSON objects.

    Returns:
        List of pod dicts if kubectl succeeded, None otherwise.

    """
    data = get_json(["get", "pods", f"--namespace={namespace}"], env)
    if data is None:
        return None
    items = data.get("items")
    return items if isinstance(items, list) else []


def list_nodes(env: dict[str, str]) -> list[dict[str, typ.Any]] | None:
    """List cluster nodes as parsed JSON objects."""
    data = get_json(["get", "nodes"], env)
    if data is None:
        return None
    items = data.get("items")
    return items if isinstance(items, list) else []


def rollout_restart(kind: str, name: str, namespace: str, env: dict[str, str]) -> None:
    """Trigger a rolling restart of a workload."""
    # S603/S607: kubectl via PATH is standard; names from Config
    subprocess.run(  # noqa: S603
        [  # noqa: S607
            "kubectl",
            "rollout",
            "restart",
            f"{kind}/{name}",
            f"--namespace={namespace}",
        ],
        check=True,
        env=env,
        timeout=_QUERY_TIMEOUT,
    )


def rollout_status(
    kind: str, name: str, namespace: str, env: dict[str, str], timeout: int = 300
) -> None:
    """Block until a workload's rollout completes.

    Parameters
    ----------
    kind : str
        Workload kind, for example ``deployment``.
    name : str
        Workload name.
    namespace : str
        Namespace holding the workload.
    env : dict[str, str]
        Environment dict with KUBECONFIG set.
    timeout : int, default 300
        Maximum time to wait in seconds. Must be between 1 and 3600.

    Raises
    ------
    ValueError
        If timeout is outside the valid range (1-3600 seconds).

    """
    if not _MIN_WAIT_TIMEOUT <= timeout <= _MAX_WAIT_TIMEOUT:
        msg = (
            f"timeout must be between {_MIN_WAIT_TIMEOUT} and "
            f"{_MAX_WAIT_TIMEOUT} seconds, got {timeout}"
        )
        raise ValueError(msg)

    # Add buffer to subprocess timeout beyond kubectl's --timeout
    # S603/S607: kubectl via PATH is standard; names from Config
    subprocess.run(  # noqa: S603
        [  # noqa: S607
            "kubectl",
            "rollout",
            "status",
            f"{kind}/{name}",
            f"--namespace={namespace}",
            f"--timeout={timeout}s",
        ],
        check=True,
        env=env,
        timeout=timeout + 30,
    )


def patch_resource(
    kind: str,
    name: str,
    namespace: str,
    patch: dict[str, typ.Any],
    env: dict[str, str],
) -> None:
    """Apply a strategic merge patch to a resource."""
    # S603/S607: kubectl via PATH is standard; patch generated internally
    subprocess.run(  # noqa: S603
        [  # noqa: S607
            "kubectl",
            "patch",
            kind,
            name,
            f"--namespace={namespace}",
            "--type=strategic",
            "--patch",
            json.dumps(patch),
        ],
        check=True,
        env=env,
        timeout=_QUERY_TIMEOUT,
    )


def exec_in_pod(
    pod: str,
    namespace: str,
    command: list[str],
    env: dict[str, str],
    *,
    container: str | None = None,
    timeout: float = 300,
) -> str:
    """Run a command inside a pod and return its standard output.

    No TTY is allocated, so the output carries no carriage returns.
    """
    cmd = ["kubectl", "exec", f"--namespace={namespace}", pod]
    if container is not None:
        cmd.extend(["-c", container])
    cmd.extend(["--", *command])
    # S603: kubectl via PATH is standard; pod and command built internally
    result = subprocess.run(  # noqa: S603
        cmd,
        capture_output=True,
        text=True,
        check=True,
        env=env,
        timeout=timeout,
    )
    return result.stdout


def get_jsonpath(
    kind: str, name: str, namespace: str, jsonpath: str, env: dict[str, str]
) -> str:
    """Read a single value from a resource with a jsonpath expression."""
    # S603/S607: kubectl via PATH is standard; args from Config or hardcoded
    result = subprocess.run(  # noqa: S603
        [  # noqa: S607
            "kubectl",
            "get",
            kind,
            name,
            f"--namespace={namespace}",
            "-o",
            f"jsonpath={jsonpath}",
        ],
        capture_output=True,
        text=True,
        check=True,
        env=env,
        timeout=_QUERY_TIMEOUT,
    )
    return result.stdout.strip()


def resource_exists(kind: str, name: str, namespace: str, env: dict[str, str]) -> bool:
    """Check if a named resource exists in a namespace."""
    # S603/S607: kubectl via PATH is standard; names from Config
    result = subprocess.run(  # noqa: S603
        ["kubectl", "get", kind, name, f"--namespace={namespace}"],  # noqa: S607
        capture_output=True,
        env=env,
        timeout=_QUERY_TIMEOUT,
    )
    return result.returncode == 0


def print_pods(namespace: str, env: dict[str, str]) -> None:
    """Print pods in a namespace using ``kubectl get pods -o wide``."""
    # S603/S607: kubectl via PATH is standard; namespace from Config
    subprocess.run(  # noqa: S603
        [  # noqa: S607
            "kubectl",
            "get",
            "pods",
            f"--namespace={namespace}",
            "-o",
            "wide",
        ],
        check=False,
        env=env,
        timeout=_QUERY_TIMEOUT,
    )


def read_secret_field(
    secret_name: str, field: str, namespace: str, env: dict[str, str]
) -> str:
    """Read and decode a field from a Kubernetes secret.

    Retrieves the specified field from a secret and decodes it from base64.
    Handles dotted field names (e.g., "ca.crt") correctly via quoted jsonpath.

    Parameters
    ----------
    secret_name : str
        Name of the Kubernetes secret.
    field : str
        Name of the field within the secret's data section. Must not be empty
        or contain characters that break jsonpath syntax.
    namespace : str
        Kubernetes namespace containing the secret.
    env : dict[str, str]
        Environment dict with KUBECONFIG set.

    Returns
    -------
    str
        The decoded UTF-8 string value of the secret field.

    Raises
    ------
    ValueError
        If field is empty, contains invalid characters, or the secret field
        value is empty or missing.

    """
    if not field:
        msg = "field cannot be empty"
        raise ValueError(msg)
    # Enforce Kubernetes secret key character rules
    if not _SECRET_KEY_PATTERN.match(field):
        msg = (
            f"field '{field}' contains invalid characters; "
            "only alphanumeric, dot, underscore, and hyphen are allowed"
        )
        raise ValueError(msg)

    # Quote the field name to support dotted keys like "ca.crt"
    output = get_jsonpath(
        "secret", secret_name, namespace, f"{{.data['{field}']}}", env
    )
    if not output:
        msg = (
            f"Secret '{secret_name}' field '{field}' is empty or missing "
            f"in namespace '{namespace}'"
        )
        raise ValueError(msg)

    return b64decode_k8s_secret_field(output)
