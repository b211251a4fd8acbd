"""Errors and small helpers shared across the k3d_gitops package.

This module provides foundational utilities used by every orchestration step
for executable verification and secret decoding. It also defines the
exception hierarchy for the package.

Utilities
---------
- ``require_exe``: Verifies CLI tools (k3d, kubectl, helm, argocd, openssl,
  git) are available
- ``b64decode_k8s_secret_field``: Decodes base64-encoded Kubernetes secret
  values

Custom Exceptions
-----------------
- ``BootstrapError``: Base exception for all package errors
- ``ExecutableNotFoundError``: Raised when a required CLI tool is missing
- ``SecretDecodeError``: Raised when secret decoding fails
- ``TransientCheckError``: Raised by a readiness probe that may succeed later
- ``GateTimeoutError``: Raised when a caller treats a timed-out gate as fatal
- ``GateExternalError``: Raised when a gate could not probe at all
- ``CertificateExtractionError``: Raised when no certificate was served
- ``ToolboxPodNotFoundError``: Raised when the GitLab toolbox pod is absent

Examples
--------
Verify required executables before proceeding:

    for exe in ("k3d", "kubectl", "helm"):
        require_exe(exe)

Decode a secret value retrieved from Kubernetes:

    password = b64decode_k8s_secret_field("c2VjcmV0")

"""

from __future__ import annotations

import base64
import shutil


class BootstrapError(Exception):
    """Base exception for all k3d_gitops package errors."""


class ExecutableNotFoundError(BootstrapError):
    """Required CLI tool is not installed."""


class SecretDecodeError(BootstrapError):
    """Failed to decode a Kubernetes secret field."""


class TransientCheckError(BootstrapError):
    """A readiness probe failed in a way that may clear up on retry."""


class GateTimeoutError(BootstrapError):
    """A readiness gate timed out and the caller chose to abort."""

    def __init__(self, description: str, timeout: float) -> None:
        """Record the gated condition and its timeout."""
        self.description = description
        self.timeout = timeout
        super().__init__(f"Timed out after {timeout:g}s waiting for {description}")


class GateExternalError(BootstrapError):
    """A readiness gate could not evaluate its condition at all."""

    def __init__(self, description: str) -> None:
        """Record the gated condition."""
        self.description = description
        super().__init__(f"Unable to check {description}; probe tool unavailable")


class CertificateExtractionError(BootstrapError):
    """The TLS endpoint did not yield any PEM certificate."""


class ToolboxPodNotFoundError(BootstrapError):
    """No GitLab toolbox pod was found in the GitLab namespace."""


def require_exe(name: str) -> None:
    """Verify a CLI tool is available in PATH.

    Parameters
    ----------
    name : str
        Name of the executable to check for.

    Raises
    ------
    ExecutableNotFoundError
        If the executable is not found in PATH.

    """
    if shutil.which(name) is None:
        msg = f"Required executable '{name}' not found in PATH"
        raise ExecutableNotFoundError(msg)


def b64decode_k8s_secret_field(b64_text: str) -> str:
    """Decode a base64-encoded Kubernetes secret value.

    Kubernetes secrets store values as base64-encoded strings. This function
    decodes them to UTF-8 text.

    Parameters
    ----------
    b64_text : str
        Base64-encoded string from a Kubernetes secret.

    Returns
    -------
    str
        The decoded UTF-8 string.

    Raises
    ------
    SecretDecodeError
        If the input is not valid base64 or cannot be decoded as UTF-8 text.

    """
    try:
        return base64.b64decode(b64_text, validate=True).decode("utf-8")
    except (ValueError, UnicodeDecodeError) as e:
        msg = f"Failed to decode secret field: {e}"
        raise SecretDecodeError(msg) from e
