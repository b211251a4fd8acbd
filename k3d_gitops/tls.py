"""TLS certificate chain handling for the GitLab endpoint.

The chain served by GitLab's ingress is captured with ``openssl s_client``
and treated as an opaque list of PEM blocks. It is written to disk for the
git client and published to ArgoCD so the repo server trusts GitLab.
"""

from __future__ import annotations

import re
import subprocess
import typing as typ

from k3d_gitops.logging import get_logger, log_info
from k3d_gitops.validation import CertificateExtractionError

if typ.TYPE_CHECKING:
    from pathlib import Path

logger = get_logger(__name__)

_PEM_BLOCK = re.compile(
    r"-----BEGIN CERTIFICATE-----\r?\n.*?-----END CERTIFICATE-----",
    re.DOTALL,
)

_OPENSSL_TIMEOUT = 30


def parse_pem_blocks(text: str) -> list[str]:
    """Return every PEM certificate block found in ``text``, in order."""
    return _PEM_BLOCK.findall(text)


def fetch_certificate_chain(host: str, port: int = 443) -> list[str]:
    """Fetch the certificate chain a TLS endpoint serves.

    Args:
        host: Host name, also sent as SNI.
        port: TLS port.

    Returns:
        PEM blocks, leaf certificate first.

    Raises:
        CertificateExtractionError: If the endpoint served no certificate or
            did not answer in time.

    """
    try:
        # S603/S607: openssl via PATH is standard; host from Config
        result = subprocess.run(  # noqa: S603
            [  # noqa: S607
                "openssl",
                "s_client",
                "-showcerts",
                "-servername",
                host,
                "-connect",
                f"{host}:{port}",
            ],
            input="",
            capture_output=True,
            text=True,
            timeout=_OPENSSL_TIMEOUT,
        )
    except subprocess.TimeoutExpired as e:
        msg = f"openssl s_client timed out connecting to {host}:{port}"
        raise CertificateExtractionError(msg) from e

    blocks = parse_pem_blocks(result.stdout)
    if not blocks:
        msg = f"Failed to extract certificates for {host}"
        raise CertificateExtractionError(msg)
    log_info(logger, "Extracted %d certificate(s) from %s", len(blocks), host)
    return blocks


def write_certificate_chain(blocks: list[str], path: Path) -> Path:
    """Write PEM blocks to ``path``, creating parent directories."""
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text("\n".join(blocks) + "\n", encoding="utf-8")
    return path


def install_git_ca(url: str, ca_path: Path) -> None:
    """Make the global git configuration trust ``ca_path`` for ``url``.

    Args:
        url: Base URL; a trailing slash is added when missing so the setting
            only applies below that URL.
        ca_path: PEM bundle to trust.

    """
    prefix = url if url.endswith("/") else f"{url}/"
    # S603/S607: git via PATH is standard; url from Config
    subprocess.run(  # noqa: S603
        [  # noqa: S607
            "git",
            "config",
            "--global",
            f"http.{prefix}.sslCAInfo",
            str(ca_path),
        ],
        check=True,
        timeout=_OPENSSL_TIMEOUT,
    )
