"""
Transport validation for Git remotes.

State leaving the machine is always ciphertext, but repo structure,
timing and the integrity of the ciphertext stream still ride on the
transport. Only channels with their own encryption and authentication
(SSH, TLS) or no network at all (local paths) are accepted.

Runs on every push and pull, not just at setup, so a remote that was
later switched to plain HTTP is caught on the next sync.
"""

from __future__ import annotations

import re
from urllib.parse import urlparse

from .errors import TransportError

SSH_SHORTHAND = re.compile(r"^[A-Za-z0-9._][A-Za-z0-9._-]*@[A-Za-z0-9.][A-Za-z0-9._-]*:.+$")
SCHEME = re.compile(r"^([A-Za-z][A-Za-z0-9+.-]*)://")

ALLOWED_SCHEMES = frozenset({"https", "ssh", "file"})

_EXAMPLES = (
    "Expected SSH (git@host:user/repo.git) or HTTPS "
    "(https://host/user/repo.git) URL, or an absolute local path."
)

_INSECURE = {
    "http": "HTTP transmits data in plaintext. Use HTTPS instead.",
    "git": "The git:// protocol transmits data in plaintext. Use SSH or HTTPS instead.",
    "ftp": "FTP transmits data in plaintext. Use SSH or HTTPS instead.",
}


def validate_remote_url(url: str) -> None:
    """Raise TransportError unless ``url`` is a secure Git remote.

    Accepts ``user@host:path``, ``https://``, ``ssh://``, ``file://``
    and absolute filesystem paths. Rejects ``http://``, ``git://``,
    ``ftp://``, anything else, and empty or malformed input; each
    rejection names the offending scheme.
    """
    if not isinstance(url, str) or not url.strip():
        raise TransportError(f"Git remote URL is required. {_EXAMPLES}")

    trimmed = url.strip()

    if SSH_SHORTHAND.match(trimmed) and "://" not in trimmed:
        return

    if trimmed.startswith("/"):
        return

    match = SCHEME.match(trimmed)
    if not match:
        raise TransportError(f"Invalid Git remote URL: {trimmed}. {_EXAMPLES}")

    scheme = match.group(1).lower()
    if scheme == "http":
        raise TransportError(
            f"Insecure Git remote ({scheme}://): {trimmed}. {_INSECURE[scheme]}",
            suggestion=f"Use: {re.sub(r'^http:', 'https:', trimmed, flags=re.IGNORECASE)}",
        )
    if scheme in _INSECURE:
        raise TransportError(
            f"Insecure Git remote ({scheme}://): {trimmed}. {_INSECURE[scheme]}"
        )
    if scheme not in ALLOWED_SCHEMES:
        raise TransportError(
            f"Unsupported Git remote protocol ({scheme}://): {trimmed}. "
            "Only SSH, HTTPS and local paths are supported."
        )

    parsed = urlparse(trimmed)
    if scheme == "file":
        if not parsed.path.strip("/"):
            raise TransportError(f"Invalid Git remote URL (no path): {trimmed}. {_EXAMPLES}")
        return
    if not parsed.netloc:
        raise TransportError(f"Invalid Git remote URL (no host): {trimmed}. {_EXAMPLES}")
    # git hands the host to ssh as an argument; a leading dash becomes an option.
    if parsed.netloc.startswith("-") or (parsed.hostname or "").startswith("-"):
        raise TransportError(f"Invalid Git remote URL (host may not start with '-'): {trimmed}.")
