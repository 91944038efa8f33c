from __future__ import annotations

import re
from typing import Optional, Tuple

from deploygate.auth.models import CapabilitySet
from deploygate.errors import AppNotAllowed, ImageNotAllowed


class MalformedImageReference(ValueError):
    pass


def split_image_reference(image: Optional[str]) -> Tuple[str, str]:
    """
    Split `repository:tag` on the last colon.

    >>> split_image_reference("registry.example.com/team/app:v2")
    ('registry.example.com/team/app', 'v2')

    A reference with no colon (implicit `latest`) is rejected rather than matched
    against an empty tag.
    """
    repository, sep, tag = (image or "").rpartition(":")
    if not sep or not repository or not tag:
        raise MalformedImageReference(f"image reference must be repository:tag, got {image!r}")
    return repository, tag


def authorize_app(caps: CapabilitySet, app_name: str) -> None:
    # Exact match only: no case folding or trimming.
    if app_name not in caps.allowed_apps:
        raise AppNotAllowed(f"app not allowed: {app_name}")


def authorize_image(caps: CapabilitySet, image_reference: Optional[str]) -> None:
    # A missing or empty reference is malformed, not "nothing to check".
    try:
        repository, _tag = split_image_reference(image_reference)
    except MalformedImageReference as e:
        raise ImageNotAllowed(caps.allowed_images) from e
    if repository not in caps.allowed_images:
        raise ImageNotAllowed(caps.allowed_images)


def authorize(caps: CapabilitySet, app_name: str, image_reference: Optional[str] = None) -> None:
    """
    Raise AppNotAllowed / ImageNotAllowed, or return None when allowed.

    The app is always checked first, so a caller without the app never learns
    anything about images.
    """
    authorize_app(caps, app_name)
    if image_reference is not None:
        authorize_image(caps, image_reference)


_ALWAYS_REDACT_PATTERNS = [
    # API Keys & Tokens (explicit key=value patterns)
    re.compile(r"(?i)(api[_-]?key|token|secret|password)\s*[:=]\s*['\"]?([a-zA-Z0-9_\-+=/.]{8,})['\"]?"),
    # JSON-style token fields: "access_token": "..."
    re.compile(r"(?i)\"[a-z_]*(token|secret)\"\s*:\s*\"[^\"]+\""),
    # Bearer tokens (Authorization headers)
    re.compile(r"(?i)authorization\s*:\s*bearer\s+[a-zA-Z0-9._\-]{20,}"),
    re.compile(r"(?i)\bbearer\s+[a-zA-Z0-9._\-]{20,}"),
    # JWT tokens (base64.base64.base64)
    re.compile(r"\beyJ[a-zA-Z0-9_-]+\.eyJ[a-zA-Z0-9_-]+\.[a-zA-Z0-9_-]+\b"),
    # Private keys
    re.compile(r"-----BEGIN [A-Z ]+ PRIVATE KEY-----[^-]+-----END [A-Z ]+ PRIVATE KEY-----"),
]


def redact_text(s: str) -> str:
    """
    Best-effort secret redaction for log lines.

    Used on identity-provider error bodies, which may echo token introspection data.

    Example:
        >>> redact_text("token=abcdefgh12345")
        '[REDACTED]'
    """
    if not s:
        return s
    out = s
    for pat in _ALWAYS_REDACT_PATTERNS:
        out = pat.sub("[REDACTED]", out)
    return out
