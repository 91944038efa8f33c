from __future__ import annotations

import os
from dataclasses import dataclass
from functools import lru_cache
from typing import Optional

SCHEMA_FLAT = "flat"
SCHEMA_GROUPS = "groups"
CAPABILITY_SCHEMAS = (SCHEMA_FLAT, SCHEMA_GROUPS)

DEFAULT_USERINFO_PATH = "/protocol/openid-connect/userinfo"


@dataclass(frozen=True)
class AuthConfig:
    userinfo_url: str
    # Which document shape the identity provider returns (flat|groups).
    capability_schema: str
    timeout_seconds: float


def _env_str(name: str) -> Optional[str]:
    return (os.getenv(name, "") or "").strip() or None


def build_userinfo_url(
    *,
    issuer_url: Optional[str],
    realm: Optional[str] = None,
    userinfo_path: Optional[str] = None,
) -> Optional[str]:
    """
    Compose `<issuer>[/realms/<realm>]<path>` (Keycloak-style layout).

    Returns None when no issuer is configured.
    """
    if not issuer_url:
        return None
    url = issuer_url.rstrip("/")
    if realm:
        url = f"{url}/realms/{realm.strip('/')}"
    path = userinfo_path or DEFAULT_USERINFO_PATH
    if not path.startswith("/"):
        path = "/" + path
    return url + path


@lru_cache(maxsize=1)
def load_auth_config() -> AuthConfig:
    """
    Load identity-provider configuration from environment variables.

    USERINFO_URL wins when set; otherwise the URL is composed from OIDC_ISSUER_URL,
    OIDC_REALM and OIDC_USERINFO_PATH.
    """
    userinfo_url = _env_str("USERINFO_URL") or build_userinfo_url(
        issuer_url=_env_str("OIDC_ISSUER_URL"),
        realm=_env_str("OIDC_REALM"),
        userinfo_path=_env_str("OIDC_USERINFO_PATH"),
    )
    if not userinfo_url:
        raise ValueError("Identity provider not configured (set USERINFO_URL or OIDC_ISSUER_URL)")

    schema = (_env_str("CAPABILITY_SCHEMA") or SCHEMA_FLAT).lower()
    if schema not in CAPABILITY_SCHEMAS:
        raise ValueError(f"Unknown CAPABILITY_SCHEMA: {schema!r} (expected one of {', '.join(CAPABILITY_SCHEMAS)})")

    try:
        timeout = float(_env_str("USERINFO_TIMEOUT_SECONDS") or "10")
    except ValueError:
        timeout = 10.0
    timeout = max(1.0, min(timeout, 60.0))

    return AuthConfig(
        userinfo_url=userinfo_url,
        capability_schema=schema,
        timeout_seconds=timeout,
    )
