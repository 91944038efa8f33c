"""
Capability resolution via the identity provider's userinfo endpoint.

The caller's Authorization header is forwarded verbatim; the identity provider decides
whether the token is valid and what it may touch. Exactly one request per resolution,
no retries.
"""

from __future__ import annotations

import logging
import threading
from typing import Any, Dict, Optional, Type, Union

import requests
from pydantic import ValidationError

from deploygate.auth.config import SCHEMA_FLAT, SCHEMA_GROUPS, load_auth_config
from deploygate.auth.models import CapabilitySet, FlatUserInfo, GroupsUserInfo
from deploygate.authz.policy import redact_text
from deploygate.errors import Forbidden, InternalError, Unauthenticated

logger = logging.getLogger(__name__)

_session: Optional[requests.Session] = None
_session_lock = threading.Lock()

_DECODERS: Dict[str, Type[Union[FlatUserInfo, GroupsUserInfo]]] = {
    SCHEMA_FLAT: FlatUserInfo,
    SCHEMA_GROUPS: GroupsUserInfo,
}

# Max characters of an unexpected identity-provider body that end up in logs.
_LOG_BODY_LIMIT = 500


def _get_session() -> requests.Session:
    """
    Return the shared HTTP session (connection pooling across requests).

    No retry adapter is mounted: a silently retried identity check is left to the
    operator's network layer.
    """
    global _session
    if _session is not None:
        return _session
    with _session_lock:
        if _session is None:
            _session = requests.Session()
        return _session


def decode_capabilities(payload: Any, schema: str) -> CapabilitySet:
    """
    Decode a userinfo document with the configured schema variant.

    Raises pydantic.ValidationError when the document does not match.
    """
    model = _DECODERS.get(schema)
    if model is None:
        raise ValueError(f"Unknown capability schema: {schema}")
    return model.model_validate(payload).to_capabilities()


def resolve_capabilities(authorization: Optional[str]) -> CapabilitySet:
    """
    Resolve the raw Authorization header into a CapabilitySet.

    Raises:
        Unauthenticated: header missing, or the identity provider answered 401
        Forbidden: the identity provider answered 403
        InternalError: misconfiguration, transport failure, unexpected status or body
    """
    if not authorization or not authorization.strip():
        raise Unauthenticated("missing Authorization header")

    try:
        cfg = load_auth_config()
    except ValueError as e:
        logger.error("Identity provider misconfigured: %s", str(e))
        raise InternalError("identity provider not configured") from e

    try:
        response = _get_session().get(
            cfg.userinfo_url,
            headers={"Authorization": authorization, "Accept": "application/json"},
            timeout=cfg.timeout_seconds,
        )
    except requests.RequestException as e:
        logger.error("Failed to get user info from %s: %s", cfg.userinfo_url, type(e).__name__)
        raise InternalError("identity provider unreachable") from e

    status = response.status_code
    if status == 401:
        raise Unauthenticated("identity provider rejected token")
    if status == 403:
        raise Forbidden("identity provider denied token")
    if not 200 <= status < 300:
        # Introspection payloads can carry token material; never log them unredacted.
        body = redact_text((response.text or "")[:_LOG_BODY_LIMIT])
        logger.error("Unexpected user info response: status=%d body=%s", status, body)
        raise InternalError(f"identity provider returned {status}")

    try:
        payload = response.json()
    except ValueError as e:
        logger.error("Failed to parse user info: body is not JSON")
        raise InternalError("user info is not JSON") from e

    try:
        caps = decode_capabilities(payload, cfg.capability_schema)
    except ValidationError as e:
        logger.error(
            "Failed to parse user info (schema=%s): %d validation error(s)", cfg.capability_schema, e.error_count()
        )
        raise InternalError("user info does not match capability schema") from e

    logger.debug("Resolved capabilities: apps=%d images=%d", len(caps.allowed_apps), len(caps.allowed_images))
    return caps
