"""
Gateway error taxonomy.

Every stage of the request pipeline (token resolution, authorization, cluster call)
raises exactly one of these; the API layer turns them into a status code and a small
JSON body. Upstream response text is never placed in a body, with the single exception
of structured Kubernetes API errors, whose message is relayed as-is.
"""

from __future__ import annotations

from typing import Any, Dict, Sequence


class GatewayError(Exception):
    status_code: int = 500

    def to_response(self) -> Dict[str, Any]:
        return {"detail": "Internal Server Error"}


class Unauthenticated(GatewayError):
    """Missing bearer token, or the identity provider rejected it (401)."""

    status_code = 401

    def to_response(self) -> Dict[str, Any]:
        return {"detail": "Unauthorized"}


class Forbidden(GatewayError):
    """The identity provider denied the token (403)."""

    status_code = 403

    def to_response(self) -> Dict[str, Any]:
        return {"detail": "Forbidden"}


class AppNotAllowed(Forbidden):
    # Same body as Forbidden: do not reveal which apps the caller could touch.
    pass


class ImageNotAllowed(GatewayError):
    """
    Image repository is not in the caller's capability set (or is malformed).

    The body echoes the caller's own `allowed_images` so they can self-correct.
    """

    status_code = 400

    def __init__(self, allowed_images: Sequence[str]) -> None:
        super().__init__("image not allowed")
        self.allowed_images = list(allowed_images)

    def to_response(self) -> Dict[str, Any]:
        return {
            "status": self.status_code,
            "error": "only allowed images can be deployed",
            "allowed_images": list(self.allowed_images),
        }


class ClusterApiError(GatewayError):
    """Structured Kubernetes API error, relayed with its own status and message."""

    def __init__(self, status_code: int, message: str) -> None:
        super().__init__(message)
        self.status_code = status_code
        self.message = message

    @property
    def is_not_found(self) -> bool:
        return self.status_code == 404

    def to_response(self) -> Dict[str, Any]:
        return {"detail": self.message}


class ContainerNotFound(GatewayError):
    """The Deployment exists but has no container with the requested name (404)."""

    status_code = 404

    def __init__(self, deployment: str, container: str) -> None:
        super().__init__(f'container "{container}" not found in deployment "{deployment}"')
        self.deployment = deployment
        self.container = container

    def to_response(self) -> Dict[str, Any]:
        return {"detail": str(self)}


class InternalError(GatewayError):
    """Anything unclassified: misconfiguration, transport failure, unexpected payloads."""

    status_code = 500
