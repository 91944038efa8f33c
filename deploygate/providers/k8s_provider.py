"""Kubernetes API client for reading Deployments and patching a single container image."""

from __future__ import annotations

import json
import logging
import os
import threading
from typing import Any, Dict, List, Optional, Protocol, runtime_checkable

from deploygate.errors import ClusterApiError, ContainerNotFound, GatewayError, InternalError

logger = logging.getLogger(__name__)

# Fixed field-manager identity: every patch we send owns exactly the fields it writes.
FIELD_MANAGER = "deploygate"
PULL_POLICY = "IfNotPresent"

_SA_NAMESPACE_FILE = "/var/run/secrets/kubernetes.io/serviceaccount/namespace"

_api_client = None
_apps_v1_api = None
_config_loaded = False
_namespace: Optional[str] = None
_init_lock = threading.Lock()


@runtime_checkable
class K8sProvider(Protocol):
    def get_deployment(self, name: str, namespace: Optional[str] = None) -> Dict[str, Any]: ...

    def patch_deployment_image(
        self,
        name: str,
        image: str,
        container_name: str,
        namespace: Optional[str] = None,
    ) -> Dict[str, Any]: ...


class DefaultK8sProvider:
    def get_deployment(self, name: str, namespace: Optional[str] = None) -> Dict[str, Any]:
        return get_deployment(name, namespace=namespace)

    def patch_deployment_image(
        self,
        name: str,
        image: str,
        container_name: str,
        namespace: Optional[str] = None,
    ) -> Dict[str, Any]:
        return patch_deployment_image(name, image, container_name, namespace=namespace)


def get_k8s_provider() -> K8sProvider:
    """Seam for swapping provider implementations (tests use an in-memory fake)."""
    return DefaultK8sProvider()


def _load_config() -> None:
    global _config_loaded
    if _config_loaded:
        return
    from kubernetes import config

    # In-cluster first, then local kubeconfig.
    try:
        config.load_incluster_config()
    except config.ConfigException:
        config.load_kube_config()
    _config_loaded = True


def _get_apps_v1():
    """
    Return a cached AppsV1Api client (thread-safe lazy init).

    Config loading and the underlying urllib3 pool are shared by all requests.
    """
    global _api_client, _apps_v1_api
    if _apps_v1_api is not None:
        return _apps_v1_api

    with _init_lock:
        if _apps_v1_api is not None:
            return _apps_v1_api
        from kubernetes import client

        _load_config()
        _api_client = client.ApiClient()
        _apps_v1_api = client.AppsV1Api(_api_client)
        return _apps_v1_api


def _serializer():
    if _api_client is not None:
        return _api_client
    from kubernetes import client

    return client.ApiClient()


def default_namespace() -> str:
    """
    Namespace used when a call passes none; resolved once per process.

    Order: GATEWAY_NAMESPACE, the pod's service-account namespace, the active
    kubeconfig context's namespace, then "default".
    """
    global _namespace
    if _namespace is not None:
        return _namespace

    with _init_lock:
        if _namespace is None:
            _namespace = _resolve_namespace()
            logger.info("Using namespace %s", _namespace)
        return _namespace


def _resolve_namespace() -> str:
    env_ns = (os.getenv("GATEWAY_NAMESPACE") or "").strip()
    if env_ns:
        return env_ns

    try:
        with open(_SA_NAMESPACE_FILE, "r", encoding="utf-8") as f:
            ns = f.read().strip()
        if ns:
            return ns
    except OSError:
        pass

    try:
        from kubernetes import config

        _contexts, active = config.list_kube_config_contexts()
        ns = ((active or {}).get("context") or {}).get("namespace")
        if ns:
            return str(ns)
    except Exception:
        # No kubeconfig available (e.g. in-cluster without SA mount).
        pass

    return "default"


def build_image_patch(container_name: str, image: str) -> Dict[str, Any]:
    """
    Minimal strategic-merge patch for one container's image.

    Containers merge by `name`, so only the named container is touched. Pull policy is
    IfNotPresent: unchanged tags are not re-pulled, so callers that reuse tags must
    switch to unique tags or digests.
    """
    return {
        "apiVersion": "apps/v1",
        "kind": "Deployment",
        "spec": {
            "template": {
                "spec": {
                    "containers": [
                        {
                            "name": container_name,
                            "image": image,
                            "imagePullPolicy": PULL_POLICY,
                        }
                    ]
                }
            }
        },
    }


def deployment_to_dict(deployment: Any) -> Dict[str, Any]:
    """
    Serialize a Deployment to its API (camelCase) JSON shape without managedFields.

    managedFields lists every field manager that touched the object, which can reveal
    unrelated actors' activity; it must never reach a caller.
    """
    metadata = getattr(deployment, "metadata", None)
    if metadata is not None:
        metadata.managed_fields = None
    data = _serializer().sanitize_for_serialization(deployment)
    if isinstance(data, dict):
        md = data.get("metadata")
        if isinstance(md, dict):
            md.pop("managedFields", None)
    return data


def container_names(deployment: Any) -> List[str]:
    spec = getattr(deployment, "spec", None)
    template = getattr(spec, "template", None)
    pod_spec = getattr(template, "spec", None)
    return [c.name for c in (getattr(pod_spec, "containers", None) or [])]


def _status_message(body: Any) -> Optional[str]:
    if isinstance(body, bytes):
        body = body.decode("utf-8", errors="replace")
    if not isinstance(body, str) or not body:
        return None
    try:
        status = json.loads(body)
    except ValueError:
        return None
    if not isinstance(status, dict):
        return None
    message = status.get("message")
    return str(message) if message else None


def _translate_api_error(e: Exception, *, action: str) -> GatewayError:
    """
    Map a client exception to a gateway error.

    Structured API errors (HTTP error status + Status body with a message) are relayed
    verbatim; everything else collapses to InternalError.
    """
    from kubernetes.client.rest import ApiException

    if isinstance(e, ApiException):
        status = int(e.status or 0)
        message = _status_message(e.body)
        if 400 <= status <= 599 and message:
            err = ClusterApiError(status, message)
            # A missing Deployment is a caller mistake, not a gateway fault.
            log = logger.info if err.is_not_found else logger.error
            log("Failed to %s: status=%s reason=%s message=%s", action, e.status, e.reason, message)
            return err
        logger.error("Failed to %s: status=%s reason=%s message=%s", action, e.status, e.reason, message)
        return InternalError(f"unstructured Kubernetes API error during {action}")

    logger.error("Failed to %s: %s", action, str(e), exc_info=True)
    return InternalError(f"Kubernetes client error during {action}")


def get_deployment(name: str, namespace: Optional[str] = None) -> Dict[str, Any]:
    """Read a Deployment (read-only) and return it without managedFields."""
    ns = namespace or default_namespace()
    try:
        apps = _get_apps_v1()
        deployment = apps.read_namespaced_deployment(name=name, namespace=ns)
    except Exception as e:
        raise _translate_api_error(e, action="read deployment") from e
    return deployment_to_dict(deployment)


def patch_deployment_image(
    name: str,
    image: str,
    container_name: str,
    namespace: Optional[str] = None,
) -> Dict[str, Any]:
    """
    Set one container's image on a Deployment and return the updated object.

    The container must already exist: strategic merge keys `containers` by name, so a
    patch naming an unknown container would append a new one. A read checks this first;
    the patch itself is issued once, never retried. Repeating the identical patch is a
    server-side no-op, which is what makes a client-side retry safe.
    """
    ns = namespace or default_namespace()
    body = build_image_patch(container_name, image)
    try:
        apps = _get_apps_v1()
        current = apps.read_namespaced_deployment(name=name, namespace=ns)
    except Exception as e:
        raise _translate_api_error(e, action="read deployment") from e

    if container_name not in container_names(current):
        logger.info("Refusing to patch %s/%s: no container named %s", ns, name, container_name)
        raise ContainerNotFound(name, container_name)

    try:
        deployment = apps.patch_namespaced_deployment(
            name=name,
            namespace=ns,
            body=body,
            field_manager=FIELD_MANAGER,
            field_validation="Strict",
        )
    except Exception as e:
        raise _translate_api_error(e, action="patch deployment") from e
    logger.info("Patched deployment %s/%s container=%s image=%s", ns, name, container_name, image)
    return deployment_to_dict(deployment)
