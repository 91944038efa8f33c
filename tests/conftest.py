"""
Pytest config.

Local imports like `import deploygate` rely on the repo root being on sys.path when the
project is not installed. We pin the behavior here so tests can always import the local
package.

Shared fakes:
- `fake_idp`: stands in for the identity provider's userinfo endpoint (requests session)
- `fake_cluster`: stands in for the AppsV1Api client, applying image patches in memory
"""

from __future__ import annotations

import copy
import json
import sys
from pathlib import Path
from typing import Any, Dict, Iterator, List, Optional

import pytest


def _ensure_repo_root_on_syspath() -> None:
    repo_root = Path(__file__).resolve().parents[1]
    repo_root_str = str(repo_root)
    if repo_root_str not in sys.path:
        sys.path.insert(0, repo_root_str)


_ensure_repo_root_on_syspath()


@pytest.fixture(autouse=True)
def _gateway_env(monkeypatch: pytest.MonkeyPatch) -> Iterator[None]:
    """
    Point the gateway at a fake identity provider and a fixed namespace.

    The auth config loader is lru_cached; clear it around every test so env changes
    made by individual tests take effect.
    """
    from deploygate.auth.config import load_auth_config

    monkeypatch.setenv("USERINFO_URL", "https://idp.example.com/userinfo")
    monkeypatch.setenv("GATEWAY_NAMESPACE", "apps")
    for name in ("CAPABILITY_SCHEMA", "OIDC_ISSUER_URL", "OIDC_REALM", "OIDC_USERINFO_PATH", "USERINFO_TIMEOUT_SECONDS"):
        monkeypatch.delenv(name, raising=False)
    # The namespace is resolved once per process; start every test unresolved.
    monkeypatch.setattr("deploygate.providers.k8s_provider._namespace", None)
    load_auth_config.cache_clear()
    yield
    load_auth_config.cache_clear()


def make_response(status_code: int, payload: Any = None, *, text: Optional[str] = None):
    import requests

    r = requests.Response()
    r.status_code = status_code
    r.encoding = "utf-8"
    if text is not None:
        r._content = text.encode("utf-8")
    elif payload is not None:
        r._content = json.dumps(payload).encode("utf-8")
    else:
        r._content = b""
    return r


class FakeSession:
    def __init__(self) -> None:
        self.calls: List[Dict[str, Any]] = []
        self.response = make_response(200, {"allowed_apps": [], "allowed_images": []})
        self.error: Optional[Exception] = None

    def respond(self, status_code: int, payload: Any = None, *, text: Optional[str] = None) -> None:
        self.error = None
        self.response = make_response(status_code, payload, text=text)

    def get(self, url, headers=None, timeout=None):  # type: ignore[no-untyped-def]
        self.calls.append({"url": url, "headers": dict(headers or {}), "timeout": timeout})
        if self.error is not None:
            raise self.error
        return self.response


@pytest.fixture
def fake_idp(monkeypatch: pytest.MonkeyPatch) -> FakeSession:
    session = FakeSession()
    monkeypatch.setattr("deploygate.auth.userinfo._get_session", lambda: session)
    return session


def make_deployment(
    name: str,
    *,
    image: str = "nginx:1.24",
    container: Optional[str] = None,
    pull_policy: str = "Always",
):
    from kubernetes import client

    return client.V1Deployment(
        api_version="apps/v1",
        kind="Deployment",
        metadata=client.V1ObjectMeta(
            name=name,
            namespace="apps",
            managed_fields=[
                client.V1ManagedFieldsEntry(manager="kubectl-client-side-apply", operation="Update"),
            ],
        ),
        spec=client.V1DeploymentSpec(
            selector=client.V1LabelSelector(match_labels={"app": name}),
            template=client.V1PodTemplateSpec(
                metadata=client.V1ObjectMeta(labels={"app": name}),
                spec=client.V1PodSpec(
                    containers=[client.V1Container(name=container or name, image=image, image_pull_policy=pull_policy)]
                ),
            ),
        ),
    )


def _api_error(status: int, reason: str, message: str):
    from kubernetes.client.rest import ApiException

    e = ApiException(status=status, reason=reason)
    e.body = json.dumps({"kind": "Status", "apiVersion": "v1", "status": "Failure", "message": message, "code": status})
    return e


class FakeAppsV1:
    """
    In-memory AppsV1Api: read + strategic-merge of container image fields.

    State is kept as plain dicts and every call returns a freshly built V1Deployment,
    like a real API response would. Containers merge by name the way the API server
    does it: a patch entry naming an unknown container is appended as a new one.
    """

    def __init__(self) -> None:
        self.deployments: Dict[str, Dict[str, Dict[str, str]]] = {}
        self.patch_calls: List[Dict[str, Any]] = []
        self.read_calls: List[Dict[str, Any]] = []
        # Counts how often a patch actually changed a stored field.
        self.field_changes = 0

    def add(self, name: str, *, image: str = "nginx:1.24", container: Optional[str] = None) -> None:
        self.deployments[name] = {container or name: {"image": image, "imagePullPolicy": "Always"}}

    def _build(self, name: str):  # type: ignore[no-untyped-def]
        from kubernetes import client

        containers = self.deployments.get(name)
        if containers is None:
            raise _api_error(404, "Not Found", f'deployments.apps "{name}" not found')
        deployment = make_deployment(name)
        deployment.spec.template.spec.containers = [
            client.V1Container(name=cname, image=fields["image"], image_pull_policy=fields["imagePullPolicy"])
            for cname, fields in containers.items()
        ]
        return deployment

    def read_namespaced_deployment(self, name, namespace, **kwargs):  # type: ignore[no-untyped-def]
        self.read_calls.append({"name": name, "namespace": namespace})
        return self._build(name)

    def patch_namespaced_deployment(self, name, namespace, body, **kwargs):  # type: ignore[no-untyped-def]
        self.patch_calls.append({"name": name, "namespace": namespace, "body": copy.deepcopy(body), **kwargs})
        self._build(name)
        containers = self.deployments[name]
        for patch_container in body["spec"]["template"]["spec"]["containers"]:
            cname = patch_container["name"]
            if cname not in containers:
                containers[cname] = {key: patch_container[key] for key in ("image", "imagePullPolicy")}
                self.field_changes += 1
                continue
            current = containers[cname]
            for key in ("image", "imagePullPolicy"):
                if current[key] != patch_container[key]:
                    current[key] = patch_container[key]
                    self.field_changes += 1
        return self._build(name)


@pytest.fixture
def fake_cluster(monkeypatch: pytest.MonkeyPatch) -> FakeAppsV1:
    apps = FakeAppsV1()
    monkeypatch.setattr("deploygate.providers.k8s_provider._get_apps_v1", lambda: apps)
    return apps
