"""Kubernetes API access for a k3d cluster.

Typed calls go through CoreV1Api/AppsV1Api. Custom resources go through
CustomObjectsApi, addressed by a GroupVersionResource whose plural is derived
naively from the kind (``kind.lower() + "s"``). That is right for every kind
labctl applies (Application, ApplicationSet, AppProject) but wrong for
irregular plurals such as NetworkPolicy; a discovery-backed mapping would be
needed before applying arbitrary manifests.
"""

import base64
import binascii
from typing import Any, NamedTuple

from kubernetes import client, config
from kubernetes.client.rest import ApiException
from kubernetes.config.config_exception import ConfigException
from urllib3.exceptions import HTTPError

from lab_manager.exceptions import KubernetesError, ResourceExistsError
from lab_manager.logging_config import get_logger

logger = get_logger(__name__)


class GroupVersionResource(NamedTuple):
    group: str
    version: str
    resource: str


def kube_context(cluster_name: str) -> str:
    """Return the kubeconfig context k3d writes for a cluster."""
    return f"k3d-{cluster_name}"


def parse_api_version(api_version: str) -> tuple[str, str]:
    """Split an apiVersion into (group, version). Core resources have no group."""
    if not api_version:
        raise ValueError("apiVersion cannot be empty")
    if "/" not in api_version:
        return "", api_version
    group, version = api_version.split("/", 1)
    if not group or not version or "/" in version:
        raise ValueError(f"invalid apiVersion '{api_version}'")
    return group, version


def gvr_for(api_version: str, kind: str) -> GroupVersionResource:
    """Derive the resource address for a kind using naive pluralization."""
    group, version = parse_api_version(api_version)
    return GroupVersionResource(group, version, kind.lower() + "s")


def node_ready(node) -> bool:
    """Return True if the node has condition Ready=True."""
    for condition in (node.status.conditions if node.status else None) or []:
        if condition.type == "Ready":
            return condition.status == "True"
    return False


def deployment_available(deployment) -> bool:
    """Return True if the Deployment has condition Available=True."""
    for condition in (deployment.status.conditions if deployment.status else None) or []:
        if condition.type == "Available" and condition.status == "True":
            return True
    return False


def _api_error(action: str, e: Exception) -> KubernetesError:
    if isinstance(e, ApiException):
        if e.status == 409:
            return ResourceExistsError(f"{action}: already exists")
        return KubernetesError(f"{action}: {e.status} {e.reason}", e.body or None)
    return KubernetesError(f"{action}: {e}")


class KubeClient:
    """Typed and untyped access to one cluster's API server."""

    def __init__(self, api_client: client.ApiClient):
        self.api_client = api_client
        self.core = client.CoreV1Api(api_client)
        self.apps = client.AppsV1Api(api_client)
        self.custom = client.CustomObjectsApi(api_client)

    @classmethod
    def for_cluster(cls, cluster_name: str, kubeconfig: str | None = None) -> "KubeClient":
        """Build a client for the ``k3d-<name>`` kubeconfig context.

        Raises:
            KubernetesError: If the kubeconfig or context cannot be loaded
        """
        context = kube_context(cluster_name)
        try:
            api_client = config.new_client_from_config(config_file=kubeconfig, context=context)
        except (ConfigException, OSError, TypeError) as e:
            raise KubernetesError(
                f"Failed to load kubeconfig context {context}: {e}",
                "Make sure the cluster is running: labctl cluster start",
            )
        return cls(api_client)

    # Typed resources

    def list_nodes(self) -> list:
        try:
            return self.core.list_node().items
        except (ApiException, HTTPError) as e:
            raise _api_error("listing nodes", e)

    def get_deployment(self, namespace: str, name: str):
        try:
            return self.apps.read_namespaced_deployment(name, namespace)
        except (ApiException, HTTPError) as e:
            raise _api_error(f"getting deployment {namespace}/{name}", e)

    def get_daemonset(self, namespace: str, name: str):
        try:
            return self.apps.read_namespaced_daemon_set(name, namespace)
        except (ApiException, HTTPError) as e:
            raise _api_error(f"getting daemonset {namespace}/{name}", e)

    def get_secret_value(self, namespace: str, name: str, key: str) -> str:
        """Return one decoded value of a Secret.

        Raises:
            KubernetesError: If the Secret or the key is missing, or the value
                is not valid base64-encoded UTF-8
        """
        try:
            secret = self.core.read_namespaced_secret(name, namespace)
        except (ApiException, HTTPError) as e:
            raise _api_error(f"getting secret {namespace}/{name}", e)

        data = secret.data or {}
        if key not in data:
            raise KubernetesError(f"Key '{key}' not found in secret {namespace}/{name}")
        # The Python client returns data base64 encoded, unlike client-go
        try:
            return base64.b64decode(data[key], validate=True).decode("utf-8")
        except (binascii.Error, UnicodeDecodeError) as e:
            raise KubernetesError(
                f"Key '{key}' in secret {namespace}/{name} is not decodable", str(e)
            )

    # Custom resources

    def get_custom_object(self, gvr: GroupVersionResource, namespace: str, name: str) -> dict:
        try:
            return self.custom.get_namespaced_custom_object(
                gvr.group, gvr.version, namespace, gvr.resource, name
            )
        except (ApiException, HTTPError) as e:
            raise _api_error(f"getting {gvr.resource} {namespace}/{name}", e)

    def list_custom_objects(self, gvr: GroupVersionResource, namespace: str) -> list[dict]:
        try:
            response = self.custom.list_namespaced_custom_object(
                gvr.group, gvr.version, namespace, gvr.resource
            )
        except (ApiException, HTTPError) as e:
            raise _api_error(f"listing {gvr.resource} in {namespace}", e)
        return response.get("items", [])

    def create_custom_object(self, body: dict[str, Any], namespace: str) -> dict:
        """Create a custom resource, deriving its address from apiVersion and kind.

        Raises:
            ResourceExistsError: If an object with the same name exists
            KubernetesError: For any other API failure
        """
        try:
            gvr = gvr_for(body.get("apiVersion", ""), body.get("kind", ""))
        except ValueError as e:
            raise KubernetesError(f"Cannot address manifest: {e}")

        name = (body.get("metadata") or {}).get("name", "")
        logger.debug(f"Creating {gvr.resource} {namespace}/{name}")
        try:
            return self.custom.create_namespaced_custom_object(
                gvr.group, gvr.version, namespace, gvr.resource, body
            )
        except (ApiException, HTTPError) as e:
            raise _api_error(f"creating {gvr.resource} {namespace}/{name}", e)

    def proxy_post(
        self, namespace: str, service: str, path: str, body: Any, headers: dict[str, str]
    ) -> None:
        """POST through the API server's service proxy to an in-cluster service.

        Args:
            namespace: Service namespace
            service: Service name, optionally ``name:port``
            path: Path on the service, without leading slash
            body: JSON-serializable body
            headers: Extra request headers
        """
        resource_path = f"/api/v1/namespaces/{namespace}/services/{service}/proxy/{path}"
        try:
            self.api_client.call_api(
                resource_path,
                "POST",
                header_params=headers,
                body=body,
                auth_settings=["BearerToken"],
                _preload_content=False,
            )
        except (ApiException, HTTPError) as e:
            raise _api_error(f"posting to service {namespace}/{service}", e)
