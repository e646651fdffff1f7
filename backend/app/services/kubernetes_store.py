import asyncio
import logging
from functools import partial
from typing import Any, Callable, Dict, List, Optional

from kubernetes import client
from kubernetes.client.rest import ApiException
from urllib3.exceptions import HTTPError

from app.core.config import settings
from app.core.errors import ConflictError, FetchFailure, NotFoundError, RegistryManagerError
from app.services.cluster_store import REGISTRY_PLURAL, SERVER_PLURAL, ClusterStore, ConfigMapInfo, ProxyResponse

logger = logging.getLogger(__name__)


class KubernetesClusterStore(ClusterStore):
    """
    ClusterStore backed by the Kubernetes API.

    The official client is synchronous, so every call runs in a worker thread
    and is bounded twice: by the client's own _request_timeout and by
    asyncio.wait_for around the thread.

    Service proxy requests go straight to the API server's
    /services/{name}:{port}/proxy subresource with the configured
    credentials instead of shelling out to kubectl.
    """

    def __init__(self, api_client: client.ApiClient, timeout: Optional[float] = None):
        self.api_client = api_client
        self.custom_api = client.CustomObjectsApi(api_client)
        self.core_api = client.CoreV1Api(api_client)
        self.group = settings.CRD_GROUP
        self.version = settings.CRD_VERSION
        self.timeout = timeout or settings.KUBE_REQUEST_TIMEOUT_SECONDS

    async def _call(self, func: Callable[..., Any], *args, **kwargs) -> Any:
        kwargs["_request_timeout"] = self.timeout
        try:
            return await asyncio.wait_for(
                asyncio.to_thread(partial(func, *args, **kwargs)),
                timeout=self.timeout + 1.0,
            )
        except asyncio.TimeoutError:
            raise RegistryManagerError(f"Kubernetes API call timed out after {self.timeout}s")
        except HTTPError as e:
            raise RegistryManagerError(f"Kubernetes API unreachable: {e}")

    @staticmethod
    def _translate(e: ApiException, what: str) -> RegistryManagerError:
        if e.status == 404:
            return NotFoundError(f"{what} not found")
        if e.status == 409:
            return ConflictError(f"{what} already exists or was modified concurrently")
        logger.error(f"Kubernetes API error for {what}: {e.status} {e.reason}")
        return RegistryManagerError(f"Kubernetes API error for {what}: {e.status} {e.reason}")

    async def _list(self, plural: str, namespace: str) -> List[Dict[str, Any]]:
        try:
            response = await self._call(
                self.custom_api.list_namespaced_custom_object,
                self.group, self.version, namespace, plural,
            )
        except ApiException as e:
            raise self._translate(e, f"{plural} in namespace '{namespace}'")
        return response.get("items", [])

    async def _get(self, plural: str, namespace: str, name: str) -> Optional[Dict[str, Any]]:
        try:
            return await self._call(
                self.custom_api.get_namespaced_custom_object,
                self.group, self.version, namespace, plural, name,
            )
        except ApiException as e:
            if e.status == 404:
                return None
            raise self._translate(e, f"{plural}/{name}")

    async def _patch(self, plural: str, namespace: str, name: str, patch: Dict[str, Any]) -> Dict[str, Any]:
        # A dict body is sent as application/merge-patch+json by the client
        try:
            return await self._call(
                self.custom_api.patch_namespaced_custom_object,
                self.group, self.version, namespace, plural, name, patch,
            )
        except ApiException as e:
            raise self._translate(e, f"{plural}/{name}")

    async def list_registries(self, namespace: str) -> List[Dict[str, Any]]:
        return await self._list(REGISTRY_PLURAL, namespace)

    async def list_registry_namespaces(self) -> List[str]:
        try:
            response = await self._call(
                self.custom_api.list_cluster_custom_object, self.group, self.version, REGISTRY_PLURAL,
            )
        except ApiException as e:
            raise self._translate(e, f"{REGISTRY_PLURAL} across namespaces")
        namespaces = {item.get("metadata", {}).get("namespace") for item in response.get("items", [])}
        return sorted(ns for ns in namespaces if ns)

    async def get_registry(self, namespace: str, name: str) -> Optional[Dict[str, Any]]:
        return await self._get(REGISTRY_PLURAL, namespace, name)

    async def create_registry(self, namespace: str, body: Dict[str, Any]) -> Dict[str, Any]:
        try:
            return await self._call(
                self.custom_api.create_namespaced_custom_object,
                self.group, self.version, namespace, REGISTRY_PLURAL, body,
            )
        except ApiException as e:
            raise self._translate(e, f"Registry '{body['metadata']['name']}'")

    async def patch_registry(self, namespace: str, name: str, patch: Dict[str, Any]) -> Dict[str, Any]:
        return await self._patch(REGISTRY_PLURAL, namespace, name, patch)

    async def patch_registry_status(self, namespace: str, name: str, status: Dict[str, Any]) -> Dict[str, Any]:
        try:
            return await self._call(
                self.custom_api.patch_namespaced_custom_object_status,
                self.group, self.version, namespace, REGISTRY_PLURAL, name, {"status": status},
            )
        except ApiException as e:
            raise self._translate(e, f"{REGISTRY_PLURAL}/{name} status")

    async def delete_registry(self, namespace: str, name: str) -> None:
        try:
            await self._call(
                self.custom_api.delete_namespaced_custom_object,
                self.group, self.version, namespace, REGISTRY_PLURAL, name,
            )
        except ApiException as e:
            raise self._translate(e, f"Registry '{name}'")

    async def list_servers(self, namespace: str) -> List[Dict[str, Any]]:
        return await self._list(SERVER_PLURAL, namespace)

    async def get_server(self, namespace: str, name: str) -> Optional[Dict[str, Any]]:
        return await self._get(SERVER_PLURAL, namespace, name)

    async def patch_server(self, namespace: str, name: str, patch: Dict[str, Any]) -> Dict[str, Any]:
        return await self._patch(SERVER_PLURAL, namespace, name, patch)

    async def list_config_maps(self, namespace: str) -> List[ConfigMapInfo]:
        try:
            response = await self._call(self.core_api.list_namespaced_config_map, namespace)
        except ApiException as e:
            raise self._translate(e, f"ConfigMaps in namespace '{namespace}'")
        config_maps = [
            ConfigMapInfo(
                name=item.metadata.name,
                namespace=item.metadata.namespace or namespace,
                keys=sorted((item.data or {}).keys()),
                created_at=item.metadata.creation_timestamp,
            )
            for item in response.items
        ]
        return sorted(config_maps, key=lambda c: c.name)

    async def get_config_map_keys(self, namespace: str, name: str) -> Optional[List[str]]:
        try:
            config_map = await self._call(self.core_api.read_namespaced_config_map, name, namespace)
        except ApiException as e:
            if e.status == 404:
                return None
            raise self._translate(e, f"ConfigMap '{name}'")
        return sorted((config_map.data or {}).keys())

    async def proxy_get(self, namespace: str, service: str, port: str, path: str) -> ProxyResponse:
        resource_path = f"/api/v1/namespaces/{{namespace}}/services/{{name}}/proxy{path}"
        logger.info(f"Proxying GET to service {service}:{port} in namespace {namespace}: {path}")
        try:
            response = await self._call(
                self.api_client.call_api,
                resource_path,
                "GET",
                path_params={"namespace": namespace, "name": f"{service}:{port}"},
                header_params={"Accept": "application/json"},
                auth_settings=["BearerToken"],
                _return_http_data_only=True,
                _preload_content=False,
            )
        except ApiException as e:
            body = e.body if isinstance(e.body, bytes) else (e.body or "").encode()
            return ProxyResponse(e.status or 502, body)
        except RegistryManagerError as e:
            raise FetchFailure(f"Service proxy request to {service}.{namespace} failed: {e.message}")
        return ProxyResponse(response.status, response.data)
