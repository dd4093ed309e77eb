# Copyright 2025 The Kubeflow Authors.
#
# Licensed under the Apache License, Version 2.0 (the "License");
# you may not use this file except in compliance with the License.
# You may obtain a copy of the License at
#
#     http://www.apache.org/licenses/LICENSE-2.0
#
# Unless required by applicable law or agreed to in writing, software
# distributed under the License is distributed on an "AS IS" BASIS,
# WITHOUT WARRANTIES OR CONDITIONS OF ANY KIND, either express or implied.
# See the License for the specific language governing permissions and
# limitations under the License.

import logging
import multiprocessing
from typing import Optional

from kubernetes import client, config

import codeflare.common.constants as common_constants
import codeflare.common.utils as common_utils
from codeflare.common.types import KubernetesBackendConfig
from codeflare.e2e.constants import constants
from codeflare.e2e.types import types

logger = logging.getLogger(__name__)


def _ref(namespace: Optional[str], name: str) -> str:
    return f"{namespace}/{name}" if namespace else name


class KubernetesBackend:
    def __init__(self, cfg: KubernetesBackendConfig):
        # If client configuration is not set, use kube-config to access Kubernetes APIs.
        if cfg.client_configuration is None:
            # Load kube-config or in-cluster config.
            if cfg.config_file or not common_utils.is_running_in_k8s():
                config.load_kube_config(config_file=cfg.config_file, context=cfg.context)
            else:
                config.load_incluster_config()

        self.api_client = client.ApiClient(cfg.client_configuration)
        self.custom_api = client.CustomObjectsApi(self.api_client)
        self.core_api = client.CoreV1Api(self.api_client)
        self.batch_api = client.BatchV1Api(self.api_client)
        self.networking_api = client.NetworkingV1Api(self.api_client)
        self.apis_api = client.ApisApi(self.api_client)

    @property
    def bearer_token(self) -> Optional[str]:
        """The bearer token the Kubernetes client authenticates with, if any."""
        configuration = self.api_client.configuration
        token = (configuration.api_key or {}).get("authorization") if configuration else None
        if not token:
            return None
        return token.removeprefix("Bearer ").strip()

    def is_openshift(self) -> bool:
        """Check whether the cluster serves the OpenShift Route API."""
        try:
            api_groups = self.apis_api.get_api_versions(async_req=True).get(
                common_constants.DEFAULT_TIMEOUT
            )
        except multiprocessing.TimeoutError as e:
            raise TimeoutError("Timeout to list API groups") from e
        except Exception as e:
            raise RuntimeError("Failed to list API groups") from e

        return any(group.name == constants.ROUTE_GROUP for group in api_groups.groups or [])

    # Namespaces.

    def create_namespace(self, name: Optional[str] = None) -> client.V1Namespace:
        """Create a test Namespace. A name is generated if it is not set."""
        namespace = client.V1Namespace(
            metadata=client.V1ObjectMeta(
                name=name,
                generate_name=None if name else constants.TEST_NAMESPACE_PREFIX,
                labels={constants.TEST_NAMESPACE_LABEL: "true"},
            )
        )
        try:
            namespace = self.core_api.create_namespace(namespace, async_req=True).get(
                common_constants.DEFAULT_TIMEOUT
            )
        except multiprocessing.TimeoutError as e:
            raise TimeoutError(f"Timeout to create Namespace: {name or ''}") from e
        except Exception as e:
            raise RuntimeError(f"Failed to create Namespace: {name or ''}") from e

        logger.debug(f"Namespace {namespace.metadata.name} has been created")
        return namespace

    def get_namespace(self, name: str) -> client.V1Namespace:
        try:
            return self.core_api.read_namespace(name, async_req=True).get(
                common_constants.DEFAULT_TIMEOUT
            )
        except multiprocessing.TimeoutError as e:
            raise TimeoutError(f"Timeout to get Namespace: {name}") from e
        except Exception as e:
            raise RuntimeError(f"Failed to get Namespace: {name}") from e

    def delete_namespace(self, name: str):
        try:
            self.core_api.delete_namespace(
                name, propagation_policy="Background", async_req=True
            ).get(common_constants.DEFAULT_TIMEOUT)
        except multiprocessing.TimeoutError as e:
            raise TimeoutError(f"Timeout to delete Namespace: {name}") from e
        except Exception as e:
            raise RuntimeError(f"Failed to delete Namespace: {name}") from e

        logger.debug(f"Namespace {name} has been deleted")

    # ConfigMaps.

    def create_config_map(
        self, namespace: str, config_map: client.V1ConfigMap
    ) -> client.V1ConfigMap:
        name = config_map.metadata.name
        try:
            config_map = self.core_api.create_namespaced_config_map(
                namespace, config_map, async_req=True
            ).get(common_constants.DEFAULT_TIMEOUT)
        except multiprocessing.TimeoutError as e:
            raise TimeoutError(f"Timeout to create ConfigMap: {namespace}/{name}") from e
        except Exception as e:
            raise RuntimeError(f"Failed to create ConfigMap: {namespace}/{name}") from e

        logger.debug(f"ConfigMap {namespace}/{name} has been created")
        return config_map

    def get_config_map(self, namespace: str, name: str) -> client.V1ConfigMap:
        try:
            return self.core_api.read_namespaced_config_map(name, namespace, async_req=True).get(
                common_constants.DEFAULT_TIMEOUT
            )
        except multiprocessing.TimeoutError as e:
            raise TimeoutError(f"Timeout to get ConfigMap: {namespace}/{name}") from e
        except Exception as e:
            raise RuntimeError(f"Failed to get ConfigMap: {namespace}/{name}") from e

    # Kueue.

    def create_resource_flavor(self, resource_flavor: dict) -> dict:
        return self._create_custom_object(types.RESOURCE_FLAVOR, resource_flavor)

    def delete_resource_flavor(self, name: str):
        self._delete_custom_object(types.RESOURCE_FLAVOR, name)

    def create_cluster_queue(self, cluster_queue: dict) -> dict:
        return self._create_custom_object(types.CLUSTER_QUEUE, cluster_queue)

    def delete_cluster_queue(self, name: str):
        self._delete_custom_object(types.CLUSTER_QUEUE, name)

    def create_local_queue(self, namespace: str, local_queue: dict) -> dict:
        return self._create_custom_object(types.LOCAL_QUEUE, local_queue, namespace)

    def get_local_queue(self, namespace: str, name: str) -> dict:
        return self._get_custom_object(types.LOCAL_QUEUE, name, namespace)

    # KubeRay.

    def create_ray_cluster(self, namespace: str, ray_cluster: dict) -> dict:
        return self._create_custom_object(types.RAY_CLUSTER, ray_cluster, namespace)

    def get_ray_cluster(self, namespace: str, name: str) -> dict:
        return self._get_custom_object(types.RAY_CLUSTER, name, namespace)

    def list_ray_clusters(self, namespace: str) -> list[dict]:
        return self._list_custom_objects(types.RAY_CLUSTER, namespace)

    def delete_ray_cluster(self, namespace: str, name: str):
        self._delete_custom_object(types.RAY_CLUSTER, name, namespace)

    def create_ray_job(self, namespace: str, ray_job: dict) -> dict:
        return self._create_custom_object(types.RAY_JOB, ray_job, namespace)

    def get_ray_job(self, namespace: str, name: str) -> dict:
        return self._get_custom_object(types.RAY_JOB, name, namespace)

    def delete_ray_job(self, namespace: str, name: str):
        self._delete_custom_object(types.RAY_JOB, name, namespace)

    # AppWrappers.

    def create_app_wrapper(self, namespace: str, app_wrapper: dict) -> dict:
        return self._create_custom_object(types.APPWRAPPER, app_wrapper, namespace)

    def get_app_wrapper(self, namespace: str, name: str) -> dict:
        return self._get_custom_object(types.APPWRAPPER, name, namespace)

    def list_app_wrappers(self, namespace: str) -> list[dict]:
        return self._list_custom_objects(types.APPWRAPPER, namespace)

    def delete_app_wrapper(self, namespace: str, name: str):
        self._delete_custom_object(types.APPWRAPPER, name, namespace)

    # Networking.

    def get_ingress(self, namespace: str, name: str) -> client.V1Ingress:
        try:
            return self.networking_api.read_namespaced_ingress(
                name, namespace, async_req=True
            ).get(common_constants.DEFAULT_TIMEOUT)
        except multiprocessing.TimeoutError as e:
            raise TimeoutError(f"Timeout to get Ingress: {namespace}/{name}") from e
        except Exception as e:
            raise RuntimeError(f"Failed to get Ingress: {namespace}/{name}") from e

    def get_route(self, namespace: str, name: str) -> dict:
        return self._get_custom_object(types.ROUTE, name, namespace)

    # Pods, Jobs and Events.

    def list_pods(self, namespace: str, label_selector: Optional[str] = None) -> list[client.V1Pod]:
        try:
            response = self.core_api.list_namespaced_pod(
                namespace, label_selector=label_selector, async_req=True
            ).get(common_constants.DEFAULT_TIMEOUT)
        except multiprocessing.TimeoutError as e:
            raise TimeoutError(f"Timeout to list Pods in namespace: {namespace}") from e
        except Exception as e:
            raise RuntimeError(f"Failed to list Pods in namespace: {namespace}") from e

        return response.items or []

    def read_pod_logs(self, namespace: str, name: str, container: Optional[str] = None) -> str:
        try:
            return self.core_api.read_namespaced_pod_log(
                name=name, namespace=namespace, container=container, async_req=True
            ).get(common_constants.DEFAULT_TIMEOUT)
        except multiprocessing.TimeoutError as e:
            raise TimeoutError(f"Timeout to read logs for the pod {namespace}/{name}") from e
        except Exception as e:
            raise RuntimeError(f"Failed to read logs for the pod {namespace}/{name}") from e

    def get_job(self, namespace: str, name: str) -> client.V1Job:
        try:
            return self.batch_api.read_namespaced_job(name, namespace, async_req=True).get(
                common_constants.DEFAULT_TIMEOUT
            )
        except multiprocessing.TimeoutError as e:
            raise TimeoutError(f"Timeout to get Job: {namespace}/{name}") from e
        except Exception as e:
            raise RuntimeError(f"Failed to get Job: {namespace}/{name}") from e

    def list_events(self, namespace: str) -> list[client.CoreV1Event]:
        try:
            response = self.core_api.list_namespaced_event(namespace, async_req=True).get(
                common_constants.DEFAULT_TIMEOUT
            )
        except multiprocessing.TimeoutError as e:
            raise TimeoutError(f"Timeout to list Events in namespace: {namespace}") from e
        except Exception as e:
            raise RuntimeError(f"Failed to list Events in namespace: {namespace}") from e

        return response.items or []

    # Custom objects.

    def _create_custom_object(
        self,
        resource: types.ResourceType,
        body: dict,
        namespace: Optional[str] = None,
    ) -> dict:
        metadata = body.get("metadata", {})
        name = metadata.get("name") or metadata.get("generateName", "")
        try:
            if namespace:
                thread = self.custom_api.create_namespaced_custom_object(
                    resource.group,
                    resource.version,
                    namespace,
                    resource.plural,
                    body,
                    async_req=True,
                )
            else:
                thread = self.custom_api.create_cluster_custom_object(
                    resource.group,
                    resource.version,
                    resource.plural,
                    body,
                    async_req=True,
                )
            obj = thread.get(common_constants.DEFAULT_TIMEOUT)
        except multiprocessing.TimeoutError as e:
            raise TimeoutError(f"Timeout to create {resource.kind}: {_ref(namespace, name)}") from e
        except Exception as e:
            raise RuntimeError(f"Failed to create {resource.kind}: {_ref(namespace, name)}") from e

        logger.debug(
            f"{resource.kind} {_ref(namespace, obj['metadata']['name'])} has been created"
        )
        return obj

    def _get_custom_object(
        self,
        resource: types.ResourceType,
        name: str,
        namespace: Optional[str] = None,
    ) -> dict:
        try:
            if namespace:
                thread = self.custom_api.get_namespaced_custom_object(
                    resource.group,
                    resource.version,
                    namespace,
                    resource.plural,
                    name,
                    async_req=True,
                )
            else:
                thread = self.custom_api.get_cluster_custom_object(
                    resource.group,
                    resource.version,
                    resource.plural,
                    name,
                    async_req=True,
                )
            return thread.get(common_constants.DEFAULT_TIMEOUT)
        except multiprocessing.TimeoutError as e:
            raise TimeoutError(f"Timeout to get {resource.kind}: {_ref(namespace, name)}") from e
        except Exception as e:
            raise RuntimeError(f"Failed to get {resource.kind}: {_ref(namespace, name)}") from e

    def _list_custom_objects(self, resource: types.ResourceType, namespace: str) -> list[dict]:
        try:
            thread = self.custom_api.list_namespaced_custom_object(
                resource.group,
                resource.version,
                namespace,
                resource.plural,
                async_req=True,
            )
            response = thread.get(common_constants.DEFAULT_TIMEOUT)
        except multiprocessing.TimeoutError as e:
            raise TimeoutError(f"Timeout to list {resource.kind}s in namespace: {namespace}") from e
        except Exception as e:
            raise RuntimeError(f"Failed to list {resource.kind}s in namespace: {namespace}") from e

        return response.get("items", [])

    def _delete_custom_object(
        self,
        resource: types.ResourceType,
        name: str,
        namespace: Optional[str] = None,
    ):
        try:
            if namespace:
                thread = self.custom_api.delete_namespaced_custom_object(
                    resource.group,
                    resource.version,
                    namespace,
                    resource.plural,
                    name=name,
                    async_req=True,
                )
            else:
                thread = self.custom_api.delete_cluster_custom_object(
                    resource.group,
                    resource.version,
                    resource.plural,
                    name=name,
                    async_req=True,
                )
            thread.get(common_constants.DEFAULT_TIMEOUT)
        except multiprocessing.TimeoutError as e:
            raise TimeoutError(f"Timeout to delete {resource.kind}: {_ref(namespace, name)}") from e
        except Exception as e:
            raise RuntimeError(f"Failed to delete {resource.kind}: {_ref(namespace, name)}") from e

        logger.debug(f"{resource.kind} {_ref(namespace, name)} has been deleted")
