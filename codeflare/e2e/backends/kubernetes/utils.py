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

import base64
import copy
from typing import Any, Optional

from kubernetes import client
import yaml

from codeflare.e2e.constants import constants
from codeflare.e2e.types import types


def get_mnist_config_map(namespace: str, script: bytes) -> client.V1ConfigMap:
    """
    Get the immutable ConfigMap that holds the MNIST training script.
    """

    if not script:
        raise ValueError("MNIST training script must not be empty")

    return client.V1ConfigMap(
        api_version="v1",
        kind="ConfigMap",
        metadata=client.V1ObjectMeta(name=constants.MNIST_NAME, namespace=namespace),
        binary_data={constants.MNIST_SCRIPT: base64.b64encode(script).decode("ascii")},
        immutable=True,
    )


def get_ray_stop_lifecycle() -> dict:
    return {"preStop": {"exec": {"command": list(constants.RAY_STOP_COMMAND)}}}


def get_resource_requirements(
    cpu_request: str, memory_request: str, cpu_limit: str, memory_limit: str
) -> dict:
    return {
        "requests": {constants.CPU_LABEL: cpu_request, constants.MEMORY_LABEL: memory_request},
        "limits": {constants.CPU_LABEL: cpu_limit, constants.MEMORY_LABEL: memory_limit},
    }


def get_ray_cluster(
    namespace: str,
    local_queue_name: str,
    config_map_name: str,
    accelerator: types.Accelerator,
    ray_image: str,
    ray_version: str = constants.DEFAULT_RAY_VERSION,
    wrapped_in_app_wrapper: bool = False,
) -> dict:
    """
    Get the RayCluster that mounts the MNIST training script in its worker group.
    The RayCluster is assigned to the LocalQueue, unless it is wrapped in an AppWrapper
    which is then assigned to the LocalQueue instead.
    """

    head_container = {
        "name": "ray-head",
        "image": ray_image,
        "ports": [
            {"containerPort": constants.RAY_GCS_PORT, "name": "gcs"},
            {"containerPort": constants.RAY_DASHBOARD_PORT, "name": "dashboard"},
            {"containerPort": constants.RAY_CLIENT_PORT, "name": "client"},
        ],
        "lifecycle": get_ray_stop_lifecycle(),
        "resources": get_resource_requirements("250m", "2G", "1", "4G"),
    }

    worker_container = {
        "name": "ray-worker",
        "image": ray_image,
        "lifecycle": get_ray_stop_lifecycle(),
        "resources": get_resource_requirements("250m", "1G", "2", "4G"),
        "volumeMounts": [{"name": constants.MNIST_NAME, "mountPath": constants.MNIST_JOBS_PATH}],
    }

    worker_pod_spec: dict[str, Any] = {
        "containers": [worker_container],
        "volumes": [
            {"name": constants.MNIST_NAME, "configMap": {"name": config_map_name}},
        ],
    }

    ray_cluster = {
        "apiVersion": types.RAY_CLUSTER.api_version,
        "kind": types.RAY_CLUSTER.kind,
        "metadata": {"name": constants.RAY_CLUSTER_NAME, "namespace": namespace},
        "spec": {
            "rayVersion": ray_version,
            "headGroupSpec": {
                "rayStartParams": {"dashboard-host": "0.0.0.0"},
                "template": {"spec": {"containers": [head_container]}},
            },
            "workerGroupSpecs": [
                {
                    "replicas": 1,
                    "minReplicas": 1,
                    "maxReplicas": 2,
                    "groupName": constants.RAY_WORKER_GROUP_NAME,
                    "rayStartParams": {},
                    "template": {"spec": worker_pod_spec},
                }
            ],
        },
    }

    # The AppWrapper carries the queue label when the RayCluster is wrapped.
    if not wrapped_in_app_wrapper:
        ray_cluster["metadata"]["labels"] = {constants.QUEUE_NAME_LABEL: local_queue_name}

    if accelerator.is_gpu:
        worker_pod_spec["tolerations"] = [
            {"key": accelerator.resource_label, "operator": "Exists"},
        ]
        worker_container["resources"]["requests"][accelerator.resource_label] = "1"
        worker_container["resources"]["limits"][accelerator.resource_label] = "1"

    return ray_cluster


def get_runtime_env_yaml(accelerator: types.Accelerator, config: types.E2EConfig) -> str:
    """
    Get the Ray runtime environment of the MNIST RayJob in the YAML format.
    """

    pip_packages = list(constants.MNIST_PIP_PACKAGES)
    if accelerator == types.AMD:
        pip_packages.extend(constants.MNIST_ROCM_PIP_PACKAGES)

    runtime_env = {
        "pip": pip_packages,
        "env_vars": {
            constants.ENV_MNIST_DATASET_URL: config.mnist_dataset_url,
            constants.ENV_PIP_INDEX_URL: config.pip_index_url,
            constants.ENV_PIP_TRUSTED_HOST: config.pip_trusted_host,
            "ACCELERATOR": accelerator.type,
        },
    }
    return yaml.safe_dump(runtime_env, sort_keys=False)


def get_ray_job(
    namespace: str,
    ray_cluster_name: str,
    accelerator: types.Accelerator,
    ray_image: str,
    config: types.E2EConfig,
) -> dict:
    """
    Get the RayJob that submits the MNIST training to an existing RayCluster.
    """

    return {
        "apiVersion": types.RAY_JOB.api_version,
        "kind": types.RAY_JOB.kind,
        "metadata": {"name": constants.MNIST_NAME, "namespace": namespace},
        "spec": {
            "entrypoint": constants.MNIST_ENTRYPOINT,
            "runtimeEnvYAML": get_runtime_env_yaml(accelerator, config),
            "clusterSelector": {constants.RAY_JOB_DEFAULT_CLUSTER_SELECTOR_KEY: ray_cluster_name},
            "shutdownAfterJobFinishes": False,
            "submitterPodTemplate": {
                "spec": {
                    "restartPolicy": "Never",
                    "containers": [{"image": ray_image, "name": "rayjob-submitter-pod"}],
                }
            },
            "entrypointNumCpus": 2,
            # entrypointNumGpus isn't reliable on KinD clusters with GPUs, CPUs are.
            "entrypointNumGpus": 1 if accelerator.is_gpu else 0,
        },
    }


def get_resource_flavor(spec: Optional[dict] = None) -> dict:
    return {
        "apiVersion": types.RESOURCE_FLAVOR.api_version,
        "kind": types.RESOURCE_FLAVOR.kind,
        "metadata": {"generateName": constants.RESOURCE_FLAVOR_PREFIX},
        "spec": spec or {},
    }


def get_cluster_queue_spec(resource_flavor_name: str, accelerator: types.Accelerator) -> dict:
    """
    Get the ClusterQueue spec that admits the MNIST workloads from any namespace.
    """

    covered_resources = [constants.CPU_LABEL, constants.MEMORY_LABEL]
    quotas = [
        {"name": constants.CPU_LABEL, "nominalQuota": "8"},
        {"name": constants.MEMORY_LABEL, "nominalQuota": "12Gi"},
    ]

    if accelerator.is_gpu:
        covered_resources.append(accelerator.resource_label)
        quotas.append({"name": accelerator.resource_label, "nominalQuota": "1"})

    return {
        "namespaceSelector": {},
        "resourceGroups": [
            {
                "coveredResources": covered_resources,
                "flavors": [{"name": resource_flavor_name, "resources": quotas}],
            }
        ],
    }


def get_cluster_queue(spec: dict) -> dict:
    return {
        "apiVersion": types.CLUSTER_QUEUE.api_version,
        "kind": types.CLUSTER_QUEUE.kind,
        "metadata": {"generateName": constants.CLUSTER_QUEUE_PREFIX},
        "spec": spec,
    }


def get_local_queue(namespace: str, cluster_queue_name: str, as_default: bool = False) -> dict:
    local_queue = {
        "apiVersion": types.LOCAL_QUEUE.api_version,
        "kind": types.LOCAL_QUEUE.kind,
        "metadata": {"generateName": constants.LOCAL_QUEUE_PREFIX, "namespace": namespace},
        "spec": {"clusterQueue": cluster_queue_name},
    }
    if as_default:
        local_queue["metadata"]["annotations"] = {constants.DEFAULT_QUEUE_ANNOTATION: "true"}
    return local_queue


def get_app_wrapper(namespace: str, ray_cluster: dict, local_queue_name: str) -> dict:
    """
    Get the AppWrapper that wraps the given RayCluster as its single component.
    """

    template = copy.deepcopy(ray_cluster)
    template.get("metadata", {}).pop("creationTimestamp", None)

    return {
        "apiVersion": types.APPWRAPPER.api_version,
        "kind": types.APPWRAPPER.kind,
        "metadata": {
            "generateName": ray_cluster["metadata"]["name"],
            "namespace": namespace,
            "labels": {constants.QUEUE_NAME_LABEL: local_queue_name},
        },
        "spec": {"components": [{"template": template}]},
    }


def ray_cluster_state(ray_cluster: dict) -> Optional[str]:
    return (ray_cluster.get("status") or {}).get("state")


def ray_job_status(ray_job: dict) -> Optional[str]:
    return (ray_job.get("status") or {}).get("jobStatus")


def ray_job_id(ray_job: dict) -> Optional[str]:
    return (ray_job.get("status") or {}).get("jobId")


def is_job_terminal(status: Optional[str]) -> bool:
    return status in constants.RAY_JOB_TERMINAL_STATUSES


def app_wrapper_phase(app_wrapper: dict) -> Optional[str]:
    return (app_wrapper.get("status") or {}).get("phase")


def load_balancer_ingresses(ingress: client.V1Ingress) -> list:
    if not (ingress.status and ingress.status.load_balancer):
        return []
    return ingress.status.load_balancer.ingress or []


def route_ingresses(route: dict) -> list[dict]:
    return (route.get("status") or {}).get("ingress") or []


def get_name(obj: dict) -> str:
    return obj["metadata"]["name"]
