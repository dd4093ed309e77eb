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

from dataclasses import dataclass
import os
from typing import Optional

from pydantic import BaseModel

from codeflare.e2e.constants import constants


# Accelerator the training workload runs on.
@dataclass(frozen=True)
class Accelerator:
    """Accelerator configuration of the training workload.

    Args:
        type (`str`): The accelerator type passed to the training script, cpu or gpu.
        resource_label (`str`): The extended resource name of the accelerator in the
            container resources, e.g. nvidia.com/gpu. Empty for CPU.
    """

    type: str
    resource_label: str = ""

    @property
    def is_gpu(self) -> bool:
        return self.resource_label != ""


CPU = Accelerator(type="cpu")
NVIDIA = Accelerator(type="gpu", resource_label=constants.NVIDIA_GPU_LABEL)
AMD = Accelerator(type="gpu", resource_label=constants.AMD_GPU_LABEL)


# Reference to a custom resource served by the Kubernetes API Server.
@dataclass(frozen=True)
class ResourceType:
    group: str
    version: str
    plural: str
    kind: str

    @property
    def api_version(self) -> str:
        return f"{self.group}/{self.version}"


RAY_CLUSTER = ResourceType(
    group=constants.RAY_GROUP,
    version=constants.RAY_VERSION,
    plural=constants.RAY_CLUSTER_PLURAL,
    kind=constants.RAY_CLUSTER_KIND,
)

RAY_JOB = ResourceType(
    group=constants.RAY_GROUP,
    version=constants.RAY_VERSION,
    plural=constants.RAY_JOB_PLURAL,
    kind=constants.RAY_JOB_KIND,
)

RESOURCE_FLAVOR = ResourceType(
    group=constants.KUEUE_GROUP,
    version=constants.KUEUE_VERSION,
    plural=constants.RESOURCE_FLAVOR_PLURAL,
    kind=constants.RESOURCE_FLAVOR_KIND,
)

CLUSTER_QUEUE = ResourceType(
    group=constants.KUEUE_GROUP,
    version=constants.KUEUE_VERSION,
    plural=constants.CLUSTER_QUEUE_PLURAL,
    kind=constants.CLUSTER_QUEUE_KIND,
)

LOCAL_QUEUE = ResourceType(
    group=constants.KUEUE_GROUP,
    version=constants.KUEUE_VERSION,
    plural=constants.LOCAL_QUEUE_PLURAL,
    kind=constants.LOCAL_QUEUE_KIND,
)

APPWRAPPER = ResourceType(
    group=constants.APPWRAPPER_GROUP,
    version=constants.APPWRAPPER_VERSION,
    plural=constants.APPWRAPPER_PLURAL,
    kind=constants.APPWRAPPER_KIND,
)

ROUTE = ResourceType(
    group=constants.ROUTE_GROUP,
    version=constants.ROUTE_VERSION,
    plural=constants.ROUTE_PLURAL,
    kind=constants.ROUTE_KIND,
)


class E2EConfig(BaseModel):
    """Configuration of the end-to-end tests.

    Use `E2EConfig.from_env()` to read it from the CODEFLARE_TEST_* environment variables.
    """

    ray_version: str = constants.DEFAULT_RAY_VERSION
    ray_image: str = constants.DEFAULT_RAY_IMAGE
    ray_rocm_image: str = constants.DEFAULT_RAY_ROCM_IMAGE
    mnist_dataset_url: str = constants.DEFAULT_MNIST_DATASET_URL
    pip_index_url: str = constants.DEFAULT_PIP_INDEX_URL
    pip_trusted_host: str = ""
    output_dir: Optional[str] = None

    @classmethod
    def from_env(cls) -> "E2EConfig":
        env = {
            "ray_version": os.getenv(constants.ENV_RAY_VERSION),
            "ray_image": os.getenv(constants.ENV_RAY_IMAGE),
            "ray_rocm_image": os.getenv(constants.ENV_RAY_ROCM_IMAGE),
            "mnist_dataset_url": os.getenv(constants.ENV_MNIST_DATASET_URL),
            "pip_index_url": os.getenv(constants.ENV_PIP_INDEX_URL),
            "pip_trusted_host": os.getenv(constants.ENV_PIP_TRUSTED_HOST),
            "output_dir": os.getenv(constants.ENV_OUTPUT_DIR),
        }
        # Unset variables keep the defaults.
        return cls(**{k: v for k, v in env.items() if v})

    def ray_image_for(self, accelerator: Accelerator) -> str:
        """Get the Ray image that supports the given accelerator."""
        if accelerator == AMD:
            return self.ray_rocm_image
        return self.ray_image
