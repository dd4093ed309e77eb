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


# Import common types.
from codeflare.common.types import KubernetesBackendConfig

# Import the end-to-end test context.
from codeflare.e2e.api.context import TestContext
from codeflare.e2e.backends.kubernetes.backend import KubernetesBackend
from codeflare.e2e.backends.kubernetes.ray_client import RayDashboardClient

# Import the end-to-end constants.
from codeflare.e2e.constants.constants import (
    TEST_TIMEOUT_LONG,
    TEST_TIMEOUT_MEDIUM,
    TEST_TIMEOUT_SHORT,
)

# Import the end-to-end types.
from codeflare.e2e.types.types import AMD, CPU, NVIDIA, Accelerator, E2EConfig

__all__ = [
    "AMD",
    "Accelerator",
    "CPU",
    "E2EConfig",
    "KubernetesBackend",
    "KubernetesBackendConfig",
    "NVIDIA",
    "RayDashboardClient",
    "TEST_TIMEOUT_LONG",
    "TEST_TIMEOUT_MEDIUM",
    "TEST_TIMEOUT_SHORT",
    "TestContext",
]
