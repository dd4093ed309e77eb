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

# Timeouts in seconds for the end-to-end waits.
TEST_TIMEOUT_SHORT = 60
TEST_TIMEOUT_MEDIUM = 2 * 60
TEST_TIMEOUT_LONG = 5 * 60

# The generate name prefix of the test namespaces.
TEST_NAMESPACE_PREFIX = "test-ns-"

# The label added to every namespace created by the tests.
TEST_NAMESPACE_LABEL = "codeflare.dev/e2e-test"

# KubeRay API.
RAY_GROUP = "ray.io"
RAY_VERSION = "v1"
RAY_CLUSTER_KIND = "RayCluster"
RAY_CLUSTER_PLURAL = "rayclusters"
RAY_JOB_KIND = "RayJob"
RAY_JOB_PLURAL = "rayjobs"

# The label key KubeRay sets on the RayCluster Pods.
RAY_CLUSTER_LABEL = "ray.io/cluster"

# The cluster selector key used by a RayJob to run on an existing RayCluster.
RAY_JOB_DEFAULT_CLUSTER_SELECTOR_KEY = "ray.io/cluster"

# The state of a RayCluster once all its Pods are ready.
RAY_CLUSTER_READY = "ready"

# The RayJob statuses reported by the Ray job submission API.
RAY_JOB_PENDING = "PENDING"
RAY_JOB_RUNNING = "RUNNING"
RAY_JOB_STOPPED = "STOPPED"
RAY_JOB_SUCCEEDED = "SUCCEEDED"
RAY_JOB_FAILED = "FAILED"

# A RayJob in one of these statuses won't change status anymore.
RAY_JOB_TERMINAL_STATUSES = frozenset({RAY_JOB_STOPPED, RAY_JOB_SUCCEEDED, RAY_JOB_FAILED})

# The name prefix of the Ingress/Route exposing the Ray dashboard.
RAY_DASHBOARD_PREFIX = "ray-dashboard-"

# The Ray container ports.
RAY_GCS_PORT = 6379
RAY_DASHBOARD_PORT = 8265
RAY_CLIENT_PORT = 10001

# Kueue API.
KUEUE_GROUP = "kueue.x-k8s.io"
KUEUE_VERSION = "v1beta1"
RESOURCE_FLAVOR_KIND = "ResourceFlavor"
RESOURCE_FLAVOR_PLURAL = "resourceflavors"
CLUSTER_QUEUE_KIND = "ClusterQueue"
CLUSTER_QUEUE_PLURAL = "clusterqueues"
LOCAL_QUEUE_KIND = "LocalQueue"
LOCAL_QUEUE_PLURAL = "localqueues"

# The label that assigns a workload to a Kueue LocalQueue.
QUEUE_NAME_LABEL = "kueue.x-k8s.io/queue-name"

# The annotation that marks a LocalQueue as the default queue of its namespace.
DEFAULT_QUEUE_ANNOTATION = "kueue.x-k8s.io/default-queue"

# The generate name prefixes of the Kueue resources.
RESOURCE_FLAVOR_PREFIX = "rf-"
CLUSTER_QUEUE_PREFIX = "cq-"
LOCAL_QUEUE_PREFIX = "lq-"

# AppWrapper API.
APPWRAPPER_GROUP = "workload.codeflare.dev"
APPWRAPPER_VERSION = "v1beta2"
APPWRAPPER_KIND = "AppWrapper"
APPWRAPPER_PLURAL = "appwrappers"

# The phase of an AppWrapper once its components are deployed.
APPWRAPPER_RUNNING = "Running"

# OpenShift Route API.
ROUTE_GROUP = "route.openshift.io"
ROUTE_VERSION = "v1"
ROUTE_KIND = "Route"
ROUTE_PLURAL = "routes"

# The label for cpu in the container resources.
CPU_LABEL = "cpu"

# The label for memory in the container resources.
MEMORY_LABEL = "memory"

# The label for NVIDIA GPU in the container resources.
NVIDIA_GPU_LABEL = "nvidia.com/gpu"

# The label for AMD GPU in the container resources.
AMD_GPU_LABEL = "amd.com/gpu"

# MNIST training.
MNIST_NAME = "mnist"
MNIST_SCRIPT = "mnist.py"
MNIST_JOBS_PATH = "/home/ray/jobs"
MNIST_ENTRYPOINT = f"python {MNIST_JOBS_PATH}/{MNIST_SCRIPT}"
RAY_CLUSTER_NAME = "raycluster"
RAY_WORKER_GROUP_NAME = "small-group"

# The Python packages installed in the RayJob runtime environment.
MNIST_PIP_PACKAGES = (
    "pytorch_lightning==2.4.0",
    "torchmetrics==1.6.0",
    "torchvision==0.19.1",
)

# The extra Python packages installed on AMD GPUs.
MNIST_ROCM_PIP_PACKAGES = (
    "--extra-index-url https://download.pytorch.org/whl/rocm6.1",
    "torch==2.4.1+rocm6.1",
)

# The Ray command run before the Ray containers are stopped.
RAY_STOP_COMMAND = ("/bin/sh", "-c", "ray stop")

# Environment variables configuring the tests.
ENV_RAY_VERSION = "CODEFLARE_TEST_RAY_VERSION"
ENV_RAY_IMAGE = "CODEFLARE_TEST_RAY_IMAGE"
ENV_RAY_ROCM_IMAGE = "CODEFLARE_TEST_RAY_ROCM_IMAGE"
ENV_OUTPUT_DIR = "CODEFLARE_TEST_OUTPUT_DIR"
ENV_MNIST_DATASET_URL = "MNIST_DATASET_URL"
ENV_PIP_INDEX_URL = "PIP_INDEX_URL"
ENV_PIP_TRUSTED_HOST = "PIP_TRUSTED_HOST"

# Defaults of the test configuration.
DEFAULT_RAY_VERSION = "2.35.0"
DEFAULT_RAY_IMAGE = "quay.io/modh/ray:2.35.0-py311-cu121"
DEFAULT_RAY_ROCM_IMAGE = "quay.io/modh/ray:2.35.0-py311-rocm61"
DEFAULT_MNIST_DATASET_URL = "https://ossci-datasets.s3.amazonaws.com/mnist/"
DEFAULT_PIP_INDEX_URL = "https://pypi.python.org/simple"

# The file name pattern of the Ray job logs written to the output directory.
RAY_JOB_LOG_FILE = "ray-job-log-{job_id}.log"
