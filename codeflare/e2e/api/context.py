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

from collections.abc import Iterator
import contextlib
import logging
from pathlib import Path
import re
import tempfile
from typing import Any, Callable, Optional

from kubernetes import client

import codeflare.common.constants as common_constants
from codeflare.common.utils import is_not_found, wait_for
from codeflare.e2e.backends.kubernetes import utils
from codeflare.e2e.backends.kubernetes.backend import KubernetesBackend
from codeflare.e2e.backends.kubernetes.ray_client import RayDashboardClient
from codeflare.e2e.constants import constants
from codeflare.e2e.types import types

logger = logging.getLogger(__name__)


class TestContext:
    """Per-test facade over the Kubernetes backend.

    It owns the cleanup callbacks registered by the test, the output directory where logs
    are written, and the waiters that poll the remote objects until they converge.

    Args:
        backend: Kubernetes backend used to access the cluster.
        config: Test configuration. Defaults to `E2EConfig.from_env()`.
        name: Name of the test, used for the output directory.
    """

    # Prevent pytest from collecting this class as a test
    __test__ = False

    def __init__(
        self,
        backend: KubernetesBackend,
        config: Optional[types.E2EConfig] = None,
        name: str = "e2e",
    ):
        self.backend = backend
        self.config = config or types.E2EConfig.from_env()
        self.name = name
        self.failed = False
        self.polling_interval: float = common_constants.DEFAULT_POLLING_INTERVAL
        self._cleanups: list[Callable[[], Any]] = []
        self._output_dir: Optional[Path] = None

    @property
    def output_dir(self) -> Path:
        if self._output_dir is None:
            base = self.config.output_dir or tempfile.mkdtemp(prefix="codeflare-e2e-")
            self._output_dir = Path(base) / re.sub(r"[^\w.-]+", "_", self.name)
            self._output_dir.mkdir(parents=True, exist_ok=True)
            logger.info(f"Output directory: {self._output_dir}")
        return self._output_dir

    def defer(self, func: Callable[..., Any], *args, **kwargs):
        """Register a function to call on cleanup. Functions are called in reverse order."""
        self._cleanups.append(lambda: func(*args, **kwargs))

    def cleanup(self):
        while self._cleanups:
            func = self._cleanups.pop()
            try:
                func()
            except Exception as e:
                logger.warning(f"Cleanup of test {self.name} failed: {e}")

    @contextlib.contextmanager
    def on_failure(self, *diagnostics: Callable[[], Any]) -> Iterator[None]:
        """Mark the test as failed and run the diagnostics once if the block raises."""
        try:
            yield
        except BaseException:
            self.failed = True
            for diagnostic in diagnostics:
                try:
                    diagnostic()
                except Exception as e:
                    logger.warning(f"Troubleshooting of test {self.name} failed: {e}")
            raise

    def write_to_output_dir(self, file_name: str, content: str) -> Path:
        path = self.output_dir / file_name
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(content)
        return path

    # Namespaces.

    def new_test_namespace(self, name: Optional[str] = None) -> client.V1Namespace:
        """Create a Namespace deleted on cleanup. Its diagnostics are stored if the test fails."""
        namespace = self.backend.create_namespace(name)
        namespace_name = namespace.metadata.name
        logger.info(f"Created test Namespace {namespace_name}")

        def delete_namespace():
            if self.failed:
                try:
                    self.store_namespace_diagnostics(namespace_name)
                except Exception as e:
                    logger.warning(f"Failed to store diagnostics of {namespace_name}: {e}")
            self.backend.delete_namespace(namespace_name)

        self.defer(delete_namespace)
        return namespace

    # Kueue.

    def create_kueue_resource_flavor(self, spec: Optional[dict] = None) -> dict:
        resource_flavor = self.backend.create_resource_flavor(utils.get_resource_flavor(spec))
        logger.info(f"Created Kueue ResourceFlavor {utils.get_name(resource_flavor)} successfully")
        return resource_flavor

    def create_kueue_cluster_queue(self, spec: dict) -> dict:
        cluster_queue = self.backend.create_cluster_queue(utils.get_cluster_queue(spec))
        logger.info(f"Created Kueue ClusterQueue {utils.get_name(cluster_queue)} successfully")
        return cluster_queue

    def create_cluster_queue(self, resource_flavor: dict, accelerator: types.Accelerator) -> dict:
        """Create a ClusterQueue with CPU, memory and accelerator quotas on the flavor."""
        return self.create_kueue_cluster_queue(
            utils.get_cluster_queue_spec(utils.get_name(resource_flavor), accelerator)
        )

    def create_kueue_local_queue(
        self, namespace: str, cluster_queue_name: str, as_default: bool = False
    ) -> dict:
        local_queue = self.backend.create_local_queue(
            namespace, utils.get_local_queue(namespace, cluster_queue_name, as_default)
        )
        logger.info(
            f"Created Kueue LocalQueue {namespace}/{utils.get_name(local_queue)} successfully"
        )
        return local_queue

    # Waiters.

    def wait_for_ray_cluster_state(
        self,
        namespace: str,
        name: str,
        state: str = constants.RAY_CLUSTER_READY,
        timeout: float = constants.TEST_TIMEOUT_MEDIUM,
    ) -> dict:
        logger.info(f"Waiting for RayCluster {namespace}/{name} to be {state}")
        return wait_for(
            lambda: self.backend.get_ray_cluster(namespace, name),
            lambda ray_cluster: utils.ray_cluster_state(ray_cluster) == state,
            timeout=timeout,
            polling_interval=self.polling_interval,
            description=f"RayCluster {namespace}/{name} to be {state}",
        )

    def wait_for_ray_job_terminal(
        self,
        namespace: str,
        name: str,
        timeout: float = constants.TEST_TIMEOUT_LONG,
    ) -> dict:
        logger.info(f"Waiting for RayJob {namespace}/{name} to complete")
        return wait_for(
            lambda: self.backend.get_ray_job(namespace, name),
            lambda ray_job: utils.is_job_terminal(utils.ray_job_status(ray_job)),
            timeout=timeout,
            polling_interval=self.polling_interval,
            description=f"RayJob {namespace}/{name} to complete",
        )

    def wait_for_app_wrapper_phase(
        self,
        namespace: str,
        phase: str = constants.APPWRAPPER_RUNNING,
        timeout: float = constants.TEST_TIMEOUT_MEDIUM,
    ) -> dict:
        """Wait for one of the AppWrappers in the namespace to reach the phase."""
        app_wrappers = wait_for(
            lambda: self.backend.list_app_wrappers(namespace),
            lambda items: any(utils.app_wrapper_phase(aw) == phase for aw in items),
            timeout=timeout,
            polling_interval=self.polling_interval,
            description=f"an AppWrapper in namespace {namespace} to be {phase}",
        )
        return next(aw for aw in app_wrappers if utils.app_wrapper_phase(aw) == phase)

    def wait_for_ray_clusters_deleted(
        self, namespace: str, timeout: float = constants.TEST_TIMEOUT_SHORT
    ):
        logger.info(f"Waiting for RayClusters in namespace {namespace} to be deleted")
        wait_for(
            lambda: self.backend.list_ray_clusters(namespace),
            lambda items: len(items) == 0,
            timeout=timeout,
            polling_interval=self.polling_interval,
            description=f"RayClusters in namespace {namespace} to be deleted",
        )

    def wait_for_app_wrappers_deleted(
        self, namespace: str, timeout: float = constants.TEST_TIMEOUT_SHORT
    ):
        logger.info(f"Waiting for AppWrappers in namespace {namespace} to be deleted")
        wait_for(
            lambda: self.backend.list_app_wrappers(namespace),
            lambda items: len(items) == 0,
            timeout=timeout,
            polling_interval=self.polling_interval,
            description=f"AppWrappers in namespace {namespace} to be deleted",
        )

    def wait_for_ray_cluster_gone(
        self, namespace: str, name: str, timeout: float = constants.TEST_TIMEOUT_SHORT
    ):
        """Wait until getting the RayCluster fails with not found."""
        logger.info(f"Waiting for RayCluster {namespace}/{name} to be deleted")
        wait_for(
            lambda: self.backend.get_ray_cluster(namespace, name),
            lambda ray_cluster: False,
            timeout=timeout,
            polling_interval=self.polling_interval,
            description=f"RayCluster {namespace}/{name} to be deleted",
            satisfied_by_error=is_not_found,
        )

    def wait_for_ingress_admitted(
        self, namespace: str, name: str, timeout: float = constants.TEST_TIMEOUT_SHORT
    ) -> client.V1Ingress:
        logger.info(f"Waiting for Ingress {namespace}/{name} to be admitted")
        return wait_for(
            lambda: self.backend.get_ingress(namespace, name),
            lambda ingress: len(utils.load_balancer_ingresses(ingress)) == 1,
            timeout=timeout,
            polling_interval=self.polling_interval,
            description=f"Ingress {namespace}/{name} to be admitted",
        )

    def wait_for_route_admitted(
        self, namespace: str, name: str, timeout: float = constants.TEST_TIMEOUT_SHORT
    ) -> dict:
        logger.info(f"Waiting for Route {namespace}/{name} to be admitted")
        return wait_for(
            lambda: self.backend.get_route(namespace, name),
            lambda route: len(utils.route_ingresses(route)) > 0,
            timeout=timeout,
            polling_interval=self.polling_interval,
            description=f"Route {namespace}/{name} to be admitted",
        )

    # Ray dashboard.

    def get_ray_dashboard_url(self, namespace: str, ray_cluster_name: str) -> str:
        """Get the URL of the Ray dashboard from its OpenShift Route or its Ingress."""
        dashboard_name = constants.RAY_DASHBOARD_PREFIX + ray_cluster_name

        if self.backend.is_openshift():
            route = self.wait_for_route_admitted(namespace, dashboard_name)
            hostname = utils.route_ingresses(route)[0]["host"]
            dashboard_url = f"https://{hostname}"

            logger.info(f"Waiting for Route {namespace}/{dashboard_name} to be available")
            probe_client = RayDashboardClient(dashboard_url, verify=False)
            wait_for(
                probe_client.probe,
                lambda status_code: status_code != 503,
                timeout=constants.TEST_TIMEOUT_SHORT,
                polling_interval=self.polling_interval,
                description=f"Route {namespace}/{dashboard_name} to be available",
            )
        else:
            ingress = self.wait_for_ingress_admitted(namespace, dashboard_name)
            dashboard_url = f"http://{ingress.spec.rules[0].host}"

        logger.info(f"Ray-dashboard route : {dashboard_url}")
        return dashboard_url

    def get_ray_client(self, dashboard_url: str) -> RayDashboardClient:
        # Test clusters expose the dashboard with self-signed certificates.
        return RayDashboardClient(
            dashboard_url, bearer_token=self.backend.bearer_token, verify=False
        )

    def write_ray_job_api_logs(self, ray_client: RayDashboardClient, job_id: str) -> Path:
        logger.info(f"Retrieving Ray job {job_id} logs")
        logs = ray_client.get_job_logs(job_id)
        return self.write_to_output_dir(constants.RAY_JOB_LOG_FILE.format(job_id=job_id), logs)

    # Troubleshooting.

    def job_troubleshooting(self, job: client.V1Job):
        """Log the state and the Pod logs of a Job that hasn't completed, if the test failed."""
        if not self.failed:
            return
        namespace, name = job.metadata.namespace, job.metadata.name
        job = self.backend.get_job(namespace, name)

        logger.error(f"Job {namespace}/{name} hasn't completed in time: {job}")

        match_labels = job.spec.selector.match_labels or {}
        label_selector = ",".join(f"{k}={v}" for k, v in match_labels.items())
        pods = self.backend.list_pods(namespace, label_selector=label_selector)
        if not pods:
            logger.error(f"Job {namespace}/{name} has no pods scheduled")
            return

        for pod in pods:
            logger.info(f"Printing Pod {namespace}/{pod.metadata.name} logs")
            logger.info(self.backend.read_pod_logs(namespace, pod.metadata.name))

    def ray_cluster_troubleshooting(self, namespace: str, name: str):
        """Log the state of a RayCluster and the logs of its Pods, if the test failed."""
        if not self.failed:
            return
        ray_cluster = self.backend.get_ray_cluster(namespace, name)
        logger.error(
            f"RayCluster {namespace}/{name} is {utils.ray_cluster_state(ray_cluster)}: "
            f"{ray_cluster.get('status')}"
        )

        pods = self.backend.list_pods(
            namespace, label_selector=f"{constants.RAY_CLUSTER_LABEL}={name}"
        )
        if not pods:
            logger.error(f"RayCluster {namespace}/{name} has no pods scheduled")
            return

        for pod in pods:
            for container in pod.spec.containers:
                logger.info(f"Printing Pod {namespace}/{pod.metadata.name} {container.name} logs")
                logger.info(
                    self.backend.read_pod_logs(namespace, pod.metadata.name, container.name)
                )

    def store_namespace_diagnostics(self, namespace: str):
        """Write the Pod logs and the Events of the namespace to the output directory."""
        for pod in self.backend.list_pods(namespace):
            for container in pod.spec.containers:
                try:
                    logs = self.backend.read_pod_logs(namespace, pod.metadata.name, container.name)
                except RuntimeError as e:
                    logger.warning(str(e))
                    continue
                self.write_to_output_dir(
                    f"{namespace}/pods/{pod.metadata.name}-{container.name}.log", logs
                )

        events = [
            f"{e.last_timestamp} {e.type} {e.involved_object.kind}/{e.involved_object.name}: "
            f"{e.reason} {e.message}"
            for e in self.backend.list_events(namespace)
        ]
        self.write_to_output_dir(f"{namespace}/events.log", "\n".join(events))
