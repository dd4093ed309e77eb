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

"""
Unit tests for the TestContext of the CodeFlare e2e support.

The Kubernetes backend is replaced with a Mock, so that the waiters, the cleanups and the
troubleshooting helpers can be tested without a cluster.
"""

from unittest.mock import Mock, patch

from kubernetes import client
from kubernetes.client.rest import ApiException
import pytest

from codeflare.e2e.api.context import TestContext
from codeflare.e2e.backends.kubernetes.backend import KubernetesBackend
from codeflare.e2e.backends.kubernetes.ray_client import RayDashboardClient
from codeflare.e2e.constants import constants
from codeflare.e2e.test.common import FAILED, SUCCESS, TestCase
from codeflare.e2e.types import types

TEST_NAMESPACE = "test-ns-abcde"
POLLING_INTERVAL = 0.01


# --------------------------
# Fixtures
# --------------------------


@pytest.fixture
def backend():
    backend = Mock(spec=KubernetesBackend)
    backend.bearer_token = "sha256~token"
    return backend


@pytest.fixture
def test_context(backend, tmp_path):
    ctx = TestContext(
        backend, config=types.E2EConfig(output_dir=str(tmp_path)), name="test_mnist[cpu]"
    )
    ctx.polling_interval = POLLING_INTERVAL
    return ctx


def ray_cluster_with_state(state) -> dict:
    return {"metadata": {"name": constants.RAY_CLUSTER_NAME}, "status": {"state": state}}


def ray_job_with_status(status) -> dict:
    return {"metadata": {"name": constants.MNIST_NAME}, "status": {"jobStatus": status}}


def app_wrapper_with_phase(name, phase) -> dict:
    return {"metadata": {"name": name}, "status": {"phase": phase}}


def not_found_error() -> RuntimeError:
    error = RuntimeError(f"Failed to get RayCluster: {TEST_NAMESPACE}/raycluster")
    error.__cause__ = ApiException(status=404, reason="Not Found")
    return error


def get_pod(name: str, *containers: str) -> client.V1Pod:
    return client.V1Pod(
        metadata=client.V1ObjectMeta(name=name, namespace=TEST_NAMESPACE),
        spec=client.V1PodSpec(containers=[client.V1Container(name=c) for c in containers]),
    )


# --------------------------
# Cleanups and failures
# --------------------------


def test_cleanup_runs_in_reverse_order(test_context):
    calls = []
    test_context.defer(calls.append, "first")
    test_context.defer(calls.append, "second")
    test_context.defer(Mock(side_effect=RuntimeError("boom")))
    test_context.defer(calls.append, "last")

    test_context.cleanup()

    assert calls == ["last", "second", "first"]
    # Cleanups are run once.
    test_context.cleanup()
    assert calls == ["last", "second", "first"]


def test_on_failure_runs_diagnostics(test_context):
    diagnostic = Mock()
    failing_diagnostic = Mock(side_effect=RuntimeError("no cluster"))

    with pytest.raises(AssertionError):
        with test_context.on_failure(failing_diagnostic, diagnostic):
            assert False, "RayJob has failed"

    assert test_context.failed is True
    failing_diagnostic.assert_called_once()
    diagnostic.assert_called_once()


def test_on_failure_without_error(test_context):
    diagnostic = Mock()

    with test_context.on_failure(diagnostic):
        pass

    assert test_context.failed is False
    diagnostic.assert_not_called()


def test_output_dir(test_context, tmp_path):
    path = test_context.write_to_output_dir("ray-job-log-1.log", "logs")

    assert test_context.output_dir == tmp_path / "test_mnist_cpu_"
    assert path == test_context.output_dir / "ray-job-log-1.log"
    assert path.read_text() == "logs"


# --------------------------
# Namespaces and Kueue
# --------------------------


@pytest.mark.parametrize(
    "test_case",
    [
        TestCase(
            name="passed test deletes the namespace",
            expected_status=SUCCESS,
            config={"failed": False},
            expected_output=False,
        ),
        TestCase(
            name="failed test stores diagnostics before deleting the namespace",
            expected_status=FAILED,
            config={"failed": True},
            expected_output=True,
        ),
    ],
)
def test_new_test_namespace(test_context, backend, test_case):
    print("Executing test:", test_case.name)
    backend.create_namespace.return_value = client.V1Namespace(
        metadata=client.V1ObjectMeta(name=TEST_NAMESPACE)
    )
    backend.list_pods.return_value = [get_pod("raycluster-head", "ray-head")]
    backend.read_pod_logs.return_value = "head logs"
    backend.list_events.return_value = [
        client.CoreV1Event(
            involved_object=client.V1ObjectReference(kind="Pod", name="raycluster-head"),
            metadata=client.V1ObjectMeta(name="event"),
            reason="Scheduled",
            message="Successfully assigned",
            type="Normal",
        )
    ]

    namespace = test_context.new_test_namespace()
    test_context.failed = test_case.config["failed"]
    test_context.cleanup()

    assert namespace.metadata.name == TEST_NAMESPACE
    backend.create_namespace.assert_called_once_with(None)
    backend.delete_namespace.assert_called_once_with(TEST_NAMESPACE)

    pod_logs = test_context.output_dir / TEST_NAMESPACE / "pods" / "raycluster-head-ray-head.log"
    events = test_context.output_dir / TEST_NAMESPACE / "events.log"
    assert pod_logs.exists() is test_case.expected_output
    assert events.exists() is test_case.expected_output
    if test_case.expected_output:
        assert pod_logs.read_text() == "head logs"
        assert "Pod/raycluster-head: Scheduled Successfully assigned" in events.read_text()
    print("test execution complete")


def test_failed_diagnostics_do_not_prevent_namespace_deletion(test_context, backend):
    backend.create_namespace.return_value = client.V1Namespace(
        metadata=client.V1ObjectMeta(name=TEST_NAMESPACE)
    )
    backend.list_pods.side_effect = RuntimeError("Failed to list Pods")

    test_context.new_test_namespace()
    test_context.failed = True
    test_context.cleanup()

    backend.delete_namespace.assert_called_once_with(TEST_NAMESPACE)


def test_create_kueue_objects(test_context, backend):
    backend.create_resource_flavor.return_value = {"metadata": {"name": "rf-abcde"}}
    backend.create_cluster_queue.return_value = {"metadata": {"name": "cq-abcde"}}
    backend.create_local_queue.return_value = {"metadata": {"name": "lq-abcde"}}

    resource_flavor = test_context.create_kueue_resource_flavor()
    cluster_queue = test_context.create_cluster_queue(resource_flavor, types.NVIDIA)
    local_queue = test_context.create_kueue_local_queue(
        TEST_NAMESPACE, "cq-abcde", as_default=True
    )

    assert local_queue["metadata"]["name"] == "lq-abcde"
    assert cluster_queue["metadata"]["name"] == "cq-abcde"
    backend.create_resource_flavor.assert_called_once_with(
        {
            "apiVersion": "kueue.x-k8s.io/v1beta1",
            "kind": "ResourceFlavor",
            "metadata": {"generateName": "rf-"},
            "spec": {},
        }
    )
    cluster_queue_body = backend.create_cluster_queue.call_args.args[0]
    assert cluster_queue_body["spec"]["resourceGroups"][0]["flavors"][0]["name"] == "rf-abcde"
    assert "nvidia.com/gpu" in cluster_queue_body["spec"]["resourceGroups"][0]["coveredResources"]
    namespace, local_queue_body = backend.create_local_queue.call_args.args
    assert namespace == TEST_NAMESPACE
    assert local_queue_body["metadata"]["annotations"] == {
        constants.DEFAULT_QUEUE_ANNOTATION: "true"
    }


# --------------------------
# Waiters
# --------------------------


def test_wait_for_ray_cluster_state(test_context, backend):
    backend.get_ray_cluster.side_effect = [
        RuntimeError("Failed to get RayCluster"),
        ray_cluster_with_state(None),
        ray_cluster_with_state("ready"),
    ]

    ray_cluster = test_context.wait_for_ray_cluster_state(
        TEST_NAMESPACE, constants.RAY_CLUSTER_NAME, timeout=5
    )

    assert ray_cluster["status"]["state"] == "ready"
    assert backend.get_ray_cluster.call_count == 3
    backend.get_ray_cluster.assert_called_with(TEST_NAMESPACE, constants.RAY_CLUSTER_NAME)


def test_wait_for_ray_cluster_state_timeout(test_context, backend):
    backend.get_ray_cluster.return_value = ray_cluster_with_state("suspended")

    with pytest.raises(TimeoutError) as e:
        test_context.wait_for_ray_cluster_state(
            TEST_NAMESPACE, constants.RAY_CLUSTER_NAME, timeout=0.05
        )

    assert f"RayCluster {TEST_NAMESPACE}/raycluster to be ready" in str(e.value)
    assert "suspended" in str(e.value)


@pytest.mark.parametrize("status", ["SUCCEEDED", "FAILED", "STOPPED"])
def test_wait_for_ray_job_terminal(test_context, backend, status):
    backend.get_ray_job.side_effect = [
        ray_job_with_status("PENDING"),
        ray_job_with_status("RUNNING"),
        ray_job_with_status(status),
    ]

    ray_job = test_context.wait_for_ray_job_terminal(
        TEST_NAMESPACE, constants.MNIST_NAME, timeout=5
    )

    assert ray_job["status"]["jobStatus"] == status


def test_wait_for_app_wrapper_phase(test_context, backend):
    backend.list_app_wrappers.side_effect = [
        [],
        [app_wrapper_with_phase("raycluster-1", "Suspended")],
        [
            app_wrapper_with_phase("raycluster-1", "Suspended"),
            app_wrapper_with_phase("raycluster-2", "Running"),
        ],
    ]

    app_wrapper = test_context.wait_for_app_wrapper_phase(TEST_NAMESPACE, timeout=5)

    assert app_wrapper["metadata"]["name"] == "raycluster-2"


@pytest.mark.parametrize(
    "test_case",
    [
        TestCase(
            name="ray clusters are deleted",
            expected_status=SUCCESS,
            config={"items": [[ray_cluster_with_state("ready")], []]},
        ),
        TestCase(
            name="ray clusters are never deleted",
            expected_status=FAILED,
            config={"items": None},
            expected_error=TimeoutError,
        ),
    ],
)
def test_wait_for_ray_clusters_deleted(test_context, backend, test_case):
    print("Executing test:", test_case.name)
    if test_case.config["items"] is None:
        backend.list_ray_clusters.return_value = [ray_cluster_with_state("ready")]
    else:
        backend.list_ray_clusters.side_effect = test_case.config["items"]
    try:
        test_context.wait_for_ray_clusters_deleted(TEST_NAMESPACE, timeout=0.2)

        assert test_case.expected_status == SUCCESS

    except Exception as e:
        assert type(e) is test_case.expected_error
    print("test execution complete")


def test_wait_for_app_wrappers_deleted(test_context, backend):
    backend.list_app_wrappers.side_effect = [[app_wrapper_with_phase("aw", "Running")], []]

    test_context.wait_for_app_wrappers_deleted(TEST_NAMESPACE, timeout=5)

    assert backend.list_app_wrappers.call_count == 2


def test_wait_for_ray_cluster_gone(test_context, backend):
    backend.get_ray_cluster.side_effect = [ray_cluster_with_state("ready"), not_found_error()]

    assert test_context.wait_for_ray_cluster_gone(TEST_NAMESPACE, "raycluster", timeout=5) is None
    assert backend.get_ray_cluster.call_count == 2


def test_wait_for_ray_cluster_gone_ignores_other_errors(test_context, backend):
    backend.get_ray_cluster.side_effect = RuntimeError("connection refused")

    with pytest.raises(TimeoutError) as e:
        test_context.wait_for_ray_cluster_gone(TEST_NAMESPACE, "raycluster", timeout=0.05)

    assert "last error: connection refused" in str(e.value)


# --------------------------
# Ray dashboard
# --------------------------


def ingress_with_host(host: str, admitted: bool = True) -> client.V1Ingress:
    load_balancer = client.V1IngressLoadBalancerStatus(
        ingress=[client.V1IngressLoadBalancerIngress(ip="10.0.0.1")] if admitted else None
    )
    return client.V1Ingress(
        spec=client.V1IngressSpec(rules=[client.V1IngressRule(host=host)]),
        status=client.V1IngressStatus(load_balancer=load_balancer),
    )


def test_get_ray_dashboard_url_from_ingress(test_context, backend):
    backend.is_openshift.return_value = False
    backend.get_ingress.side_effect = [
        ingress_with_host("ray-dashboard.example.com", admitted=False),
        ingress_with_host("ray-dashboard.example.com"),
    ]

    url = test_context.get_ray_dashboard_url(TEST_NAMESPACE, constants.RAY_CLUSTER_NAME)

    assert url == "http://ray-dashboard.example.com"
    backend.get_ingress.assert_called_with(TEST_NAMESPACE, "ray-dashboard-raycluster")


def test_get_ray_dashboard_url_from_route(test_context, backend):
    backend.is_openshift.return_value = True
    backend.get_route.return_value = {
        "status": {"ingress": [{"host": "ray-dashboard-raycluster.apps.example.com"}]}
    }

    with patch.object(RayDashboardClient, "probe", side_effect=[503, 503, 200]) as probe:
        url = test_context.get_ray_dashboard_url(TEST_NAMESPACE, constants.RAY_CLUSTER_NAME)

    assert url == "https://ray-dashboard-raycluster.apps.example.com"
    assert probe.call_count == 3
    backend.get_route.assert_called_once_with(TEST_NAMESPACE, "ray-dashboard-raycluster")
    backend.get_ingress.assert_not_called()


def test_get_ray_dashboard_url_waits_for_route_admission(test_context, backend):
    backend.is_openshift.return_value = True
    backend.get_route.side_effect = [
        RuntimeError("Failed to get Route"),
        {"metadata": {"name": "ray-dashboard-raycluster"}},
        {"status": {"ingress": []}},
        {"status": {"ingress": [{"host": "ray-dashboard-raycluster.apps.example.com"}]}},
    ]

    with patch.object(RayDashboardClient, "probe", return_value=200):
        url = test_context.get_ray_dashboard_url(TEST_NAMESPACE, constants.RAY_CLUSTER_NAME)

    assert url == "https://ray-dashboard-raycluster.apps.example.com"
    assert backend.get_route.call_count == 4


def test_wait_for_route_admitted_timeout(test_context, backend):
    backend.get_route.return_value = {"status": {}}

    with pytest.raises(TimeoutError) as e:
        test_context.wait_for_route_admitted(TEST_NAMESPACE, "ray-dashboard-raycluster", 0.05)

    assert f"Route {TEST_NAMESPACE}/ray-dashboard-raycluster to be admitted" in str(e.value)


def test_get_ray_client(test_context):
    ray_client = test_context.get_ray_client("https://ray-dashboard.example.com")

    assert ray_client.headers["Authorization"] == "Bearer sha256~token"
    assert ray_client.ssl_context is not None


def test_write_ray_job_api_logs(test_context):
    ray_client = Mock(get_job_logs=Mock(return_value="Epoch 1: 100%"))

    path = test_context.write_ray_job_api_logs(ray_client, "mnist-abcde")

    assert path.name == "ray-job-log-mnist-abcde.log"
    assert path.read_text() == "Epoch 1: 100%"
    ray_client.get_job_logs.assert_called_once_with("mnist-abcde")


# --------------------------
# Troubleshooting
# --------------------------


def test_troubleshooting_is_skipped_when_test_passed(test_context, backend):
    test_context.ray_cluster_troubleshooting(TEST_NAMESPACE, constants.RAY_CLUSTER_NAME)
    test_context.job_troubleshooting(
        client.V1Job(metadata=client.V1ObjectMeta(name="job", namespace=TEST_NAMESPACE))
    )

    backend.get_ray_cluster.assert_not_called()
    backend.get_job.assert_not_called()


def test_ray_cluster_troubleshooting(test_context, backend):
    test_context.failed = True
    backend.get_ray_cluster.return_value = ray_cluster_with_state("suspended")
    backend.list_pods.return_value = [
        get_pod("raycluster-head", "ray-head"),
        get_pod("raycluster-worker", "ray-worker"),
    ]
    backend.read_pod_logs.return_value = "logs"

    test_context.ray_cluster_troubleshooting(TEST_NAMESPACE, constants.RAY_CLUSTER_NAME)

    backend.list_pods.assert_called_once_with(
        TEST_NAMESPACE, label_selector="ray.io/cluster=raycluster"
    )
    assert [c.args for c in backend.read_pod_logs.call_args_list] == [
        (TEST_NAMESPACE, "raycluster-head", "ray-head"),
        (TEST_NAMESPACE, "raycluster-worker", "ray-worker"),
    ]


def test_job_troubleshooting(test_context, backend):
    test_context.failed = True
    job = client.V1Job(
        metadata=client.V1ObjectMeta(name="rayjob-submitter", namespace=TEST_NAMESPACE),
        spec=client.V1JobSpec(
            selector=client.V1LabelSelector(match_labels={"job-name": "rayjob-submitter"}),
            template=client.V1PodTemplateSpec(),
        ),
    )
    backend.get_job.return_value = job
    backend.list_pods.return_value = [get_pod("rayjob-submitter-xyz", "submitter")]
    backend.read_pod_logs.return_value = "logs"

    test_context.job_troubleshooting(job)

    backend.list_pods.assert_called_once_with(
        TEST_NAMESPACE, label_selector="job-name=rayjob-submitter"
    )
    backend.read_pod_logs.assert_called_once_with(TEST_NAMESPACE, "rayjob-submitter-xyz")
