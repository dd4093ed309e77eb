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

import pytest

from codeflare.common.types import KubernetesBackendConfig
from codeflare.e2e.api.context import TestContext
from codeflare.e2e.backends.kubernetes.backend import KubernetesBackend
from codeflare.e2e.types.types import E2EConfig

logger = logging.getLogger(__name__)


@pytest.hookimpl(tryfirst=True, hookwrapper=True)
def pytest_runtest_makereport(item, call):
    # Expose the result of each phase on the test item, e.g. item.rep_call.
    outcome = yield
    rep = outcome.get_result()
    setattr(item, "rep_" + rep.when, rep)


@pytest.fixture(scope="session")
def e2e_config() -> E2EConfig:
    return E2EConfig.from_env()


@pytest.fixture(scope="session")
def kubernetes_backend() -> KubernetesBackend:
    return KubernetesBackend(KubernetesBackendConfig())


@pytest.fixture
def test_context(request, kubernetes_backend, e2e_config):
    """Provide a TestContext whose deferred cleanups run when the test ends."""
    ctx = TestContext(kubernetes_backend, config=e2e_config, name=request.node.name)
    yield ctx

    rep_call = getattr(request.node, "rep_call", None)
    if rep_call is not None and rep_call.failed:
        ctx.failed = True
        logger.info(f"Test {request.node.name} failed, diagnostics are in {ctx.output_dir}")
    ctx.cleanup()
