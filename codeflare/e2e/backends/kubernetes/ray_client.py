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
Client for the Ray dashboard job submission REST API.

The end-to-end tests use it to fetch the logs of the Ray job submitted by a RayJob, through
the Ingress or the OpenShift Route that exposes the Ray dashboard.
"""

import json
import logging
import ssl
from typing import Any, Optional
import urllib.error
import urllib.request

import codeflare.common.constants as common_constants

logger = logging.getLogger(__name__)


class RayDashboardClient:
    def __init__(self, address: str, bearer_token: Optional[str] = None, verify: bool = True):
        self.address = address.rstrip("/")
        self.headers = {"Accept": "application/json"}
        if bearer_token:
            self.headers["Authorization"] = f"Bearer {bearer_token}"

        self.ssl_context = None
        if not verify:
            self.ssl_context = ssl.create_default_context()
            self.ssl_context.check_hostname = False
            self.ssl_context.verify_mode = ssl.CERT_NONE

    def probe(self) -> int:
        """Get the HTTP status code returned by the dashboard root URL."""
        request = urllib.request.Request(self.address + "/", headers=self.headers)
        try:
            with urllib.request.urlopen(
                request, timeout=common_constants.DEFAULT_TIMEOUT, context=self.ssl_context
            ) as response:
                return response.status
        except urllib.error.HTTPError as e:
            return e.code

    def list_jobs(self) -> list[dict[str, Any]]:
        return self._get("/api/jobs/")

    def get_job_details(self, job_id: str) -> dict[str, Any]:
        return self._get(f"/api/jobs/{job_id}")

    def get_job_logs(self, job_id: str) -> str:
        return self._get(f"/api/jobs/{job_id}/logs").get("logs", "")

    def _get(self, path: str) -> Any:
        url = self.address + path
        request = urllib.request.Request(url, headers=self.headers)
        try:
            with urllib.request.urlopen(
                request, timeout=common_constants.DEFAULT_TIMEOUT, context=self.ssl_context
            ) as response:
                return json.loads(response.read().decode("utf-8"))
        except Exception as e:
            raise RuntimeError(f"Failed to get {url}") from e
