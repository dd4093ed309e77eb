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
import os
import time
from typing import Callable, Optional, TypeVar

from kubernetes.client.rest import ApiException

from codeflare.common import constants

logger = logging.getLogger(__name__)

T = TypeVar("T")


def is_running_in_k8s() -> bool:
    return os.path.isdir("/var/run/secrets/kubernetes.io/")


def is_not_found(error: BaseException) -> bool:
    """Check whether the error, or any error it was raised from, is a Kubernetes 404."""
    while error is not None:
        if isinstance(error, ApiException) and error.status == 404:
            return True
        error = error.__cause__
    return False


def wait_for(
    fetch: Callable[[], T],
    predicate: Callable[[T], bool],
    timeout: float,
    polling_interval: float = constants.DEFAULT_POLLING_INTERVAL,
    description: str = "condition",
    satisfied_by_error: Optional[Callable[[Exception], bool]] = None,
) -> Optional[T]:
    """Poll a remote object until the predicate holds for its state.

    Args:
        fetch: Zero-argument function that returns the current state. Errors raised by it
            are treated as "not yet satisfied".
        predicate: Function that returns True when the fetched state is the expected one.
        timeout: Maximum number of seconds to wait.
        polling_interval: Number of seconds to sleep between two fetches.
        description: Human readable name of the awaited condition, used in logs and errors.
        satisfied_by_error: Optional function that returns True when a fetch error is itself
            the awaited condition, e.g. a not found error when waiting for deletion.

    Returns:
        The first fetched state for which the predicate holds, or None when the condition
        was met by a fetch error.

    Raises:
        ValueError: The polling interval is greater than the timeout.
        TimeoutError: The condition is not met within the timeout. The message contains
            the last observed state, or the last fetch error.
    """

    if polling_interval > timeout:
        raise ValueError(
            f"Polling interval {polling_interval} must be less than timeout: {timeout}"
        )

    deadline = time.monotonic() + timeout
    observed = False
    last_state = None
    last_error: Optional[Exception] = None

    while True:
        try:
            state = fetch()
        except Exception as e:
            if satisfied_by_error is not None and satisfied_by_error(e):
                logger.debug(f"Condition {description} is met by error: {e}")
                return None
            logger.debug(f"Failed to fetch state for {description}: {e}")
            last_error = e
        else:
            observed = True
            last_state = state
            last_error = None
            if predicate(state):
                return state

        # The last fetch happens at the deadline.
        remaining = deadline - time.monotonic()
        if remaining <= 0:
            break
        time.sleep(min(polling_interval, remaining))

    message = f"Timeout waiting for {description} after {timeout}s"
    if observed:
        message += f", last observed state: {last_state}"
    if last_error is not None:
        message += f", last error: {last_error}"
    raise TimeoutError(message)
