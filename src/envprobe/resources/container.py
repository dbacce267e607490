# SPDX-FileCopyrightText: 2026 The Envprobe Authors
# SPDX-License-Identifier: Apache-2.0

"""Container detector.

Reads the container ID and runtime name that the NRI runtime plugin
injects into every container it creates.
"""

from __future__ import annotations

import logging
import os
from typing import Any, Dict, Optional, Tuple

from opentelemetry.sdk.resources import Resource, ResourceDetector
from opentelemetry.semconv.resource import ResourceAttributes

from envprobe.config import CONTAINER_ID_ENV, CONTAINER_RUNTIME_ENV
from envprobe.resources._common import new_resource

logger = logging.getLogger(__name__)


class ContainerDetectorUtils:
    def lookup_env(self, key: str) -> Tuple[str, bool]:
        value = os.environ.get(key)
        return (value or "", value is not None)


class ContainerResourceDetector(ResourceDetector):
    """Detects ``container.id`` and ``container.runtime`` from the environment."""

    def __init__(
        self,
        raise_on_error: bool = False,
        utils: Optional[ContainerDetectorUtils] = None,
        id_env: str = CONTAINER_ID_ENV,
        runtime_env: str = CONTAINER_RUNTIME_ENV,
    ) -> None:
        super().__init__(raise_on_error=raise_on_error)
        self.utils = utils or ContainerDetectorUtils()
        self.id_env = id_env
        self.runtime_env = runtime_env

    def detect(self) -> Resource:
        attrs: Dict[str, Any] = {}

        container_id, _ = self.utils.lookup_env(self.id_env)
        if container_id:
            attrs[ResourceAttributes.CONTAINER_ID] = container_id

        container_runtime, _ = self.utils.lookup_env(self.runtime_env)
        if container_runtime:
            attrs[ResourceAttributes.CONTAINER_RUNTIME] = container_runtime

        if not attrs:
            logger.debug("No container runtime variables set")

        return new_resource(attrs)
