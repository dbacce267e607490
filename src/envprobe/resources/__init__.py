# SPDX-FileCopyrightText: 2026 The Envprobe Authors
# SPDX-License-Identifier: Apache-2.0

"""Resource detection for EKS and containerised workloads.

Detectors are plain ``opentelemetry.sdk.resources.ResourceDetector``
implementations.  They are also registered under the
``opentelemetry_resource_detector`` entry point group, so the SDK picks
them up from ``OTEL_EXPERIMENTAL_RESOURCE_DETECTORS=eks,container``.

Use them directly::

    from opentelemetry.sdk.resources import get_aggregated_resources
    from envprobe.resources import AwsEksResourceDetector

    resource = get_aggregated_resources([AwsEksResourceDetector()])

or let :func:`detect_resource` build them from :class:`~envprobe.config.ProbeConfig`.
"""

from __future__ import annotations

import logging
from typing import Any, Callable, Dict, List, Optional

from opentelemetry.sdk.resources import Resource, ResourceDetector, get_aggregated_resources

from envprobe.config import ProbeConfig
from envprobe.resources.container import ContainerResourceDetector
from envprobe.resources.eks import AwsEksResourceDetector

logger = logging.getLogger(__name__)


def _container(config: ProbeConfig) -> ResourceDetector:
    return ContainerResourceDetector(
        raise_on_error=config.raise_on_error,
        id_env=config.container_id_env,
        runtime_env=config.container_runtime_env,
    )


def _eks(config: ProbeConfig) -> ResourceDetector:
    return AwsEksResourceDetector(
        raise_on_error=config.raise_on_error,
        sts_timeout=config.sts_timeout,
        page_size=config.eks_page_size,
    )


# name -> factory, tried in the order the config lists them.
_DETECTOR_REGISTRY: Dict[str, Callable[[ProbeConfig], ResourceDetector]] = {
    "container": _container,
    "eks": _eks,
}


def collect_detectors(config: Optional[ProbeConfig] = None) -> List[ResourceDetector]:
    """Return instances of the detectors named in *config*.

    Unknown names are logged and skipped.
    """
    cfg = config or ProbeConfig()
    detectors: List[ResourceDetector] = []
    for name in cfg.detectors:
        factory = _DETECTOR_REGISTRY.get(name)
        if factory is None:
            logger.warning("Unknown resource detector %r, skipping", name)
            continue
        detectors.append(factory(cfg))

    if detectors:
        names = [type(d).__name__ for d in detectors]
        logger.debug("Configured resource detectors: %s", names)

    return detectors


def detect_resource(
    config: Optional[ProbeConfig] = None,
    initial_resource: Optional[Resource] = None,
) -> Resource:
    """Run the configured detectors and merge their results.

    Failures are handled by the OpenTelemetry aggregator: re-raised when
    ``raise_on_error`` is set, otherwise logged and skipped.
    """
    cfg = config or ProbeConfig()
    return get_aggregated_resources(
        collect_detectors(cfg),
        initial_resource=initial_resource,
        timeout=cfg.detection_timeout,
    )


def detect_resource_attrs(config: Optional[ProbeConfig] = None) -> Dict[str, Any]:
    """Detect environment attributes as a flat dict."""
    return dict(detect_resource(config, initial_resource=Resource.get_empty()).attributes)


__all__ = [
    "AwsEksResourceDetector",
    "ContainerResourceDetector",
    "collect_detectors",
    "detect_resource",
    "detect_resource_attrs",
]
