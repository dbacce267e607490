# SPDX-FileCopyrightText: 2026 The Envprobe Authors
# SPDX-License-Identifier: Apache-2.0

"""envprobe - OpenTelemetry resource detectors for AWS EKS and containers.

Quick Start::

    from opentelemetry.sdk.trace import TracerProvider
    from envprobe import detect_resource

    provider = TracerProvider(resource=detect_resource())
"""

from __future__ import annotations

from envprobe._version import __version__

# Configuration
from envprobe.config import ProbeConfig

# Errors
from envprobe.exceptions import DetectionError

# Detectors
from envprobe.resources import (
    AwsEksResourceDetector,
    ContainerResourceDetector,
    collect_detectors,
    detect_resource,
    detect_resource_attrs,
)

__all__ = [
    "__version__",
    # Configuration
    "ProbeConfig",
    # Detectors
    "AwsEksResourceDetector",
    "ContainerResourceDetector",
    "collect_detectors",
    "detect_resource",
    "detect_resource_attrs",
    # Errors
    "DetectionError",
]
