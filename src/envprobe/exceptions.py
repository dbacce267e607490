# SPDX-FileCopyrightText: 2026 The Envprobe Authors
# SPDX-License-Identifier: Apache-2.0

"""Errors raised by envprobe resource detectors.

Expected absences (not running in Kubernetes, a non-EKS cluster, a slow
``sts:GetCallerIdentity``, access-denied listings) are never raised out of
``detect()``; they produce an empty or partial resource instead.
"""

from __future__ import annotations

from typing import Optional


class DetectionError(Exception):
    """Base class for fatal detection failures.

    ``step`` names the pipeline step that failed.
    """

    step: str = "detect"

    def __init__(self, message: str, step: Optional[str] = None) -> None:
        super().__init__(message)
        if step is not None:
            self.step = step


class NotInClusterError(DetectionError):
    """The process is not running inside any Kubernetes cluster."""

    step = "in_cluster_config"


class KubernetesConfigError(DetectionError):
    step = "in_cluster_config"


class TransportError(DetectionError):
    step = "certificate_dns_names"


class AwsConfigError(DetectionError):
    step = "aws_config"


class AwsApiError(DetectionError):
    """A non access-denied error returned by an AWS API call."""

    def __init__(self, operation: str, code: Optional[str] = None, message: Optional[str] = None) -> None:
        self.operation = operation
        self.code = code
        text = f"error issuing `{operation}`"
        if message:
            text = f"{text}: {message}"
        super().__init__(text, step=operation)


class DeadlineExceededError(DetectionError):
    """An AWS call did not complete within its deadline."""

    def __init__(self, operation: str, timeout: float) -> None:
        self.operation = operation
        self.timeout = timeout
        super().__init__(f"`{operation}` did not complete within {timeout:g}s", step=operation)


class ArnParseError(DetectionError):
    step = "account_id"


__all__ = [
    "ArnParseError",
    "AwsApiError",
    "AwsConfigError",
    "DeadlineExceededError",
    "DetectionError",
    "KubernetesConfigError",
    "NotInClusterError",
    "TransportError",
]
