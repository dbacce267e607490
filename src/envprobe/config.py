# SPDX-FileCopyrightText: 2026 The Envprobe Authors
# SPDX-License-Identifier: Apache-2.0

"""Configuration for envprobe detectors.

Configuration precedence (highest to lowest):
1. Code arguments (explicit values passed to ProbeConfig)
2. Environment variables (ENVPROBE_*)
3. YAML config file (envprobe.yaml or specified path)
4. Built-in defaults
"""

from __future__ import annotations

import logging
import os
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional

logger = logging.getLogger(__name__)

DEFAULT_DETECTORS = ["container", "eks"]

# Names set by the NRI runtime plugin in every container it starts.
CONTAINER_ID_ENV = "CONTAINER_ID"
CONTAINER_RUNTIME_ENV = "CONTAINER_RUNTIME"


@dataclass
class ProbeConfig:
    """Configuration for the envprobe resource detectors.

    Example::

        >>> config = ProbeConfig(detectors=["eks"], sts_timeout_millis=250)

        >>> # Or load from YAML
        >>> config = ProbeConfig.from_yaml("config/envprobe.yaml")
    """

    # Detectors to run, by registry name
    detectors: Optional[List[str]] = None

    # Forwarded to ResourceDetector; when False the OTel aggregator logs and skips failures
    raise_on_error: Optional[bool] = None

    # Overall budget for get_aggregated_resources, in seconds
    detection_timeout: Optional[float] = None

    # EKS detector
    sts_timeout_millis: Optional[int] = None
    eks_page_size: Optional[int] = None

    # Container detector
    container_id_env: Optional[str] = None
    container_runtime_env: Optional[str] = None

    _config_file: Optional[str] = field(default=None, repr=False)

    def __post_init__(self) -> None:
        """Apply environment variable defaults."""
        if self.detectors is None:
            env_detectors = os.getenv("ENVPROBE_DETECTORS")
            if env_detectors is not None:
                self.detectors = [name.strip() for name in env_detectors.split(",") if name.strip()]
            else:
                self.detectors = list(DEFAULT_DETECTORS)

        if self.raise_on_error is None:
            env_raise = os.getenv("ENVPROBE_RAISE_ON_ERROR")
            self.raise_on_error = env_raise is not None and env_raise.lower() in ("true", "1", "yes")

        if self.detection_timeout is None:
            self.detection_timeout = float(os.getenv("ENVPROBE_DETECTION_TIMEOUT", "5"))

        if self.sts_timeout_millis is None:
            self.sts_timeout_millis = int(os.getenv("ENVPROBE_STS_TIMEOUT_MS", "500"))

        if self.eks_page_size is None:
            self.eks_page_size = int(os.getenv("ENVPROBE_EKS_PAGE_SIZE", "20"))

        if self.container_id_env is None:
            self.container_id_env = os.getenv("ENVPROBE_CONTAINER_ID_ENV", CONTAINER_ID_ENV)

        if self.container_runtime_env is None:
            self.container_runtime_env = os.getenv("ENVPROBE_CONTAINER_RUNTIME_ENV", CONTAINER_RUNTIME_ENV)

    # ------------------------------------------------------------------
    # YAML loading
    # ------------------------------------------------------------------

    @classmethod
    def from_yaml(cls, path: Optional[str] = None) -> ProbeConfig:
        """Load configuration from a YAML file.

        Supports environment variable interpolation using ``${VAR_NAME}`` syntax.

        Raises:
            FileNotFoundError: If config file doesn't exist.
            ValueError: If YAML is malformed.
        """
        if path is None:
            raise FileNotFoundError("No config file path provided")

        resolved = Path(path)
        if not resolved.exists():
            raise FileNotFoundError(f"Config file not found: {resolved}")

        import yaml

        with open(resolved) as fh:
            raw_content = fh.read()

        content = _interpolate_env_vars(raw_content)

        try:
            data = yaml.safe_load(content)
        except yaml.YAMLError as exc:
            raise ValueError(f"Invalid YAML in {resolved}: {exc}") from exc

        if data is None:
            data = {}

        return cls._from_dict(data, config_file=str(resolved))

    @classmethod
    def from_file_or_env(cls, path: Optional[str] = None) -> ProbeConfig:
        """Load config from file if exists, otherwise use environment variables.

        Search order:
        1. Explicit *path* argument
        2. ``ENVPROBE_CONFIG_FILE`` env var
        3. ``./envprobe.yaml``
        4. ``./config/envprobe.yaml``
        5. Falls back to env-only config
        """
        search_paths: List[Path] = []

        if path:
            search_paths.append(Path(path))

        env_path = os.getenv("ENVPROBE_CONFIG_FILE")
        if env_path:
            search_paths.append(Path(env_path))

        search_paths.extend(
            [
                Path("envprobe.yaml"),
                Path("envprobe.yml"),
                Path("config/envprobe.yaml"),
                Path("config/envprobe.yml"),
            ]
        )

        for candidate in search_paths:
            if candidate.exists():
                logger.info("Loading config from: %s", candidate)
                return cls.from_yaml(str(candidate))

        logger.debug("No config file found, using environment variables only")
        return cls()

    @classmethod
    def _from_dict(
        cls,
        data: Dict[str, Any],
        config_file: Optional[str] = None,
    ) -> ProbeConfig:
        """Create config from dictionary (parsed YAML).

        Values absent from the file fall through to environment variables.
        """
        eks = data.get("eks", {})
        container = data.get("container", {})

        return cls(
            detectors=data.get("detectors"),
            raise_on_error=data.get("raise_on_error"),
            detection_timeout=data.get("timeout"),
            sts_timeout_millis=eks.get("sts_timeout_ms"),
            eks_page_size=eks.get("page_size"),
            container_id_env=container.get("id_env"),
            container_runtime_env=container.get("runtime_env"),
            _config_file=config_file,
        )

    @property
    def sts_timeout(self) -> float:
        """STS deadline in seconds."""
        return self.sts_timeout_millis / 1000.0

    def to_dict(self) -> Dict[str, Any]:
        """Export configuration as dictionary."""
        return {
            "detectors": list(self.detectors),
            "raise_on_error": self.raise_on_error,
            "timeout": self.detection_timeout,
            "eks": {
                "sts_timeout_ms": self.sts_timeout_millis,
                "page_size": self.eks_page_size,
            },
            "container": {
                "id_env": self.container_id_env,
                "runtime_env": self.container_runtime_env,
            },
        }


def _interpolate_env_vars(content: str) -> str:
    """Interpolate ``${VAR_NAME}`` and ``${VAR_NAME:-default}`` in *content*."""
    pattern = re.compile(r"\$\{([A-Za-z_][A-Za-z0-9_]*)(?::-([^}]*))?\}")

    def _replace(match: re.Match) -> str:  # type: ignore[type-arg]
        var_name = match.group(1)
        default = match.group(2)
        value = os.getenv(var_name)
        if value is not None:
            return value
        if default is not None:
            return default
        return match.group(0)

    return pattern.sub(_replace, content)
