# SPDX-FileCopyrightText: 2026 The Envprobe Authors
# SPDX-License-Identifier: Apache-2.0

from __future__ import annotations

from typing import Any, Dict

from opentelemetry.sdk.resources import Resource

SCHEMA_URL = "https://opentelemetry.io/schemas/1.34.0"


def new_resource(attrs: Dict[str, Any]) -> Resource:
    """Wrap *attrs* in a Resource, or return the canonical empty one."""
    if not attrs:
        return Resource.get_empty()
    return Resource(attrs, schema_url=SCHEMA_URL)
