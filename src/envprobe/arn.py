# SPDX-FileCopyrightText: 2026 The Envprobe Authors
# SPDX-License-Identifier: Apache-2.0

"""Amazon Resource Name parsing."""

from __future__ import annotations

from dataclasses import dataclass

from envprobe.exceptions import ArnParseError

_ARN_PREFIX = "arn:"
_ARN_SECTIONS = 6


@dataclass(frozen=True)
class Arn:
    """A parsed ``arn:partition:service:region:account-id:resource`` string."""

    partition: str
    service: str
    region: str
    account_id: str
    resource: str

    def __str__(self) -> str:
        return ":".join(["arn", self.partition, self.service, self.region, self.account_id, self.resource])


def parse_arn(value: str) -> Arn:
    """Parse *value* into an :class:`Arn`.

    The resource section may itself contain ``:``.

    Raises:
        ArnParseError: If *value* is not prefixed with ``arn:`` or has fewer
            than six sections.
    """
    if not value.startswith(_ARN_PREFIX):
        raise ArnParseError(f"arn: invalid prefix in {value!r}")

    sections = value.split(":", _ARN_SECTIONS - 1)
    if len(sections) != _ARN_SECTIONS:
        raise ArnParseError(f"arn: not enough sections in {value!r}")

    _, partition, service, region, account_id, resource = sections
    return Arn(
        partition=partition,
        service=service,
        region=region,
        account_id=account_id,
        resource=resource,
    )
