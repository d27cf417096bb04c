"""Policy configuration and enforcement helpers."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Literal

from envsnap.errors import PolicyError, ValidationError

MutableRevisionPolicy = Literal["warn", "error", "allow"]
NetworkMode = Literal["online", "offline"]

DEFAULT_MAX_CONCURRENCY = 4


@dataclass(frozen=True, slots=True)
class Policy:
    require_integrity: bool = True
    network_mode: NetworkMode = "online"
    mutable_revision_policy: MutableRevisionPolicy = "warn"
    max_concurrency: int = DEFAULT_MAX_CONCURRENCY

    def __post_init__(self) -> None:
        if self.max_concurrency < 1:
            raise ValidationError(
                "Policy max_concurrency must be at least 1.",
                context={"max_concurrency": str(self.max_concurrency)},
            )


def ensure_network_allowed(*, policy: Policy, operation: str, source: str = "") -> None:
    if policy.network_mode == "offline":
        raise PolicyError(
            "Network operations are disabled by policy.",
            hint="Switch policy.network_mode to 'online' or prefill the cache.",
            context={"operation": operation, "source": source},
        )


def mutable_revision_policy_from(policy: Policy) -> MutableRevisionPolicy:
    return policy.mutable_revision_policy
