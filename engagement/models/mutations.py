from __future__ import annotations

from dataclasses import dataclass
from typing import Literal, Optional

MutationKind = Literal["incr", "set"]


@dataclass(frozen=True)
class CounterMutation:
    """
    A counter-store write requested by a pure decision.

    Decisions return these instead of touching the store; an effect applier
    executes them. Every mutation carries its own expiry so no key is ever
    written without one.
    """

    kind: MutationKind
    key: str
    ttl_seconds: int
    value: Optional[str] = None

    @classmethod
    def increment(cls, key: str, ttl_seconds: int) -> "CounterMutation":
        return cls(kind="incr", key=key, ttl_seconds=ttl_seconds)

    @classmethod
    def set_value(cls, key: str, value: str, ttl_seconds: int) -> "CounterMutation":
        return cls(kind="set", key=key, ttl_seconds=ttl_seconds, value=value)
