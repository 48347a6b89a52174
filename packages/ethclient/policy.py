from __future__ import annotations

import asyncio
from enum import Enum


class FailoverDecision(str, Enum):
    NO_FAILOVER = "NO_FAILOVER"
    FAILOVER = "FAILOVER"


def classify(exc: BaseException) -> FailoverDecision:
    """
    Pure failover policy. No side effects, no IO.

    Caller cancellation (including an expired asyncio.timeout / wait_for
    deadline, which reaches the callee as CancelledError) means nobody is
    waiting for the answer, so the secondary is not tried. Any other error,
    remote or transport, fails over.
    """
    if isinstance(exc, asyncio.CancelledError):
        return FailoverDecision.NO_FAILOVER
    return FailoverDecision.FAILOVER
