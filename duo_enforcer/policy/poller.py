"""
Challenge Poller
================
Bounded polling of an asynchronous challenge until it resolves.
"""

import asyncio
import time
from typing import Awaitable, Callable
import structlog

from ..errors import MalformedResponse
from ..models import ReasonCode, Verdict, VerdictStatus

logger = structlog.get_logger(__name__)


class ChallengePoller:
    """
    Poll ``auth_status`` for a pending verdict.

    The loop is bounded twice: by ``max_polls`` and by a wall-clock
    deadline. Whichever runs out first resolves the verdict as
    ERROR/timeout. Transport errors propagate to the caller.
    """

    def __init__(
        self,
        transport,
        interval: float = 1.5,
        timeout: float = 60.0,
        max_polls: int = 60,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.transport = transport
        self.interval = interval
        self.timeout = timeout
        self.max_polls = max_polls
        self.sleep = sleep
        self.clock = clock

    async def poll(self, pending: Verdict) -> Verdict:
        """
        Drive a CHALLENGE_PENDING verdict to its final status.

        Args:
            pending: Verdict carrying the challenge transaction id

        Returns:
            ALLOW or DENY from the provider, or ERROR/timeout
        """
        deadline = self.clock() + self.timeout
        polls = 0

        while polls < self.max_polls:
            remaining = deadline - self.clock()
            if remaining <= 0:
                break

            polls += 1
            try:
                response = await asyncio.wait_for(
                    self.transport.call("auth_status", {"txid": pending.txid}),
                    timeout=remaining,
                )
            except asyncio.TimeoutError:
                break

            result = (response.result or "").lower()
            if result == "allow":
                logger.info("Challenge approved", txid=pending.txid, polls=polls)
                return pending.resolve(
                    VerdictStatus.ALLOW,
                    ReasonCode.ALLOWED,
                    definitive=True,
                    message=response.status_msg,
                )
            if result == "deny":
                reason = ReasonCode.FRAUD if response.status == "fraud" else ReasonCode.REJECTED
                logger.info("Challenge denied", txid=pending.txid, status=response.status, polls=polls)
                return pending.resolve(
                    VerdictStatus.DENY,
                    reason,
                    definitive=True,
                    message=response.status_msg,
                )
            if result != "waiting":
                raise MalformedResponse(
                    f"Unexpected auth_status result: {response.result!r}",
                    endpoint="auth_status",
                )

            remaining = deadline - self.clock()
            if remaining <= 0 or polls >= self.max_polls:
                break
            await self.sleep(min(self.interval, remaining))

        logger.warning("Challenge timed out", txid=pending.txid, polls=polls)
        return pending.resolve(
            VerdictStatus.ERROR,
            ReasonCode.TIMEOUT,
            message=f"No answer after {polls} polls",
        )
