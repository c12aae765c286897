"""
Confirmation polling with a round budget.

A submitted transfer starts ``pending``. Each iteration queries its status;
if it is still pending the waiter blocks until the network produces the next
block, then asks again. It ends ``confirmed`` once the ledger reports a
committed round, ``expired`` once the round budget is spent (or the
transfer's validity window has passed), and ``error`` on any I/O failure.
Terminal states never change, and the ledger is told to release the
transaction once one is reached.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Optional

from tao_fanout.exceptions import SubmissionRejected
from tao_fanout.ledger import Ledger
from tao_fanout.models import ConfirmationState, ConfirmationStatus

logger = logging.getLogger(__name__)

DEFAULT_MAX_ROUNDS = 10


class ConfirmationWaiter:
    """
    Wait for a transaction to commit, for at most ``max_rounds`` new rounds.

    Parameters:
        ledger: Provides query_status, current_round and wait_for_round.
        max_rounds: Round budget. Reaching it without a commit is ``expired``.
        valid_until: Last round of the transfer's validity window, if known.
            Once the network is past it the transfer can no longer commit.
        round_timeout: Seconds to wait for one new round before giving up
            with ``error``. None waits as long as the network takes.
    """

    def __init__(
        self,
        ledger: Ledger,
        max_rounds: int = DEFAULT_MAX_ROUNDS,
        *,
        valid_until: Optional[int] = None,
        round_timeout: Optional[float] = None,
    ):
        if max_rounds < 1:
            raise ValueError(f"max_rounds must be >= 1, got {max_rounds}")
        self.ledger = ledger
        self.max_rounds = max_rounds
        self.valid_until = valid_until
        self.round_timeout = round_timeout

    async def wait(self, tx_id: str) -> ConfirmationStatus:
        """
        Poll until ``tx_id`` reaches a terminal state.

        ``SubmissionRejected`` from the ledger (included but failed) propagates;
        every other exception becomes an ``error`` status.
        """
        polled = 0
        try:
            current = await self.ledger.current_round()
            while True:
                committed = await self.ledger.query_status(tx_id)
                if committed is not None and committed > 0:
                    logger.debug("%s confirmed in round %d", tx_id, committed)
                    return ConfirmationStatus(
                        ConfirmationState.CONFIRMED, tx_id, confirmed_round=committed, rounds_polled=polled
                    )
                if polled >= self.max_rounds:
                    return self._expired(tx_id, polled, f"not committed after {polled} rounds")
                if self.valid_until is not None and current > self.valid_until:
                    return self._expired(
                        tx_id, polled, f"validity window ended at round {self.valid_until}, now {current}"
                    )
                current = await self._next_round(current)
                polled += 1
        except SubmissionRejected:
            raise
        except Exception as e:
            logger.warning("Polling %s failed after %d rounds: %s", tx_id, polled, e)
            return ConfirmationStatus(
                ConfirmationState.ERROR, tx_id, rounds_polled=polled, error=_describe(e)
            )
        finally:
            self.ledger.release(tx_id)

    async def _next_round(self, current: int) -> int:
        if self.round_timeout is None:
            return await self.ledger.wait_for_round(current)
        return await asyncio.wait_for(self.ledger.wait_for_round(current), self.round_timeout)

    @staticmethod
    def _expired(tx_id: str, polled: int, reason: str) -> ConfirmationStatus:
        logger.warning("%s expired: %s", tx_id, reason)
        return ConfirmationStatus(ConfirmationState.EXPIRED, tx_id, rounds_polled=polled, error=reason)


def _describe(e: BaseException) -> str:
    text = str(e)
    if isinstance(e, asyncio.TimeoutError) and not text:
        return "timed out waiting for the next round"
    return text or type(e).__name__
