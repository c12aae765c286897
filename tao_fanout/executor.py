"""
One unit of work: plan, sign, submit and confirm the transfer(s) for a
single account, and turn whatever happens into an ``OutcomeRecord``.

Nothing raised by the ledger or the action escapes ``execute``; errors are
classified and returned as data so sibling executions are never affected.
"""

from __future__ import annotations

import logging
from typing import Optional

from tao_fanout.actions import TransferAction
from tao_fanout.confirmation import ConfirmationWaiter
from tao_fanout.exceptions import LedgerNetworkError, SubmissionRejected
from tao_fanout.ledger import Ledger
from tao_fanout.models import (
    Account,
    ConfirmationState,
    ErrorKind,
    NetworkParameters,
    OutcomeRecord,
    SubmissionResult,
    TransferIntent,
    TransferKind,
)

logger = logging.getLogger(__name__)


class TransferExecutor:
    """Runs an action against one account at a time."""

    def __init__(self, ledger: Ledger, waiter: ConfirmationWaiter, operation: str = "transfer"):
        self.ledger = ledger
        self.waiter = waiter
        self.operation = operation

    async def execute(
        self, account: Account, action: TransferAction, params: NetworkParameters
    ) -> OutcomeRecord:
        """
        Run every step of ``action`` for ``account``, stopping at the first failure.

        The account succeeds if every step confirmed or had nothing to do; it
        is reported as skipped only if no step moved anything.
        """
        last: Optional[OutcomeRecord] = None
        try:
            for step in action.steps():
                record = await self._run_step(account, step, params)
                if not record.success:
                    self._log(record)
                    return record
                if not record.skipped or last is None:
                    last = record
        except SubmissionRejected as e:
            last = OutcomeRecord.failure(account.address, ErrorKind.REJECTION, str(e))
        except LedgerNetworkError as e:
            last = OutcomeRecord.failure(account.address, ErrorKind.NETWORK, str(e))
        except Exception as e:
            logger.exception("Unexpected error processing %s", account.address)
            last = OutcomeRecord.failure(account.address, ErrorKind.ERROR, f"{type(e).__name__}: {e}")
        if last is None:
            last = OutcomeRecord.skip(account.address)
        self._log(last)
        return last

    async def _run_step(
        self, account: Account, step: TransferAction, params: NetworkParameters
    ) -> OutcomeRecord:
        intent = await step.plan(account, self.ledger)
        if intent is None:
            return OutcomeRecord.skip(account.address)

        submission = await self._submit(intent, params)
        if not submission.accepted:
            return OutcomeRecord.failure(
                account.address, ErrorKind.REJECTION, submission.rejection or "rejected"
            )

        try:
            status = await self.waiter.wait(submission.tx_id)
        except SubmissionRejected as e:
            return OutcomeRecord.failure(
                account.address, ErrorKind.REJECTION, str(e), tx_id=submission.tx_id
            )

        if status.state is ConfirmationState.CONFIRMED:
            return OutcomeRecord.confirmed(account.address, status.tx_id, status.confirmed_round)
        if status.state is ConfirmationState.EXPIRED:
            return OutcomeRecord.failure(
                account.address, ErrorKind.EXPIRED, status.error or "expired", tx_id=status.tx_id
            )
        return OutcomeRecord.failure(
            account.address, ErrorKind.NETWORK, status.error or "polling failed", tx_id=status.tx_id
        )

    async def _submit(self, intent: TransferIntent, params: NetworkParameters) -> SubmissionResult:
        if intent.kind is TransferKind.TOKEN:
            return await self.ledger.transfer_token(
                intent.token, intent.source, intent.destination, intent.amount, params
            )
        signed = await self.ledger.build_and_sign(intent, params)
        return await self.ledger.submit(signed)

    def _log(self, record: OutcomeRecord) -> None:
        extra = {
            "address": record.address,
            "operation": self.operation,
            "tx_id": record.tx_id,
            "error_kind": record.error_kind.value if record.error_kind else None,
        }
        if record.skipped:
            logger.info("%s: %s already empty, skipped", self.operation, record.address, extra=extra)
        elif record.success:
            logger.info(
                "%s: %s confirmed in round %s (tx %s)",
                self.operation, record.address, record.confirmed_round, record.tx_id, extra=extra,
            )
        else:
            logger.error(
                "%s: %s failed (%s): %s",
                self.operation, record.address, extra["error_kind"], record.error, extra=extra,
            )
