"""
Core batch logic for TAO Fanout.

Drives one transfer action over a collection of accounts: takes a single
network snapshot, schedules one executor call per account through the
rate-limited scheduler, and collects exactly one OutcomeRecord per account.

Supports:
- Concurrency and dispatch-rate limits per batch
- A per-transfer confirmation round budget
- A batch deadline after which no new transfers are started
- Several actions over the same accounts, run one after the other
"""

from __future__ import annotations

import asyncio
import functools
import logging
import time
from dataclasses import dataclass
from typing import Callable, Optional, Sequence

from tao_fanout.actions import TransferAction
from tao_fanout.confirmation import DEFAULT_MAX_ROUNDS, ConfirmationWaiter
from tao_fanout.exceptions import BatchSetupError, SchedulerClosed
from tao_fanout.executor import TransferExecutor
from tao_fanout.ledger import Ledger
from tao_fanout.models import Account, BatchResult, ErrorKind, OutcomeRecord, new_run_id
from tao_fanout.scheduler import RateLimitedScheduler, TaskOutcome

logger = logging.getLogger(__name__)

# 10 transfers in flight, 100ms between dispatches (10 tx/s).
DEFAULT_MAX_CONCURRENT = 10
DEFAULT_MIN_INTERVAL = 0.1


@dataclass(frozen=True)
class BatchSettings:
    """Limits applied to every batch an orchestrator runs."""

    max_concurrent: int = DEFAULT_MAX_CONCURRENT
    min_interval: float = DEFAULT_MIN_INTERVAL
    max_rounds: int = DEFAULT_MAX_ROUNDS
    round_timeout: Optional[float] = None
    deadline: Optional[float] = None  # seconds; stop dispatching after this


class BatchOrchestrator:
    """
    Run transfer actions over accounts against one ledger.

    Each ``run`` builds its own scheduler and executor, so consecutive
    batches share no mutable state.
    """

    def __init__(self, ledger: Ledger, settings: Optional[BatchSettings] = None):
        self.ledger = ledger
        self.settings = settings or BatchSettings()

    async def run(
        self,
        accounts: Sequence[Account],
        action: TransferAction,
        *,
        operation: str,
    ) -> BatchResult:
        """
        Execute ``action`` for every account and wait for all of them to settle.

        Parameters:
            accounts: Accounts to process. One record per entry comes back.
            action: What to do to each account.
            operation: Tag naming this batch (logs and the failure file).

        Raises:
            BatchSetupError: The network snapshot could not be fetched.
        """
        start_time = time.time()
        run_id = new_run_id()
        accounts = list(accounts)
        if not accounts:
            logger.info("%s: no accounts, nothing to do", operation)
            return BatchResult(operation=operation, run_id=run_id)

        try:
            params = await self.ledger.fetch_network_parameters()
        except Exception as e:
            raise BatchSetupError(f"{operation}: cannot fetch network parameters: {e}") from e

        logger.info(
            "%s: %d accounts, validity rounds %d-%d on %s",
            operation, len(accounts), params.first_round, params.last_round, params.network,
        )

        s = self.settings
        waiter = ConfirmationWaiter(
            self.ledger,
            s.max_rounds,
            valid_until=params.last_round,
            round_timeout=s.round_timeout,
        )
        executor = TransferExecutor(self.ledger, waiter, operation=operation)
        scheduler = RateLimitedScheduler(s.max_concurrent, s.min_interval)

        try:
            futures = [
                scheduler.schedule(functools.partial(executor.execute, account, action, params))
                for account in accounts
            ]
            outcomes = await self._settle(futures, scheduler, operation)
        finally:
            await scheduler.shutdown()

        records = [
            self._to_record(account, outcome) for account, outcome in zip(accounts, outcomes)
        ]
        result = BatchResult(
            operation=operation,
            records=records,
            duration_seconds=time.time() - start_time,
            run_id=run_id,
        )
        logger.info(
            "%s: %d succeeded, %d failed",
            operation, len(result.successes), len(result.failures),
        )
        return result

    async def run_sequence(
        self,
        accounts: Sequence[Account],
        steps: Sequence[tuple[str, TransferAction]],
        on_result: Optional[Callable[[BatchResult], None]] = None,
    ) -> list[BatchResult]:
        """
        Run several (operation, action) batches over the same accounts, in order.

        ``on_result`` is called with each batch's result as soon as it
        settles, so a later batch that cannot start (``BatchSetupError``)
        does not lose the outcomes of the ones already run.
        """
        results = []
        for operation, action in steps:
            result = await self.run(accounts, action, operation=operation)
            results.append(result)
            if on_result is not None:
                on_result(result)
        return results

    async def _settle(
        self,
        futures: list[asyncio.Future],
        scheduler: RateLimitedScheduler,
        operation: str,
    ) -> list[TaskOutcome]:
        gathered = asyncio.gather(*futures)
        deadline = self.settings.deadline
        if deadline is None:
            return await gathered
        try:
            return await asyncio.wait_for(asyncio.shield(gathered), deadline)
        except asyncio.TimeoutError:
            logger.warning(
                "%s: deadline of %.1fs reached, no new transfers will start", operation, deadline
            )
            scheduler.stop_dispatching()
            # In-flight transfers finish or hit their own round budget.
            return await gathered

    @staticmethod
    def _to_record(account: Account, outcome: TaskOutcome) -> OutcomeRecord:
        if outcome.ok:
            return outcome.value
        if isinstance(outcome.error, SchedulerClosed):
            return OutcomeRecord.failure(
                account.address, ErrorKind.CANCELLED, f"not attempted: {outcome.error}"
            )
        # Executors convert their own errors; this is a bug in an action or ledger.
        return OutcomeRecord.failure(
            account.address, ErrorKind.ERROR, f"{type(outcome.error).__name__}: {outcome.error}"
        )
