"""
Pytest fixtures for TAO Fanout tests. Provides an in-memory ledger whose
rounds advance only when someone waits for the next one.
"""

from __future__ import annotations

import asyncio
import itertools
from typing import Optional

import pytest

from tao_fanout.exceptions import LedgerNetworkError, SubmissionRejected
from tao_fanout.models import (
    Account,
    NetworkParameters,
    SignedTransfer,
    SubmissionResult,
    TokenRef,
    TransferIntent,
    TransferKind,
)

START_ROUND = 100
FUNDER = Account(address="FUNDER", secret="funder-secret")
TOKEN = TokenRef(netuid=12, hotkey="HOTKEY")


class FakeLedger:
    """
    Ledger double. Behaviour is configured per account address, matched
    against either side of a transfer:

        commit_delay[addr]  rounds after submission until commit (None = never)
        rejections[addr]    submission refused with this message
        submit_errors[addr] exception raised by submit
        dispatch_failures[addr]  included but failed (query_status raises)
    """

    def __init__(self, start_round: int = START_ROUND, validity_period: int = 64):
        self.round = start_round
        self.validity_period = validity_period
        self.balances: dict[str, int] = {}
        self.token_balances: dict[str, int] = {}
        self.commit_delay: dict[str, Optional[int]] = {}
        self.default_commit_delay: Optional[int] = 1
        self.rejections: dict[str, str] = {}
        self.submit_errors: dict[str, Exception] = {}
        self.dispatch_failures: dict[str, str] = {}
        self.params_error: Optional[Exception] = None
        self.status_error: Optional[Exception] = None
        self.params_fetches = 0
        self.submitted: list[TransferIntent] = []
        self.token_transfers: list[TransferIntent] = []
        self.waits = 0
        self.released: list[str] = []
        self._pending: dict[str, tuple[str, Optional[int]]] = {}
        self._ids = itertools.count(1)

    def _rule(self, table: dict, intent: TransferIntent):
        for addr in (intent.source.address, intent.destination):
            if addr in table:
                return addr, table[addr]
        return None, None

    async def fetch_network_parameters(self) -> NetworkParameters:
        self.params_fetches += 1
        if self.params_error is not None:
            raise self.params_error
        return NetworkParameters(
            network="fake",
            genesis_id="0xgenesis",
            first_round=self.round,
            last_round=self.round + self.validity_period,
        )

    async def query_balance(self, address: str) -> int:
        await asyncio.sleep(0)
        return self.balances.get(address, 0)

    async def query_token_balance(self, token: TokenRef, address: str) -> int:
        await asyncio.sleep(0)
        return self.token_balances.get(address, 0)

    async def build_and_sign(self, intent: TransferIntent, params: NetworkParameters) -> SignedTransfer:
        return SignedTransfer(intent=intent, payload=f"signed:{intent.source.address}->{intent.destination}")

    async def submit(self, signed: SignedTransfer) -> SubmissionResult:
        intent = signed.intent
        await asyncio.sleep(0)
        _, error = self._rule(self.submit_errors, intent)
        if error is not None:
            raise error
        _, reason = self._rule(self.rejections, intent)
        if reason is not None:
            return SubmissionResult.rejected(reason)

        self.submitted.append(intent)
        tx_id = f"tx{next(self._ids)}"
        addr, delay = self._rule(self.commit_delay, intent)
        if addr is None:
            delay = self.default_commit_delay
        target = None if delay is None else self.round + delay
        key = intent.source.address if intent.kind is not TransferKind.PAYMENT else intent.destination
        self._pending[tx_id] = (key, target)
        return SubmissionResult.ok(tx_id)

    async def transfer_token(self, token, source, destination, amount, params) -> SubmissionResult:
        intent = TransferIntent(
            source=source, destination=destination, amount=amount, kind=TransferKind.TOKEN, token=token
        )
        self.token_transfers.append(intent)
        return await self.submit(SignedTransfer(intent=intent, payload="token"))

    async def query_status(self, tx_id: str) -> Optional[int]:
        await asyncio.sleep(0)
        if self.status_error is not None:
            raise self.status_error
        key, target = self._pending[tx_id]
        if target is None or self.round < target:
            return None
        if key in self.dispatch_failures:
            raise SubmissionRejected(self.dispatch_failures[key])
        return target

    async def current_round(self) -> int:
        return self.round

    async def wait_for_round(self, current_round: int) -> int:
        await asyncio.sleep(0)
        self.waits += 1
        self.round = max(self.round, current_round + 1)
        return self.round

    def release(self, tx_id: str) -> None:
        self.released.append(tx_id)
        self._pending.pop(tx_id, None)


@pytest.fixture
def ledger() -> FakeLedger:
    return FakeLedger()


@pytest.fixture
def network_error() -> LedgerNetworkError:
    return LedgerNetworkError("connection reset by peer")
