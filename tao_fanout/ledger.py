"""
Capabilities the fanout core consumes from a ledger.

Anything that implements these coroutines can back a batch: the Subtensor
adapter in ``tao_fanout.subtensor`` for real runs, an in-memory fake in tests.

Error contract:
    - transient I/O failures raise ``LedgerNetworkError``
    - a transfer the network refuses is returned as
      ``SubmissionResult.rejected(...)`` by ``submit``/``transfer_token``, or
      raised as ``SubmissionRejected`` by ``query_status`` when it was
      included but failed on dispatch
"""

from __future__ import annotations

from typing import Optional, Protocol

from tao_fanout.models import (
    Account,
    NetworkParameters,
    SignedTransfer,
    SubmissionResult,
    TokenRef,
    TransferIntent,
)


class Ledger(Protocol):
    async def fetch_network_parameters(self) -> NetworkParameters:
        """One-shot snapshot used by every transfer in a batch."""
        ...

    async def query_balance(self, address: str) -> int:
        """Native balance in rao."""
        ...

    async def query_token_balance(self, token: TokenRef, address: str) -> int:
        ...

    async def build_and_sign(
        self, intent: TransferIntent, params: NetworkParameters
    ) -> SignedTransfer:
        """Build a native transfer within ``params`` and sign it with the source's secret."""
        ...

    async def submit(self, signed: SignedTransfer) -> SubmissionResult:
        ...

    async def transfer_token(
        self,
        token: TokenRef,
        source: Account,
        destination: str,
        amount: int,
        params: NetworkParameters,
    ) -> SubmissionResult:
        ...

    async def query_status(self, tx_id: str) -> Optional[int]:
        """Round the transaction was committed in, or None while pending."""
        ...

    async def current_round(self) -> int:
        ...

    async def wait_for_round(self, current_round: int) -> int:
        """Block until the network is past ``current_round``; return the new round."""
        ...

    def release(self, tx_id: str) -> None:
        """Forget any tracking state for ``tx_id``; it will not be queried again."""
        ...
