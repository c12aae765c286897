"""
Transfer actions: what to do to each account in a batch.

An action turns an account into a ``TransferIntent`` (or ``None`` when there
is nothing to move). Composite actions such as ``Clawback`` expose several
steps that the executor runs in order for the same account.

Supports:
- Funding each account with native TAO from a funder
- Funding each account with a subnet token from a funder
- Closing an account out to a destination (skipped if already empty)
- Sweeping an account's token balance to a destination (skipped if zero)
- Clawback: token sweep followed by close-out
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

from tao_fanout.ledger import Ledger
from tao_fanout.models import Account, TokenRef, TransferIntent, TransferKind


class TransferAction:
    """Base class. Subclasses implement ``plan``."""

    def steps(self) -> list[TransferAction]:
        return [self]

    async def plan(self, account: Account, ledger: Ledger) -> Optional[TransferIntent]:
        raise NotImplementedError


@dataclass(frozen=True)
class FundNative(TransferAction):
    """Pay ``amount`` rao from ``funder`` to the account."""

    funder: Account
    amount: int

    def __post_init__(self):
        if self.amount <= 0:
            raise ValueError(f"Funding amount must be positive, got {self.amount}")

    async def plan(self, account: Account, ledger: Ledger) -> Optional[TransferIntent]:
        return TransferIntent(
            source=self.funder,
            destination=account.address,
            amount=self.amount,
            kind=TransferKind.PAYMENT,
        )


@dataclass(frozen=True)
class FundToken(TransferAction):
    """Send ``amount`` of ``token`` from ``funder`` to the account."""

    funder: Account
    token: TokenRef
    amount: int

    def __post_init__(self):
        if self.amount <= 0:
            raise ValueError(f"Token amount must be positive, got {self.amount}")

    async def plan(self, account: Account, ledger: Ledger) -> Optional[TransferIntent]:
        return TransferIntent(
            source=self.funder,
            destination=account.address,
            amount=self.amount,
            kind=TransferKind.TOKEN,
            token=self.token,
        )


@dataclass(frozen=True)
class CloseOut(TransferAction):
    """Empty the account into ``destination``. Nothing to do if the balance is zero."""

    destination: str

    async def plan(self, account: Account, ledger: Ledger) -> Optional[TransferIntent]:
        balance = await ledger.query_balance(account.address)
        if balance <= 0:
            return None
        return TransferIntent(
            source=account,
            destination=self.destination,
            amount=0,  # the whole balance goes to close_to
            kind=TransferKind.CLOSE_OUT,
            close_to=self.destination,
        )


@dataclass(frozen=True)
class SweepToken(TransferAction):
    """Move the account's entire token balance to ``destination``."""

    destination: str
    token: TokenRef

    async def plan(self, account: Account, ledger: Ledger) -> Optional[TransferIntent]:
        balance = await ledger.query_token_balance(self.token, account.address)
        if balance <= 0:
            return None
        return TransferIntent(
            source=account,
            destination=self.destination,
            amount=balance,
            kind=TransferKind.TOKEN,
            token=self.token,
        )


@dataclass(frozen=True)
class Clawback(TransferAction):
    """Sweep the token (if one is configured), then close out the native balance."""

    destination: str
    token: Optional[TokenRef] = None

    def steps(self) -> list[TransferAction]:
        steps: list[TransferAction] = []
        if self.token is not None:
            steps.append(SweepToken(self.destination, self.token))
        steps.append(CloseOut(self.destination))
        return steps

    async def plan(self, account: Account, ledger: Ledger) -> Optional[TransferIntent]:
        raise TypeError("Clawback is composite; run its steps()")
