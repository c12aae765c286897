"""
Data model shared by the scheduler, executor and orchestrator.

Accounts and network parameters are read-only for the life of a batch.
Intents, submission results and confirmation statuses live inside a single
executor call; outcome records are what a batch hands back.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Optional


class TransferKind(Enum):
    """What a single transfer does."""

    CLOSE_OUT = "close_out"  # empty the source into close_to and reap it
    PAYMENT = "payment"  # native TAO payment
    TOKEN = "token"  # secondary asset (subnet alpha)


class ErrorKind(Enum):
    """Classification written to the failure file."""

    REJECTION = "rejection"  # refused by the network, terminal for this batch
    NETWORK = "network"  # transient, safe to retry
    EXPIRED = "expired"  # accepted but not seen committed; may still land
    CANCELLED = "cancelled"  # never dispatched (batch deadline)
    ERROR = "error"  # anything else


class ConfirmationState(Enum):
    PENDING = "pending"
    CONFIRMED = "confirmed"
    EXPIRED = "expired"
    ERROR = "error"


@dataclass(frozen=True)
class Account:
    """An address plus its signing material. The secret never leaves the process."""

    address: str
    secret: Any = field(default=None, repr=False, compare=False)


@dataclass(frozen=True)
class TokenRef:
    """A subnet alpha position: stake held under ``hotkey`` on ``netuid``."""

    netuid: int
    hotkey: str


@dataclass(frozen=True)
class NetworkParameters:
    """
    Snapshot of the network taken once per batch.

    ``first_round``..``last_round`` is the validity window every transfer in
    the batch is built against.
    """

    network: str
    genesis_id: str
    first_round: int
    last_round: int
    tip: int = 0  # rao

    @property
    def validity_period(self) -> int:
        return self.last_round - self.first_round


@dataclass(frozen=True)
class TransferIntent:
    """One transfer to build, sign and submit."""

    source: Account
    destination: str
    amount: int  # rao (or alpha rao for TOKEN)
    kind: TransferKind
    close_to: Optional[str] = None
    token: Optional[TokenRef] = None


@dataclass(frozen=True)
class SignedTransfer:
    """A built and signed transfer. ``payload`` is whatever the ledger submits."""

    intent: TransferIntent
    payload: Any = field(repr=False)


@dataclass(frozen=True)
class SubmissionResult:
    """Either a transaction id or the network's reason for refusing it."""

    tx_id: Optional[str] = None
    rejection: Optional[str] = None

    @property
    def accepted(self) -> bool:
        return self.tx_id is not None

    @classmethod
    def ok(cls, tx_id: str) -> SubmissionResult:
        return cls(tx_id=tx_id)

    @classmethod
    def rejected(cls, reason: str) -> SubmissionResult:
        return cls(rejection=reason)


@dataclass(frozen=True)
class ConfirmationStatus:
    """Where a submitted transfer ended up."""

    state: ConfirmationState
    tx_id: str
    confirmed_round: Optional[int] = None
    rounds_polled: int = 0
    error: Optional[str] = None

    @property
    def is_terminal(self) -> bool:
        return self.state is not ConfirmationState.PENDING


@dataclass
class OutcomeRecord:
    """Terminal result for one account."""

    address: str
    success: bool
    tx_id: Optional[str] = None
    confirmed_round: Optional[int] = None
    skipped: bool = False
    error_kind: Optional[ErrorKind] = None
    error: Optional[str] = None

    @classmethod
    def confirmed(cls, address: str, tx_id: str, confirmed_round: int) -> OutcomeRecord:
        return cls(address=address, success=True, tx_id=tx_id, confirmed_round=confirmed_round)

    @classmethod
    def skip(cls, address: str) -> OutcomeRecord:
        return cls(address=address, success=True, skipped=True)

    @classmethod
    def failure(
        cls,
        address: str,
        kind: ErrorKind,
        error: str,
        tx_id: Optional[str] = None,
    ) -> OutcomeRecord:
        return cls(address=address, success=False, error_kind=kind, error=error, tx_id=tx_id)

    def to_failure_entry(self) -> dict[str, Any]:
        """Entry for the failure file. Public identity only."""
        entry: dict[str, Any] = {
            "publicKey": self.address,
            "error": self.error or "",
            "kind": self.error_kind.value if self.error_kind else ErrorKind.ERROR.value,
        }
        if self.tx_id:
            entry["txId"] = self.tx_id
        return entry


def new_run_id() -> str:
    """UTC start time of a batch run, used to keep its failure file apart from other runs."""
    return datetime.now(timezone.utc).strftime("%Y%m%dT%H%M%S%fZ")


@dataclass
class BatchResult:
    """All outcomes of one batch. Successes and failures are derived views."""

    operation: str
    records: list[OutcomeRecord] = field(default_factory=list)
    duration_seconds: float = 0.0
    run_id: str = field(default_factory=new_run_id)

    @property
    def successes(self) -> list[OutcomeRecord]:
        return [r for r in self.records if r.success]

    @property
    def failures(self) -> list[OutcomeRecord]:
        return [r for r in self.records if not r.success]

    @property
    def skipped(self) -> list[OutcomeRecord]:
        return [r for r in self.records if r.skipped]

    def summary(self) -> str:
        """Human-readable summary of the batch."""
        status = "SUCCESS" if not self.failures else "PARTIAL FAILURE"
        lines = [
            f"=== {self.operation} — {status} ===",
            f"Accounts: {len(self.records)}",
            f"Succeeded: {len(self.successes)} ({len(self.skipped)} skipped, already empty)",
            f"Failed: {len(self.failures)}",
            f"Duration: {self.duration_seconds:.1f}s",
        ]
        by_kind: dict[str, int] = {}
        for r in self.failures:
            key = r.error_kind.value if r.error_kind else ErrorKind.ERROR.value
            by_kind[key] = by_kind.get(key, 0) + 1
        for kind, count in sorted(by_kind.items()):
            lines.append(f"  {kind}: {count}")
        return "\n".join(lines)
