"""
Ledger backed by a Bittensor (Substrate) node through ``bittensor.AsyncSubtensor``.

Rounds are block numbers. The validity window of a batch becomes a mortal
era (``period`` blocks starting at ``first_round``) on every extrinsic, so a
transfer that has not landed by ``last_round`` can never land.

Transfers map to:
- PAYMENT   -> Balances.transfer_keep_alive
- CLOSE_OUT -> Balances.transfer_all (keep_alive=False, reaps the source)
- TOKEN     -> SubtensorModule.transfer_stake on (netuid, hotkey)

Nonces are read from the node once per sender and then assigned locally;
a sender whose transfer was refused or never landed re-reads it.
"""

from __future__ import annotations

import asyncio
import logging
from contextlib import asynccontextmanager
from typing import Any, Optional

import bittensor as bt
from async_substrate_interface.errors import ExtrinsicNotFound, SubstrateRequestException
from bittensor.utils.balance import Balance
from bittensor_wallet import Keypair
from websockets.exceptions import WebSocketException

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

logger = logging.getLogger(__name__)

DEFAULT_VALIDITY_PERIOD = 64  # blocks; Substrate eras are powers of two

_NETWORK_ERRORS = (OSError, ConnectionError, asyncio.TimeoutError, WebSocketException)


def tao_to_rao(amount: float) -> int:
    """Amount in RAO (1 TAO = 1e9 RAO)."""
    return Balance.from_tao(amount).rao


def funder_account(wallet_name: str) -> Account:
    """The coldkey of a local bittensor wallet as a signing Account."""
    wallet = bt.Wallet(name=wallet_name)
    wallet.unlock_coldkey()
    return Account(address=wallet.coldkeypub.ss58_address, secret=wallet.coldkey)


def _keypair(account: Account) -> Keypair:
    secret = account.secret
    if isinstance(secret, Keypair):
        return secret
    if isinstance(secret, str) and secret:
        seed = secret if secret.startswith("0x") else f"0x{secret}"
        return Keypair.create_from_seed(seed)
    raise ValueError(f"No signing key for {account.address}")


def _format_dispatch_error(error: Any) -> str:
    if isinstance(error, dict):
        name = error.get("name") or error.get("type") or "DispatchError"
        docs = error.get("docs")
        if isinstance(docs, list):
            docs = " ".join(docs)
        return f"{name}: {docs}" if docs else str(name)
    return str(error)


@asynccontextmanager
async def _network_call(what: str):
    try:
        yield
    except _NETWORK_ERRORS as e:
        raise LedgerNetworkError(f"{what}: {e or type(e).__name__}") from e


class SubtensorLedger:
    """
    Ledger implementation over an AsyncSubtensor connection.

    Use as an async context manager:

        async with SubtensorLedger(network="test") as ledger:
            result = await BatchOrchestrator(ledger).run(accounts, action, operation="fund_native")
    """

    def __init__(
        self,
        network: str = "finney",
        validity_period: int = DEFAULT_VALIDITY_PERIOD,
        tip: int = 0,
    ):
        self.network = network
        self.validity_period = validity_period
        self.tip = tip
        self._subtensor: Optional[bt.AsyncSubtensor] = None
        # tx hash -> first block not yet scanned for it
        self._scan_from: dict[str, int] = {}
        # tx hash -> signing address, until the tx is released
        self._senders: dict[str, str] = {}
        # address -> next nonce to sign with
        self._nonces: dict[str, int] = {}
        self._nonce_lock = asyncio.Lock()

    async def __aenter__(self) -> SubtensorLedger:
        self._subtensor = bt.AsyncSubtensor(network=self.network)
        await self._subtensor.__aenter__()
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        subtensor, self._subtensor = self._subtensor, None
        if subtensor is not None:
            await subtensor.__aexit__(exc_type, exc, tb)

    @property
    def subtensor(self) -> bt.AsyncSubtensor:
        if self._subtensor is None:
            raise RuntimeError("SubtensorLedger used outside 'async with'")
        return self._subtensor

    async def fetch_network_parameters(self) -> NetworkParameters:
        async with _network_call("fetch network parameters"):
            block = await self.subtensor.get_current_block()
            genesis = await self.subtensor.substrate.get_block_hash(0)
        return NetworkParameters(
            network=self.network,
            genesis_id=genesis,
            first_round=block,
            last_round=block + self.validity_period,
            tip=self.tip,
        )

    async def query_balance(self, address: str) -> int:
        async with _network_call(f"balance of {address}"):
            balance = await self.subtensor.get_balance(address)
        return balance.rao

    async def query_token_balance(self, token: TokenRef, address: str) -> int:
        async with _network_call(f"stake of {address} on netuid {token.netuid}"):
            stake = await self.subtensor.get_stake(
                coldkey_ss58=address,
                hotkey_ss58=token.hotkey,
                netuid=token.netuid,
            )
        return stake.rao

    async def build_and_sign(
        self, intent: TransferIntent, params: NetworkParameters
    ) -> SignedTransfer:
        if intent.kind is TransferKind.PAYMENT:
            call_module, call_function = "Balances", "transfer_keep_alive"
            call_params = {"dest": intent.destination, "value": intent.amount}
        elif intent.kind is TransferKind.CLOSE_OUT:
            call_module, call_function = "Balances", "transfer_all"
            call_params = {"dest": intent.close_to or intent.destination, "keep_alive": False}
        elif intent.kind is TransferKind.TOKEN:
            call_module, call_function = "SubtensorModule", "transfer_stake"
            call_params = {
                "destination_coldkey": intent.destination,
                "hotkey": intent.token.hotkey,
                "origin_netuid": intent.token.netuid,
                "destination_netuid": intent.token.netuid,
                "alpha_amount": intent.amount,
            }
        else:
            raise ValueError(f"Unsupported transfer kind: {intent.kind}")

        keypair = _keypair(intent.source)
        address = intent.source.address
        substrate = self.subtensor.substrate
        async with _network_call(f"build {call_module}.{call_function}"):
            call = await substrate.compose_call(
                call_module=call_module,
                call_function=call_function,
                call_params=call_params,
            )
            nonce = await self._next_nonce(address)
            try:
                extrinsic = await substrate.create_signed_extrinsic(
                    call=call,
                    keypair=keypair,
                    era={"period": params.validity_period, "current": params.first_round},
                    nonce=nonce,
                    tip=params.tip,
                )
            except Exception:
                self._forget_nonce(address)
                raise
        return SignedTransfer(intent=intent, payload=extrinsic)

    async def submit(self, signed: SignedTransfer) -> SubmissionResult:
        substrate = self.subtensor.substrate
        address = signed.intent.source.address
        try:
            async with _network_call("submit"):
                block = await self.subtensor.get_current_block()
                receipt = await substrate.submit_extrinsic(
                    signed.payload,
                    wait_for_inclusion=False,
                    wait_for_finalization=False,
                )
        except SubstrateRequestException as e:
            self._forget_nonce(address)
            return SubmissionResult.rejected(str(e))
        except LedgerNetworkError:
            self._forget_nonce(address)
            raise

        tx_id = receipt.extrinsic_hash
        self._scan_from[tx_id] = block
        self._senders[tx_id] = address
        logger.debug("Submitted %s from %s at block %d", tx_id, address, block)
        return SubmissionResult.ok(tx_id)

    async def transfer_token(
        self,
        token: TokenRef,
        source: Account,
        destination: str,
        amount: int,
        params: NetworkParameters,
    ) -> SubmissionResult:
        intent = TransferIntent(
            source=source,
            destination=destination,
            amount=amount,
            kind=TransferKind.TOKEN,
            token=token,
        )
        return await self.submit(await self.build_and_sign(intent, params))

    async def query_status(self, tx_id: str) -> Optional[int]:
        """
        Scan the blocks produced since the last call for ``tx_id``.

        Raises SubmissionRejected if it was included but failed on dispatch.
        """
        substrate = self.subtensor.substrate
        async with _network_call(f"status of {tx_id}"):
            current = await self.subtensor.get_current_block()
            start = self._scan_from.get(tx_id, current)
            for number in range(start, current + 1):
                block_hash = await substrate.get_block_hash(number)
                receipt = substrate.retrieve_extrinsic_by_hash(block_hash, tx_id)
                try:
                    await receipt.extrinsic_idx
                except ExtrinsicNotFound:
                    continue
                self._scan_from.pop(tx_id, None)
                if not await receipt.is_success:
                    raise SubmissionRejected(_format_dispatch_error(await receipt.error_message))
                return number
            self._scan_from[tx_id] = current + 1
        return None

    def release(self, tx_id: str) -> None:
        """
        Stop tracking ``tx_id``.

        If it was never found in a block its nonce may be unused, so the
        sender's next transfer re-reads the nonce from the node.
        """
        unseen = self._scan_from.pop(tx_id, None) is not None
        sender = self._senders.pop(tx_id, None)
        if unseen and sender is not None:
            self._forget_nonce(sender)

    async def _next_nonce(self, address: str) -> int:
        async with self._nonce_lock:
            if address not in self._nonces:
                response = await self.subtensor.substrate.rpc_request(
                    "system_accountNextIndex", [address]
                )
                self._nonces[address] = response["result"]
            nonce = self._nonces[address]
            self._nonces[address] = nonce + 1
        return nonce

    def _forget_nonce(self, address: str) -> None:
        if self._nonces.pop(address, None) is not None:
            logger.debug("Nonce cache for %s cleared", address)

    async def current_round(self) -> int:
        async with _network_call("current block"):
            return await self.subtensor.get_current_block()

    async def wait_for_round(self, current_round: int) -> int:
        async with _network_call(f"wait for block {current_round + 1}"):
            await self.subtensor.wait_for_block(current_round + 1)
            return await self.subtensor.get_current_block()
