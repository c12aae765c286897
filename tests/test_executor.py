"""Tests for the per-account transfer executor"""

import asyncio

from conftest import FUNDER, TOKEN
from tao_fanout.actions import Clawback, CloseOut, FundNative, FundToken
from tao_fanout.confirmation import ConfirmationWaiter
from tao_fanout.executor import TransferExecutor
from tao_fanout.models import Account, ErrorKind, TransferKind


def execute(ledger, account, action, max_rounds=5):
    async def scenario():
        params = await ledger.fetch_network_parameters()
        executor = TransferExecutor(ledger, ConfirmationWaiter(ledger, max_rounds), operation="test")
        return await executor.execute(account, action, params)

    return asyncio.run(scenario())


def test_fund_native_confirms(ledger):
    record = execute(ledger, Account("ALICE"), FundNative(FUNDER, 1_000))

    assert record.success
    assert not record.skipped
    assert record.tx_id == "tx1"
    assert record.confirmed_round == 101
    intent = ledger.submitted[0]
    assert intent.source == FUNDER
    assert intent.destination == "ALICE"
    assert intent.amount == 1_000
    assert intent.kind is TransferKind.PAYMENT


def test_fund_token_goes_through_transfer_token(ledger):
    record = execute(ledger, Account("ALICE"), FundToken(FUNDER, TOKEN, 5_000))

    assert record.success
    assert len(ledger.token_transfers) == 1
    assert ledger.token_transfers[0].token == TOKEN
    assert ledger.token_transfers[0].amount == 5_000


def test_submit_exception_becomes_failure_record(ledger, network_error):
    ledger.submit_errors["ALICE"] = network_error

    record = execute(ledger, Account("ALICE"), FundNative(FUNDER, 1_000))

    assert not record.success
    assert record.address == "ALICE"
    assert record.error_kind is ErrorKind.NETWORK
    assert record.error == "connection reset by peer"


def test_unexpected_exception_is_classified_as_error(ledger):
    ledger.submit_errors["ALICE"] = KeyError("sk")

    record = execute(ledger, Account("ALICE"), FundNative(FUNDER, 1_000))

    assert record.error_kind is ErrorKind.ERROR
    assert record.error.startswith("KeyError")


def test_rejection_is_terminal_failure(ledger):
    ledger.rejections["ALICE"] = "overspend"

    record = execute(ledger, Account("ALICE"), FundNative(FUNDER, 1_000))

    assert not record.success
    assert record.error_kind is ErrorKind.REJECTION
    assert record.error == "overspend"
    assert record.tx_id is None


def test_expired_is_distinct_and_keeps_tx_id(ledger):
    ledger.commit_delay["ALICE"] = None

    record = execute(ledger, Account("ALICE"), FundNative(FUNDER, 1_000), max_rounds=3)

    assert not record.success
    assert record.error_kind is ErrorKind.EXPIRED
    assert record.tx_id == "tx1"


def test_polling_error_is_network_failure(ledger, network_error):
    ledger.status_error = network_error

    record = execute(ledger, Account("ALICE"), FundNative(FUNDER, 1_000))

    assert record.error_kind is ErrorKind.NETWORK
    assert record.tx_id == "tx1"


def test_dispatch_failure_is_rejection(ledger):
    ledger.dispatch_failures["ALICE"] = "Balances.InsufficientBalance"

    record = execute(ledger, Account("ALICE"), FundNative(FUNDER, 1_000))

    assert record.error_kind is ErrorKind.REJECTION
    assert record.tx_id == "tx1"


def test_close_out_skips_empty_account(ledger):
    record = execute(ledger, Account("EMPTY", secret="aa"), CloseOut("FUNDER"))

    assert record.success
    assert record.skipped
    assert ledger.submitted == []


def test_close_out_sends_whole_balance_to_destination(ledger):
    ledger.balances["BOB"] = 42

    record = execute(ledger, Account("BOB", secret="bb"), CloseOut("FUNDER"))

    assert record.success and not record.skipped
    intent = ledger.submitted[0]
    assert intent.kind is TransferKind.CLOSE_OUT
    assert intent.source.address == "BOB"
    assert intent.close_to == "FUNDER"


def test_clawback_sweeps_token_then_closes(ledger):
    ledger.balances["BOB"] = 42
    ledger.token_balances["BOB"] = 7

    record = execute(ledger, Account("BOB", secret="bb"), Clawback("FUNDER", TOKEN))

    assert record.success
    assert [i.kind for i in ledger.submitted] == [TransferKind.TOKEN, TransferKind.CLOSE_OUT]
    assert ledger.submitted[0].amount == 7
    assert record.tx_id == "tx2"


def test_clawback_stops_after_failed_sweep(ledger):
    ledger.balances["BOB"] = 42
    ledger.token_balances["BOB"] = 7
    ledger.rejections["BOB"] = "NotEnoughStakeToWithdraw"

    record = execute(ledger, Account("BOB", secret="bb"), Clawback("FUNDER", TOKEN))

    assert not record.success
    assert record.error_kind is ErrorKind.REJECTION
    assert ledger.submitted == []
    assert len(ledger.token_transfers) == 1


def test_clawback_with_nothing_to_move_is_skip(ledger):
    record = execute(ledger, Account("EMPTY", secret="aa"), Clawback("FUNDER", TOKEN))

    assert record.success
    assert record.skipped


def test_clawback_without_token_only_closes(ledger):
    ledger.balances["BOB"] = 42

    record = execute(ledger, Account("BOB", secret="bb"), Clawback("FUNDER"))

    assert record.success
    assert len(ledger.token_transfers) == 0
    assert [i.kind for i in ledger.submitted] == [TransferKind.CLOSE_OUT]
