"""
Account file loading and validation.

Expected format (as written by the wallet generator):
    [
        {"publicKey": "5FHneW46...", "privateKey": "<hex seed>"},
        {"publicKey": "5GrwvaEF...", "privateKey": "<hex seed>"}
    ]

A failure file (entries without ``privateKey``) is also accepted; such
accounts can only be targets of transfers signed by the funder.
"""

from __future__ import annotations

import json
from pathlib import Path

from bittensor.utils import is_valid_bittensor_address_or_public_key

from tao_fanout.exceptions import AccountFileError
from tao_fanout.models import Account


def parse_accounts(filepath: str | Path) -> list[Account]:
    """Parse a JSON account file. Raises AccountFileError on any problem."""
    filepath = Path(filepath)
    try:
        with open(filepath, "r") as f:
            data = json.load(f)
    except FileNotFoundError:
        raise AccountFileError(f"Account file not found: {filepath}")
    except (OSError, json.JSONDecodeError) as e:
        raise AccountFileError(f"Cannot read account file {filepath}: {e}")

    if not isinstance(data, list):
        raise AccountFileError("Account file must contain a list of account objects")

    accounts = []
    for i, entry in enumerate(data):
        if not isinstance(entry, dict):
            raise AccountFileError(f"Entry {i}: must be an object")
        if not entry.get("publicKey"):
            raise AccountFileError(f"Entry {i}: missing 'publicKey' field")

        accounts.append(Account(
            address=str(entry["publicKey"]),
            secret=entry.get("privateKey") or None,
        ))

    return accounts


def validate_accounts(accounts: list[Account], require_secrets: bool = False) -> tuple[bool, list[str]]:
    """
    Validate all accounts. Returns (is_valid, list_of_errors).
    Also checks for duplicate addresses.
    """
    errors = []
    seen_addresses = {}

    for i, a in enumerate(accounts):
        if not is_valid_bittensor_address_or_public_key(a.address):
            errors.append(f"Account {i + 1}: invalid ss58 address: {a.address}")
        if require_secrets and not a.secret:
            errors.append(f"Account {i + 1} ({a.address[:12]}...): no private key")

        if a.address in seen_addresses:
            prev = seen_addresses[a.address]
            errors.append(
                f"Duplicate address at positions {prev + 1} and {i + 1}: {a.address[:16]}..."
            )
        seen_addresses[a.address] = i

    return len(errors) == 0, errors


def load_accounts(filepath: str | Path, require_secrets: bool = False) -> list[Account]:
    """Parse and validate; any problem aborts the batch before it starts."""
    accounts = parse_accounts(filepath)
    is_valid, errors = validate_accounts(accounts, require_secrets=require_secrets)
    if not is_valid:
        raise AccountFileError(
            f"Validation failed with {len(errors)} errors:\n" + "\n".join(errors)
        )
    return accounts
