"""
Partition a batch result and persist its failures for a later retry.

The failure file, ``failed_<operation>_<run id>_wallets.json``, is a JSON
list with one object per failed account:

    [
        {"publicKey": "5Grwv...", "error": "Inability to pay some fees", "kind": "rejection"},
        {"publicKey": "5FHne...", "error": "not committed after 10 rounds", "kind": "expired", "txId": "0x..."}
    ]

Only public identities are written. Entries of kind ``expired`` keep the
transaction id: that transfer may still land, so check it before resending.
"""

from __future__ import annotations

import json
import logging
import os
import tempfile
from pathlib import Path
from typing import Optional

from tao_fanout.models import BatchResult, OutcomeRecord

logger = logging.getLogger(__name__)


def partition(result: BatchResult) -> tuple[list[OutcomeRecord], list[OutcomeRecord]]:
    """Split a result into (successes, failures)."""
    return result.successes, result.failures


def failure_file_path(output_dir: str | Path, operation: str, run_id: str) -> Path:
    """Where the failures of one ``operation`` run are written."""
    return Path(output_dir) / f"failed_{operation}_{run_id}_wallets.json"


def persist_failures(result: BatchResult, output_dir: str | Path) -> Optional[Path]:
    """
    Write the failures of ``result`` to its failure file.

    Returns the path written, or None when every account succeeded (no file
    is written in that case). Each run gets its own file, so retrying from
    a failure file never overwrites it.
    """
    _, failures = partition(result)
    if not failures:
        logger.info("%s: all %d accounts succeeded", result.operation, len(result.records))
        return None

    path = failure_file_path(output_dir, result.operation, result.run_id)
    path.parent.mkdir(parents=True, exist_ok=True)
    entries = [r.to_failure_entry() for r in failures]

    # The retry file is either complete or absent.
    fd, tmp = tempfile.mkstemp(dir=path.parent, prefix=path.name, suffix=".tmp")
    try:
        with os.fdopen(fd, "w") as f:
            json.dump(entries, f, indent=2)
        os.replace(tmp, path)
    except BaseException:
        Path(tmp).unlink(missing_ok=True)
        raise

    logger.warning(
        "%s: %d failed account(s) saved to %s", result.operation, len(entries), path
    )
    return path

