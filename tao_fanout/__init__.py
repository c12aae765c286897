"""
TAO Fanout — rate-limited per-account transfers for the Bittensor network.

Applies one transfer action (fund, distribute, clawback, close-out) to every
account in a wallet file, waits for each transfer to land in a block, and
writes the accounts that failed to a JSON file that can be fed back in.
"""

__version__ = "0.1.0"
