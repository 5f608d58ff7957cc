"""
Error types shared by every layer.

Each error carries a ``kind`` so callers (CLI, MCP server, placement
flow) can tell what happened without string matching:

  fatal      — caller must act (fund the wallet, fix the key)
  transient  — network/RPC trouble; retried locally before surfacing
  rejected   — the relayer refused the order; nothing happened on chain
  ambiguous  — outcome unknown; the reconciler decides later
  reverted   — the transaction was mined but failed
  invalid    — bad input or an illegal ledger mutation
"""

from __future__ import annotations

from typing import Any


class AzuroBetError(Exception):
    """Base exception for the bet client."""

    kind = "invalid"

    def __init__(self, message: str, kind: str | None = None):
        super().__init__(message)
        self.message = message
        if kind is not None:
            self.kind = kind

    def to_dict(self) -> dict[str, Any]:
        return {"error": self.kind, "message": self.message}


# ── Fatal ────────────────────────────────────────────────────────────

class InsufficientFunds(AzuroBetError):
    """Not enough native currency to pay for gas."""

    kind = "fatal"


class InsufficientBalance(AzuroBetError):
    """Not enough betting token for the stake."""

    kind = "fatal"


class InvalidPrivateKey(AzuroBetError):
    kind = "fatal"


class WalletNotConfigured(AzuroBetError):
    kind = "fatal"

    def __init__(self, message: str = "PRIVATE_KEY not found in environment"):
        super().__init__(message)


# ── Transient ────────────────────────────────────────────────────────

class ExhaustedRetries(AzuroBetError):
    """An operation kept failing after every retry (and endpoint) was used."""

    kind = "transient"

    def __init__(self, operation: str, attempts: int = 0, last_error: BaseException | None = None):
        detail = f": {last_error}" if last_error is not None else ""
        super().__init__(f"{operation} failed after {attempts} attempt(s){detail}")
        self.operation = operation
        self.attempts = attempts
        self.last_error = last_error


class FeedError(AzuroBetError):
    """The GraphQL data feed returned errors or could not be reached."""

    kind = "transient"


# ── Relayer ──────────────────────────────────────────────────────────

class RelayerRejected(AzuroBetError):
    kind = "rejected"

    def __init__(self, reason: str, status_code: int | None = None):
        super().__init__(f"Relayer rejected the order: {reason}")
        self.reason = reason
        self.status_code = status_code


class MissingOrderId(AzuroBetError):
    """The relayer answered 2xx but did not return an order id."""

    kind = "ambiguous"

    def __init__(self, message: str = "No order ID returned by relayer"):
        super().__init__(message)


# ── Transactions ─────────────────────────────────────────────────────

class ReceiptTimeout(AzuroBetError):
    kind = "ambiguous"

    def __init__(self, tx_hash: str, timeout: float):
        super().__init__(f"No receipt for {tx_hash} after {timeout:.0f}s")
        self.tx_hash = tx_hash
        self.timeout = timeout


class TransactionReverted(AzuroBetError):
    kind = "reverted"

    def __init__(self, tx_hash: str, reason: str = "transaction reverted"):
        super().__init__(f"Transaction {tx_hash} reverted: {reason}")
        self.tx_hash = tx_hash
        self.reason = reason


# ── Invalid input / ledger ───────────────────────────────────────────

class InvalidBetRequest(AzuroBetError):
    pass


class InvalidSelection(InvalidBetRequest):
    pass


class InvalidTransition(AzuroBetError):
    def __init__(self, local_id: str, current: str, target: str):
        super().__init__(f"Bet {local_id}: cannot move from '{current}' to '{target}'")
        self.local_id = local_id
        self.current = current
        self.target = target


class ChainIdConflict(AzuroBetError):
    """A record already holds a different bet id / tx hash."""


class UnknownBet(AzuroBetError):
    pass


class UnknownChain(AzuroBetError):
    pass
