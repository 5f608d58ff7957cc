"""Wallet: holds the private key and signs typed data / transactions."""

from __future__ import annotations

import logging
from typing import Any

from eth_account import Account
from eth_account.messages import encode_typed_data
from web3 import Web3

from ..errors import InvalidPrivateKey, WalletNotConfigured

logger = logging.getLogger(__name__)


class Wallet:
    def __init__(self, private_key: str | None):
        if not private_key:
            raise WalletNotConfigured()
        key = private_key if private_key.startswith("0x") else f"0x{private_key}"
        try:
            self._account = Account.from_key(key)
        except (ValueError, TypeError) as e:
            raise InvalidPrivateKey(f"Invalid private key: {e}") from e

    @property
    def address(self) -> str:
        """Checksummed address."""
        return self._account.address

    @property
    def owner(self) -> str:
        """Lower-case address, the form stored in the ledger and sent to the relayer."""
        return self._account.address.lower()

    def sign_typed_data(self, typed: dict[str, Any]) -> str:
        """
        Sign an EIP-712 document ``{"domain", "types", "message"}``.

        ``types`` must not include ``EIP712Domain``; the primary type is the
        one no other type references.
        """
        encoded = encode_typed_data(
            domain_data=typed["domain"],
            message_types=typed["types"],
            message_data=typed["message"],
        )
        signed = self._account.sign_message(encoded)
        signature = Web3.to_hex(signed.signature)
        logger.debug("Signed typed data for %s: %s…", self.address, signature[:10])
        return signature

    def sign_transaction(self, tx: dict[str, Any]) -> bytes:
        signed = self._account.sign_transaction(tx)
        return signed.raw_transaction
