"""
Sweep Accounts

Signing identities built once from the configured private keys.
"""

from dataclasses import dataclass, field
from typing import Iterable, List

from eth_account import Account
from eth_account.signers.local import LocalAccount
from loguru import logger

from .exceptions import ConfigurationError


@dataclass(frozen=True)
class SweepAccount:
    """Address plus the signer that owns it. The signer never shows up in repr."""
    address: str
    signer: LocalAccount = field(repr=False, compare=False)

    @classmethod
    def from_key(cls, private_key: str) -> 'SweepAccount':
        signer = Account.from_key(private_key)
        return cls(address=signer.address, signer=signer)

    def __str__(self):
        return self.address


def load_accounts(private_keys: Iterable[str]) -> List[SweepAccount]:
    """
    Build accounts from raw private keys

    Args:
        private_keys: Hex private keys (with or without 0x)

    Returns:
        Accounts in configuration order

    Raises:
        ConfigurationError: No keys, a malformed key, or the same key twice
    """
    accounts: List[SweepAccount] = []
    seen = set()

    for index, raw in enumerate(private_keys):
        key = raw.strip()
        if not key:
            continue
        try:
            account = SweepAccount.from_key(key)
        except Exception as e:
            # never echo the key itself
            raise ConfigurationError(f"Private key #{index + 1} is invalid: {type(e).__name__}")

        if account.address in seen:
            raise ConfigurationError(f"Private key #{index + 1} duplicates account {account.address}")
        seen.add(account.address)
        accounts.append(account)

    if not accounts:
        raise ConfigurationError("No private keys configured")

    logger.info(f"Loaded {len(accounts)} sweep account(s)")
    return accounts
