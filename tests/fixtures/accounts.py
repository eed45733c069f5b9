"""
Well-known keys, addresses and domains for authorization tests.

The keys are the public development accounts of local EVM test nodes;
they hold nothing of value.
"""

from __future__ import annotations

from ledgershift.config import DomainSeparator

AUTHORITY_KEY = "0xac0974bec39a17e36ba4a6b4d238ff944bacb478cbed5efcae784d7bf4f2ff80"
AUTHORITY_ADDRESS = "0xf39fd6e51aad88f6f4ce6ab8827279cfffb92266"

CALLER_KEY = "0x59c6995e998f97a5a0044966f0945389dc9e86dae88c7a8412f4603b6b78690d"
CALLER_ADDRESS = "0x70997970c51812dc3a010c7d01b50e0d17dc79c8"

CONTRACT_ADDRESS = "0x5fbdb2315678afecb367f032d93f642f64180aa3"
OTHER_CONTRACT_ADDRESS = "0xe7f1725e7734ce288f8367e1bb143e90bb3f0512"

DEPOSIT_OPERATION = "deposit(uint256,uint256,uint256,bytes)"
PREMIUM_OPERATION = "setPremiumStatus(bool,uint256,uint256,uint256,bytes)"

FIXED_NOW = 1_700_000_000


def make_domain(**overrides: object) -> DomainSeparator:
    """Build the default test domain, overriding any field."""
    values: dict[str, object] = {
        "name": "MOVINEarnV2",
        "version": "2",
        "chain_id": 31337,
        "verifying_contract": CONTRACT_ADDRESS,
    }
    values.update(overrides)
    return DomainSeparator(**values)  # type: ignore[arg-type]


class FrozenClock:
    """
    Controllable Unix clock.

    Example:
        >>> clock = FrozenClock()
        >>> clock.advance(60)
        >>> clock() == FIXED_NOW + 60
        True
    """

    def __init__(self, now: float = FIXED_NOW) -> None:
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds
