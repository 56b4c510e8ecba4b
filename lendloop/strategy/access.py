"""
access.py - Capability checks for strategy entry points.

Role storage is fixed at construction; these helpers only answer whether a
caller holds a capability.
"""

from __future__ import annotations
from dataclasses import dataclass

from ..core import AuthorizationError


@dataclass(frozen=True, slots=True)
class StrategyRoles:
    """
    Wallets that hold capabilities over a strategy.

    The manager capability belongs to owner and keeper. Only the vault may
    withdraw, retire, or trigger harvest-on-deposit.
    """
    owner: str
    keeper: str
    strategist: str
    vault: str
    protocol_fee_recipient: str

    def __post_init__(self):
        for name in ('owner', 'keeper', 'strategist', 'vault', 'protocol_fee_recipient'):
            value = getattr(self, name)
            if not value or not value.strip():
                raise ValueError(f"StrategyRoles.{name} cannot be empty")

    def is_manager(self, caller: str) -> bool:
        return caller in (self.owner, self.keeper)


def require_manager(roles: StrategyRoles, caller: str, action: str) -> None:
    if not roles.is_manager(caller):
        raise AuthorizationError(f"{action}: {caller} is not owner or keeper")


def require_vault(roles: StrategyRoles, caller: str, action: str) -> None:
    if caller != roles.vault:
        raise AuthorizationError(f"{action}: only the vault may call, got {caller}")
