"""
Token asset metadata.

The engine does not own token metadata. It asks an ``AssetResolver``
(supplied by the wallet) to turn a ticker into an ``Asset`` and treats
the result as read-only.
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass
from enum import StrEnum
from typing import Protocol, runtime_checkable

from tzops.errors import UnknownAsset


class TokenStandard(StrEnum):
    FA12 = "FA1.2"
    FA2 = "FA2"


@dataclass(frozen=True)
class Asset:
    """Metadata needed to build a token transfer.

    Attributes:
        standard: Token interface standard of the contract.
        decimals: Number of decimals of the display amount.
        contract_address: ``KT1`` address of the token contract.
        token_id: FA2 token id. Ignored for FA1.2.
    """

    standard: TokenStandard
    decimals: int
    contract_address: str
    token_id: int | None = None

    def __post_init__(self) -> None:
        if self.decimals < 0:
            raise ValueError(f"decimals must be non-negative, got {self.decimals}")


@runtime_checkable
class AssetResolver(Protocol):
    def resolve_asset(self, ticker: str) -> Asset:
        """Return the asset for ``ticker``.

        Raises:
            UnknownAsset: If the ticker is not known.
        """
        ...


class StaticAssetRegistry:
    """AssetResolver backed by a fixed mapping."""

    def __init__(self, assets: Mapping[str, Asset] | None = None) -> None:
        self._assets = dict(assets or {})

    def resolve_asset(self, ticker: str) -> Asset:
        try:
            return self._assets[ticker]
        except KeyError:
            raise UnknownAsset(f"unknown token: {ticker}") from None
