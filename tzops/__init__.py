"""
tzops: operation construction and signing engine for Tezos wallets.

Builds protocol operations, forges them locally to cross-check the
node's forge, signs with Ed25519 or secp256k1, submits through a list
of nodes with round-robin failover and classifies node-side failures.
"""

from tzops.assets import Asset, AssetResolver, StaticAssetRegistry, TokenStandard
from tzops.builder import TransferRequest
from tzops.classifier import OperationResult
from tzops.config import EngineConfig
from tzops.keys import KeyPair
from tzops.messages import DefaultErrorRenderer, ErrorRenderer
from tzops.operations import ForgedOperation
from tzops.service import OperationService

__all__ = [
    "Asset",
    "AssetResolver",
    "DefaultErrorRenderer",
    "EngineConfig",
    "ErrorRenderer",
    "ForgedOperation",
    "KeyPair",
    "OperationResult",
    "OperationService",
    "StaticAssetRegistry",
    "TokenStandard",
    "TransferRequest",
]

__version__ = "0.1.0"
