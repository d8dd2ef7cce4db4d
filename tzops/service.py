"""
OperationService: the public face of the engine.

Each public operation runs one request through a fixed pipeline:

    fetch state -> build -> forge + verify -> sign | simulate
        -> preapply -> classify -> inject -> classify -> done

Steps run strictly in sequence; nothing within one call is concurrent.
Any step may end the call early. Public operations never raise: every
failure becomes ``OperationResult(success=False, payload={"errorId",
"msg"})`` through ``describe_failure``.

Without a secret key the pipeline stops after a dry run against the
simulation endpoint (signed with the well-known placeholder signature)
and returns the forged bytes for external signing.

No locking: two concurrent calls for the same account may race on the
counter. Callers serialise per account if they need to.
"""

from __future__ import annotations

import logging
from collections.abc import Awaitable, Mapping, Sequence
from dataclasses import replace
from decimal import Decimal
from typing import Any

from tzops.assets import AssetResolver, StaticAssetRegistry
from tzops.builder import (
    Amount,
    TransferRequest,
    build_activation,
    build_batch,
    build_delegation,
    build_transfer,
    fee_to_mutez,
)
from tzops.classifier import (
    OperationResult,
    check_applied,
    describe_failure,
    op_check,
    originated_contracts,
)
from tzops.codec import hex_to_bytes
from tzops.config import EngineConfig
from tzops.errors import (
    EngineError,
    InputError,
    InvalidPublicKey,
    InvalidSignature,
    InvalidTorusAddress,
)
from tzops.forge import unforge_operation, verify_forge
from tzops.keys import KeyPair, public_key_to_pkh
from tzops.lookup import KeyLookupService, TorusKeyLookup
from tzops.messages import DefaultErrorRenderer, ErrorRenderer
from tzops.operations import BlockHeader, ForgedOperation
from tzops.rpc import HttpxTransport, NodeClient, NodeTransport, RpcGateway
from tzops.rpc.gateway import Sleep
from tzops.signer import (
    DUMMY_SIGNATURE,
    SIGNATURE_HEX_LENGTH,
    Curve,
    Watermark,
    decompress_public_key,
    sign,
    signature_from_hex,
    signature_to_hex,
    verify,
)

logger = logging.getLogger(__name__)

TORUS_ADDRESS_LENGTH = 36

_GENERIC = bytes([Watermark.GENERIC_OPERATION])


class OperationService:
    """Builds, verifies, signs and submits operations.

    Args:
        config: Engine configuration (nodes, fee cap, timeouts).
        transport: Injectable transport shared by node and key lookup
            calls. Defaults to HttpxTransport.
        assets: Token metadata resolver used by token transfers.
        renderer: Turns error codes into user-facing messages.
        key_lookup: Torus key lookup service.
        sleep: Sleep used between retries. Inject for tests.
    """

    def __init__(
        self,
        config: EngineConfig,
        *,
        transport: NodeTransport | None = None,
        assets: AssetResolver | None = None,
        renderer: ErrorRenderer | None = None,
        key_lookup: KeyLookupService | None = None,
        sleep: Sleep | None = None,
    ) -> None:
        self._config = config
        transport = transport or HttpxTransport(timeout=config.request_timeout)
        gateway = RpcGateway(config.node_urls, transport, config.retry_delay, sleep)
        self._node = NodeClient(gateway, config.injection_timeout)
        self._assets = assets or StaticAssetRegistry()
        self._renderer = renderer or DefaultErrorRenderer()
        self._key_lookup = key_lookup or TorusKeyLookup(config.network, transport)

    @property
    def config(self) -> EngineConfig:
        return self._config

    @property
    def node(self) -> NodeClient:
        return self._node

    # -----------------------------------------------------------------
    # Public operations
    # -----------------------------------------------------------------

    async def activate(self, pkh: str, secret: str) -> OperationResult:
        """Activate a fundraiser account with its activation ``secret``."""
        return await self._guarded("activate", self._activate(pkh, secret))

    async def transfer(
        self,
        source: str,
        transfers: Sequence[TransferRequest | Mapping[str, Any]],
        fee: Amount,
        keys: KeyPair,
        token: str | None = None,
    ) -> OperationResult:
        """Transfer tez (or the token ``token``) from ``source``.

        Args:
            source: Implicit account or manager contract sending funds.
            transfers: One entry per destination, in batch order.
            fee: Total fee in tez.
            keys: Signing keys. Without a secret key the operation is
                only simulated.
            token: Ticker resolved through the asset resolver.
        """
        return await self._guarded(
            "transfer", self._transfer(source, transfers, fee, keys, token)
        )

    async def delegate(
        self,
        source: str,
        delegate: str | None,
        fee: Amount,
        gas_limit: int,
        storage_limit: int,
        keys: KeyPair,
    ) -> OperationResult:
        """Set the delegate of ``source``; an empty ``delegate`` withdraws."""
        return await self._guarded(
            "delegate",
            self._delegate(source, delegate, fee, gas_limit, storage_limit, keys),
        )

    async def operations(
        self,
        operations: Sequence[Mapping[str, Any]],
        fee: Amount,
        keys: KeyPair,
    ) -> OperationResult:
        """Submit a batch of raw manager operation contents."""
        return await self._guarded("operations", self._operations(operations, fee, keys))

    async def broadcast(
        self,
        signed_hex: str,
        protocol: str | None = None,
        curve: Curve = Curve.ED25519,
    ) -> OperationResult:
        """Submit externally signed bytes (``forged || signature``)."""
        return await self._guarded("broadcast", self._broadcast(signed_hex, protocol, curve))

    # -----------------------------------------------------------------
    # Read helpers
    # -----------------------------------------------------------------

    async def get_balance(self, pkh: str) -> OperationResult:
        return await self._guarded("get_balance", self._get_balance(pkh))

    async def get_delegate(self, pkh: str) -> OperationResult:
        return await self._guarded("get_delegate", self._get_delegate(pkh))

    async def get_account(self, pkh: str) -> OperationResult:
        return await self._guarded("get_account", self._get_account(pkh))

    async def get_voting_rights(self) -> OperationResult:
        return await self._guarded("get_voting_rights", self._get_voting_rights())

    async def get_constants(self) -> dict[str, Any]:
        return await self._node.get_constants()

    async def is_revealed(self, pkh: str) -> bool:
        """Whether ``pkh`` has revealed its key.

        Any failure answers True, so callers never prepend a Reveal that
        might be rejected as a duplicate.
        """
        try:
            return await self._node.get_manager_key(pkh) is not None
        except EngineError as exc:
            logger.warning("manager key lookup for %s failed, assuming revealed: %s", pkh, exc)
            return True

    async def get_manager(self, pkh: str) -> str:
        """Revealed public key of ``pkh``, or ``""``."""
        return await self._node.get_manager_key(pkh) or ""

    async def get_verified_op_bytes(
        self, level: int | str, operation_hash: str, pkh: str, public_key: str
    ) -> str:
        """Signed bytes of an included operation, after checking its signature.

        The operation is located in block ``level``, re-forged and its
        signature verified against ``public_key``.

        Raises:
            InputError: The operation is not in the block.
            InvalidPublicKey: ``public_key`` does not hash to ``pkh``.
            InvalidSignature: The signature does not verify.
        """
        hashes = await self._node.get_operation_hashes(level)
        try:
            index = hashes.index(operation_hash)
        except ValueError:
            raise InputError(f"operation {operation_hash} not found at level {level}") from None
        included = (await self._node.get_operations(level))[index]
        signature = included["signature"]
        operation = ForgedOperation.from_dict(
            {"branch": included["branch"], "contents": included["contents"]}
        )

        forged = await self._node.forge(operation)
        verify_forge(forged, operation)
        if public_key_to_pkh(public_key) != pkh:
            raise InvalidPublicKey(f"public key does not belong to {pkh}")
        if not verify(_GENERIC + hex_to_bytes(forged), signature, public_key):
            raise InvalidSignature(f"signature of {operation_hash} does not verify")
        return forged + signature_to_hex(signature)

    async def torus_key_lookup(self, address: str) -> dict[str, Any] | None:
        """Resolve the Torus login behind a revealed tz2 address.

        Returns ``{"noReveal": True}`` if the key is not revealed, the
        lookup answer if the Torus network knows the key, else None.

        Raises:
            InvalidTorusAddress: ``address`` is not a tz2 address.
        """
        if len(address) != TORUS_ADDRESS_LENGTH or not address.startswith("tz2"):
            raise InvalidTorusAddress(f"not a Torus address: {address}")
        manager = await self._node.get_manager_key(address)
        if manager is None:
            return {"noReveal": True}
        x, y = decompress_public_key(manager)
        return await self._key_lookup.lookup(x, y)

    # -----------------------------------------------------------------
    # Pipeline
    # -----------------------------------------------------------------

    async def _guarded(self, action: str, work: Awaitable[OperationResult]) -> OperationResult:
        try:
            return await work
        except EngineError as exc:
            logger.warning("%s failed: %s", action, exc)
            return describe_failure(exc, self._renderer)
        except Exception as exc:
            logger.exception("%s failed unexpectedly", action)
            return describe_failure(exc, self._renderer)

    def _check_fee(self, fee: Amount) -> None:
        fee_to_mutez(fee, self._fee_cap)

    @property
    def _fee_cap(self) -> Decimal:
        return self._config.fee_hard_cap

    async def _fetch_state(self, pkh: str) -> tuple[BlockHeader, int, bool]:
        header = await self._node.get_header()
        counter = await self._node.get_counter(pkh)
        manager = await self._node.get_manager_key(pkh)
        return header, counter, manager is not None

    async def _activate(self, pkh: str, secret: str) -> OperationResult:
        header = await self._node.get_header()
        operation = build_activation(header.hash, pkh, secret)
        forged = await self._node.forge(operation)
        verify_forge(forged, operation)
        operation = replace(operation, protocol=header.protocol, signature=DUMMY_SIGNATURE)
        return await self._preapply_and_inject(operation, forged + "0" * SIGNATURE_HEX_LENGTH)

    async def _transfer(
        self,
        source: str,
        transfers: Sequence[TransferRequest | Mapping[str, Any]],
        fee: Amount,
        keys: KeyPair,
        token: str | None,
    ) -> OperationResult:
        self._check_fee(fee)
        asset = self._assets.resolve_asset(token) if token else None
        requests = [
            t if isinstance(t, TransferRequest) else TransferRequest.from_dict(t)
            for t in transfers
        ]
        header, counter, revealed = await self._fetch_state(keys.pkh)
        operation = build_transfer(
            header.hash,
            counter,
            revealed,
            requests,
            source,
            fee,
            pkh=keys.pkh,
            public_key=keys.public_key,
            asset=asset,
            fee_cap=self._fee_cap,
        )
        return await self._submit(operation, header, keys)

    async def _delegate(
        self,
        source: str,
        delegate: str | None,
        fee: Amount,
        gas_limit: int,
        storage_limit: int,
        keys: KeyPair,
    ) -> OperationResult:
        self._check_fee(fee)
        header, counter, revealed = await self._fetch_state(keys.pkh)
        operation = build_delegation(
            header.hash,
            counter,
            revealed,
            source,
            delegate,
            fee,
            gas_limit,
            storage_limit,
            pkh=keys.pkh,
            public_key=keys.public_key,
            fee_cap=self._fee_cap,
        )
        return await self._submit(operation, header, keys)

    async def _operations(
        self, operations: Sequence[Mapping[str, Any]], fee: Amount, keys: KeyPair
    ) -> OperationResult:
        self._check_fee(fee)
        header, counter, revealed = await self._fetch_state(keys.pkh)
        operation = build_batch(
            header.hash,
            counter,
            revealed,
            operations,
            fee,
            pkh=keys.pkh,
            public_key=keys.public_key,
            fee_cap=self._fee_cap,
        )
        return await self._submit(operation, header, keys)

    async def _broadcast(
        self, signed_hex: str, protocol: str | None, curve: Curve
    ) -> OperationResult:
        if len(signed_hex) <= SIGNATURE_HEX_LENGTH:
            raise InvalidSignature("signed bytes are too short to carry a signature")
        forged = signed_hex[:-SIGNATURE_HEX_LENGTH]
        signature = signature_from_hex(signed_hex[-SIGNATURE_HEX_LENGTH:], curve)
        operation = unforge_operation(forged)
        verify_forge(forged, operation)
        if protocol is None:
            protocol = (await self._node.get_header()).protocol
        operation = replace(operation, protocol=protocol, signature=signature)
        return await self._preapply_and_inject(operation, signed_hex)

    async def _submit(
        self, operation: ForgedOperation, header: BlockHeader, keys: KeyPair
    ) -> OperationResult:
        logger.debug("forging %s", operation.to_dict())
        forged = await self._node.forge(operation)
        verify_forge(forged, operation)

        if not keys.secret_key:
            return await self._simulate(operation, header, forged)

        signed = sign(_GENERIC + hex_to_bytes(forged), keys.secret_key)
        operation = replace(
            operation, protocol=header.protocol, signature=signed.prefixed_signature
        )
        return await self._preapply_and_inject(operation, signed.signed_bytes_hex)

    async def _simulate(
        self, operation: ForgedOperation, header: BlockHeader, forged: str
    ) -> OperationResult:
        operation = replace(operation, signature=DUMMY_SIGNATURE)
        applied = await self._node.simulate(operation, header.chain_id)
        logger.debug("simulation result: %s", applied)
        check_applied(applied, simulation=True)
        return OperationResult.ok(unsignedOperation=forged)

    async def _preapply_and_inject(
        self, operation: ForgedOperation, signed_hex: str
    ) -> OperationResult:
        applied = await self._node.preapply(operation)
        logger.debug("preapply result: %s", applied)
        check_applied(applied)
        new_kt1s = originated_contracts(applied)

        final = await self._node.inject(signed_hex)
        result = op_check(final, new_kt1s)
        if result.success:
            logger.info("injected operation %s", final)
        else:
            logger.warning("injection answered %r", final)
        return result

    # -----------------------------------------------------------------
    # Read helpers (implementation)
    # -----------------------------------------------------------------

    async def _get_balance(self, pkh: str) -> OperationResult:
        return OperationResult.ok(balance=str(await self._node.get_balance(pkh)))

    async def _get_delegate(self, pkh: str) -> OperationResult:
        contract = await self._node.get_contract(pkh)
        return OperationResult.ok(delegate=contract.get("delegate") or "")

    async def _get_account(self, pkh: str) -> OperationResult:
        contract = await self._node.get_contract(pkh)
        return OperationResult.ok(
            balance=contract.get("balance"),
            manager=contract.get("manager"),
            delegate=contract.get("delegate") or "",
            counter=contract.get("counter"),
        )

    async def _get_voting_rights(self) -> OperationResult:
        return OperationResult(success=True, payload=await self._node.get_voting_listings())
