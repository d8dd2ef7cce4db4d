"""
Operation builder: caller intent + chain state -> operation contents.

Pure and deterministic. No network, no secrets. Chain state (branch,
counter, whether the manager key is revealed) is supplied by the
caller.

Sequencing rules:
    - A Reveal is prepended iff the manager key is not yet revealed.
      It always comes first, with zero fee and fixed limits.
    - Counters run ``counter + 1, counter + 2, ...`` over the final
      content list, Reveal included.
    - Only the last caller-supplied item carries the fee; every item
      before it carries zero.
    - Amounts are converted to integer minor units with Decimal
      arithmetic. Anything that does not convert exactly is rejected.
"""

from __future__ import annotations

from collections.abc import Mapping, Sequence
from dataclasses import dataclass, replace
from decimal import Decimal, localcontext
from typing import Any

from tzops import michelson
from tzops.assets import Asset, TokenStandard
from tzops.config import DEFAULT_FEE_HARD_CAP
from tzops.errors import (
    FeeTooHigh,
    FractionalAmountError,
    InputError,
    InvalidAddress,
    InvalidPublicKey,
    UnsupportedOperationShape,
)
from tzops.keys import is_implicit, is_originated
from tzops.operations import (
    ESTIMATION_ONLY_KEYS,
    ActivateAccount,
    Delegation,
    ForgedOperation,
    ManagerContent,
    Reveal,
    Transaction,
    content_from_dict,
)

MUTEZ_DECIMALS = 6

REVEAL_GAS_LIMIT = 200
REVEAL_STORAGE_LIMIT = 0

Amount = Decimal | int | str | float


# =========================================================================
# Amounts
# =========================================================================


def _to_decimal(amount: Amount) -> Decimal:
    # floats go through their shortest repr so 1.005 stays 1.005
    try:
        value = Decimal(repr(amount)) if isinstance(amount, float) else Decimal(amount)
    except ArithmeticError:
        raise InputError(f"invalid amount: {amount!r}") from None
    if not value.is_finite():
        raise InputError(f"invalid amount: {amount!r}")
    return value


def to_minor_units(amount: Amount, decimals: int) -> int:
    """Convert a display amount to integer minor units.

    Raises:
        FractionalAmountError: If ``amount`` has more than ``decimals``
            significant decimal places.
        InputError: If ``amount`` is negative, not finite or out of range.
    """
    value = _to_decimal(amount)
    if value < 0:
        raise InputError(f"invalid amount: {amount!r}")
    with localcontext() as ctx:
        ctx.prec = 128
        try:
            scaled = value.scaleb(decimals)
            integral = scaled.to_integral_value()
        except ArithmeticError:
            raise InputError(f"amount out of range: {amount!r}") from None
        if scaled != integral:
            raise FractionalAmountError(
                f"the amount {amount} is not within {decimals} decimals"
            )
        return int(scaled)


def tez_to_mutez(amount: Amount) -> int:
    return to_minor_units(amount, MUTEZ_DECIMALS)


def fee_to_mutez(fee: Amount, fee_cap: Decimal = DEFAULT_FEE_HARD_CAP) -> int:
    """Convert a fee in tez to mutez, enforcing the hard cap.

    Raises:
        FeeTooHigh: If ``fee`` exceeds ``fee_cap``.
    """
    if _to_decimal(fee) > fee_cap:
        raise FeeTooHigh(f"fee {fee} exceeds the hard cap of {fee_cap}")
    return tez_to_mutez(fee)


# =========================================================================
# Requests
# =========================================================================


@dataclass(frozen=True)
class TransferRequest:
    """One transfer of a batch.

    ``amount`` is in display units: tez for plain transfers, token units
    for token transfers.
    """

    destination: str
    amount: Amount
    gas_limit: int
    storage_limit: int
    parameters: dict[str, Any] | None = None

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> TransferRequest:
        return cls(
            destination=data["destination"],
            amount=data["amount"],
            gas_limit=_limit(data, "gas_limit", "gasLimit"),
            storage_limit=_limit(data, "storage_limit", "storageLimit"),
            parameters=data.get("parameters"),
        )


def _limit(data: Mapping[str, Any], key: str, alias: str) -> int:
    value = data.get(key, data.get(alias))
    if value is None:
        raise UnsupportedOperationShape(f"transfer is missing {key}")
    return int(value)


# =========================================================================
# Sequencing
# =========================================================================


def _reveal(pkh: str, public_key: str | None) -> Reveal:
    if not public_key:
        raise InvalidPublicKey("a public key is required to reveal the account")
    return Reveal(
        source=pkh,
        public_key=public_key,
        fee=0,
        gas_limit=REVEAL_GAS_LIMIT,
        storage_limit=REVEAL_STORAGE_LIMIT,
    )


def sequence_contents(
    counter: int,
    drafts: Sequence[ManagerContent],
    fee: int,
    reveal: Reveal | None = None,
) -> tuple[ManagerContent, ...]:
    """Assign counters and fee to draft contents, prepending ``reveal``."""
    if not drafts:
        raise UnsupportedOperationShape("operation has no contents")
    head: tuple[ManagerContent, ...] = (replace(reveal, counter=counter + 1),) if reveal else ()
    start = counter + len(head)
    last = len(drafts) - 1
    return head + tuple(
        replace(draft, counter=start + i + 1, fee=fee if i == last else 0)
        for i, draft in enumerate(drafts)
    )


def _envelope(
    branch: str,
    counter: int,
    manager_key_present: bool,
    drafts: Sequence[ManagerContent],
    fee: int,
    pkh: str,
    public_key: str | None,
) -> ForgedOperation:
    reveal = None if manager_key_present else _reveal(pkh, public_key)
    return ForgedOperation(branch=branch, contents=sequence_contents(counter, drafts, fee, reveal))


# =========================================================================
# Transfers
# =========================================================================


def _token_invocation(item: TransferRequest, pkh: str, asset: Asset) -> Transaction:
    amount = to_minor_units(item.amount, asset.decimals)
    if asset.standard == TokenStandard.FA12:
        invocation = michelson.fa12_transfer(pkh, item.destination, amount)
    elif asset.standard == TokenStandard.FA2:
        invocation = michelson.fa2_transfer(pkh, item.destination, amount, asset.token_id or 0)
    else:
        raise UnsupportedOperationShape(f"unrecognized token standard: {asset.standard}")
    return Transaction(
        source=pkh,
        destination=asset.contract_address,
        amount=0,
        gas_limit=item.gas_limit,
        storage_limit=item.storage_limit,
        parameters=invocation,
    )


def _manager_relay(item: TransferRequest, pkh: str, contract: str) -> Transaction:
    if item.parameters:
        raise UnsupportedOperationShape("parameters are not supported from a manager contract")
    amount = tez_to_mutez(item.amount)
    if is_implicit(item.destination):
        relay = michelson.manager_transfer_to_implicit(item.destination, amount)
    elif is_originated(item.destination):
        relay = michelson.manager_transfer_to_contract(item.destination, amount)
    else:
        raise InvalidAddress(f"invalid destination: {item.destination}")
    return Transaction(
        source=pkh,
        destination=contract,
        amount=0,
        gas_limit=item.gas_limit,
        storage_limit=item.storage_limit,
        parameters=relay,
    )


def _transfer_draft(
    item: TransferRequest, source: str, pkh: str, asset: Asset | None
) -> Transaction:
    if asset is not None:
        if not is_implicit(source):
            raise UnsupportedOperationShape("token transfers must come from an implicit account")
        return _token_invocation(item, pkh, asset)
    if is_implicit(source):
        return Transaction(
            source=source,
            destination=item.destination,
            amount=tez_to_mutez(item.amount),
            gas_limit=item.gas_limit,
            storage_limit=item.storage_limit,
            parameters=item.parameters,
        )
    if is_originated(source):
        return _manager_relay(item, pkh, source)
    raise InvalidAddress(f"invalid source: {source}")


def build_transfer(
    branch: str,
    counter: int,
    manager_key_present: bool,
    transfers: Sequence[TransferRequest],
    source: str,
    fee: Amount,
    *,
    pkh: str,
    public_key: str | None = None,
    asset: Asset | None = None,
    fee_cap: Decimal = DEFAULT_FEE_HARD_CAP,
) -> ForgedOperation:
    """Build a batch of transfers from ``source``.

    Args:
        branch: Block hash the operation is anchored to.
        counter: Current on-chain counter of ``pkh``.
        manager_key_present: Whether ``pkh`` has revealed its key.
        transfers: Transfers in batch order.
        source: ``tz`` account or ``KT1`` manager contract sending funds.
        fee: Total fee in tez, charged on the last transfer.
        pkh: Address of the signing key (manager of ``source``).
        public_key: Public key of ``pkh``, needed for a Reveal.
        asset: Token to transfer instead of tez.
        fee_cap: Hard cap on ``fee``.
    """
    fee_mutez = fee_to_mutez(fee, fee_cap)
    drafts = [_transfer_draft(item, source, pkh, asset) for item in transfers]
    return _envelope(branch, counter, manager_key_present, drafts, fee_mutez, pkh, public_key)


# =========================================================================
# Delegation
# =========================================================================


def build_delegation(
    branch: str,
    counter: int,
    manager_key_present: bool,
    source: str,
    delegate: str | None,
    fee: Amount,
    gas_limit: int,
    storage_limit: int,
    *,
    pkh: str,
    public_key: str | None = None,
    fee_cap: Decimal = DEFAULT_FEE_HARD_CAP,
) -> ForgedOperation:
    """Set or withdraw the delegate of ``source``.

    An empty ``delegate`` withdraws. A ``KT1`` source is delegated through
    its manager contract ``do`` entrypoint.
    """
    fee_mutez = fee_to_mutez(fee, fee_cap)
    delegate = delegate or None
    draft: ManagerContent
    if is_implicit(source):
        draft = Delegation(
            source=source,
            delegate=delegate,
            gas_limit=gas_limit,
            storage_limit=storage_limit,
        )
    elif is_originated(source):
        relay = (
            michelson.manager_set_delegate(delegate)
            if delegate
            else michelson.manager_remove_delegate()
        )
        draft = Transaction(
            source=pkh,
            destination=source,
            amount=0,
            gas_limit=gas_limit,
            storage_limit=storage_limit,
            parameters=relay,
        )
    else:
        raise InvalidAddress(f"invalid source: {source}")
    return _envelope(branch, counter, manager_key_present, [draft], fee_mutez, pkh, public_key)


# =========================================================================
# Raw batches
# =========================================================================


def build_batch(
    branch: str,
    counter: int,
    manager_key_present: bool,
    operations: Sequence[Mapping[str, Any]],
    fee: Amount,
    *,
    pkh: str,
    public_key: str | None = None,
    fee_cap: Decimal = DEFAULT_FEE_HARD_CAP,
) -> ForgedOperation:
    """Build a batch from caller-provided content dicts of any manager kind.

    Each dict must carry ``kind``, ``gas_limit`` and ``storage_limit``;
    source, counter and fee are assigned here. Estimation-only keys are
    stripped. Reveals are rejected: one is prepended when needed.
    """
    fee_mutez = fee_to_mutez(fee, fee_cap)
    drafts = []
    for op in operations:
        if "gas_limit" not in op or "storage_limit" not in op:
            raise UnsupportedOperationShape("every operation needs gas_limit and storage_limit")
        data = {k: v for k, v in op.items() if k not in ESTIMATION_ONLY_KEYS}
        data.update(
            source=pkh,
            counter="0",
            fee="0",
            gas_limit=str(op["gas_limit"]),
            storage_limit=str(op["storage_limit"]),
        )
        content = content_from_dict(data)
        if isinstance(content, ActivateAccount):
            raise UnsupportedOperationShape("activate_account cannot be batched")
        if isinstance(content, Reveal):
            raise UnsupportedOperationShape("reveal is added automatically")
        drafts.append(content)
    return _envelope(branch, counter, manager_key_present, drafts, fee_mutez, pkh, public_key)


def build_activation(branch: str, pkh: str, secret: str) -> ForgedOperation:
    return ForgedOperation(branch=branch, contents=(ActivateAccount(pkh=pkh, secret=secret),))
