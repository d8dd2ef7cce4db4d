"""
Classification of node answers.

Three jobs:
    - ``check_applied``: walk a preapply / simulation result and raise
      the most actionable failure, if any.
    - ``op_check``: turn the injection answer into an ``OperationResult``.
    - ``describe_failure``: turn any exception raised along the pipeline
      into the uniform failure result.

Error selection within one content's ``operation_result.errors``:
    1. Report the last error,
    2. unless a supersede rule applies to the last two errors, in which
       case report the second-to-last (see ``SUPERSEDED_BY``).
    3. With a failed status but no top-level errors, report the last
       error of the first failed internal operation.
    4. With a failed status and no error object at all, raise
       ``UncaughtAppliedFailure``.
"""

from __future__ import annotations

import logging
from collections.abc import Sequence
from dataclasses import dataclass, field
from enum import StrEnum
from types import MappingProxyType
from typing import Any

from tzops.errors import (
    EngineError,
    OperationFailure,
    ProtocolRejection,
    UncaughtAppliedFailure,
)
from tzops.messages import ErrorRenderer

logger = logging.getLogger(__name__)

OPERATION_HASH_LENGTH = 51
UNRECOGNIZED_ERROR = "Unrecognized error"


# =========================================================================
# Result shape
# =========================================================================


@dataclass(frozen=True)
class OperationResult:
    """Uniform answer of every public operation.

    ``payload`` is operation specific on success. On failure it is
    ``{"errorId": str | None, "msg": str}``.
    """

    success: bool
    payload: Any = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {"success": self.success, "payload": self.payload}

    @classmethod
    def ok(cls, **payload: Any) -> OperationResult:
        return cls(success=True, payload=payload)

    @classmethod
    def failed(cls, msg: Any, error_id: str | None = None) -> OperationResult:
        return cls(success=False, payload={"errorId": error_id, "msg": msg})


# =========================================================================
# Error causes
# =========================================================================


class ErrorCause(StrEnum):
    BALANCE_TOO_LOW = "balance_too_low"
    SUBTRACTION_UNDERFLOW = "subtraction_underflow"
    COUNTER_IN_THE_PAST = "counter_in_the_past"
    COUNTER_IN_THE_FUTURE = "counter_in_the_future"
    GAS_EXHAUSTED = "gas_exhausted"
    STORAGE_EXHAUSTED = "storage_exhausted"
    SCRIPT_REJECTED = "script_rejected"
    EMPTY_IMPLICIT_CONTRACT = "empty_implicit_contract"
    UNREGISTERED_DELEGATE = "unregistered_delegate"
    UNKNOWN = "unknown"


# Node error id suffix -> cause.
CAUSE_BY_SUFFIX = MappingProxyType({
    ".balance_too_low": ErrorCause.BALANCE_TOO_LOW,
    ".tez.subtraction_underflow": ErrorCause.SUBTRACTION_UNDERFLOW,
    ".counter_in_the_past": ErrorCause.COUNTER_IN_THE_PAST,
    ".counter_in_the_future": ErrorCause.COUNTER_IN_THE_FUTURE,
    ".gas_exhausted.operation": ErrorCause.GAS_EXHAUSTED,
    ".storage_exhausted.operation": ErrorCause.STORAGE_EXHAUSTED,
    ".script_rejected": ErrorCause.SCRIPT_REJECTED,
    ".empty_implicit_contract": ErrorCause.EMPTY_IMPLICIT_CONTRACT,
    ".unregistered_delegate": ErrorCause.UNREGISTERED_DELEGATE,
})

# When the last error has cause K and the one before it has cause
# SUPERSEDED_BY[K], the one before is reported instead.
SUPERSEDED_BY = MappingProxyType({
    ErrorCause.SUBTRACTION_UNDERFLOW: ErrorCause.BALANCE_TOO_LOW,
})


def cause_of(error: Any) -> ErrorCause:
    error_id = error.get("id") if isinstance(error, dict) else None
    if not isinstance(error_id, str):
        return ErrorCause.UNKNOWN
    for suffix, cause in CAUSE_BY_SUFFIX.items():
        if error_id.endswith(suffix):
            return cause
    return ErrorCause.UNKNOWN


def select_error(errors: Sequence[dict[str, Any]]) -> dict[str, Any]:
    """Pick the error to report from an ordered, non-empty error list."""
    last = errors[-1]
    if len(errors) > 1:
        previous = errors[-2]
        if SUPERSEDED_BY.get(cause_of(last)) == cause_of(previous):
            return previous
    return last


# =========================================================================
# Applied results
# =========================================================================


def _contents(applied: Any) -> list[dict[str, Any]]:
    # preapply answers a list of operations, simulation a single one
    operations = applied if isinstance(applied, list) else [applied]
    return [c for op in operations if isinstance(op, dict) for c in op.get("contents", [])]


def _failure_in(metadata: dict[str, Any]) -> dict[str, Any] | None:
    result = metadata.get("operation_result", {})
    errors = result.get("errors")
    if errors:
        return select_error(errors)
    for internal in metadata.get("internal_operation_results", []):
        internal_result = internal.get("result", {})
        if internal_result.get("status") == "failed" and internal_result.get("errors"):
            return internal_result["errors"][-1]
    return None


def check_applied(applied: Any, simulation: bool = False) -> None:
    """Raise if any content of ``applied`` did not apply.

    Contents without an ``operation_result`` (account activation) are
    not checked.

    Raises:
        OperationFailure: With the selected node error.
        UncaughtAppliedFailure: A content failed without an error object.
    """
    failed = False
    for content in _contents(applied):
        metadata = content.get("metadata", {})
        status = metadata.get("operation_result", {}).get("status")
        if status is None or status == "applied":
            continue
        failed = True
        error = _failure_in(metadata)
        if error is not None:
            logger.warning("%s failed with %s", content.get("kind"), error.get("id"))
            raise OperationFailure(error, simulation=simulation)
    if failed:
        logger.warning("operation failed without an error object: %s", applied)
        raise UncaughtAppliedFailure()


def originated_contracts(applied: Any) -> list[str]:
    """Addresses of contracts originated by the operation."""
    found: list[str] = []
    for content in _contents(applied):
        if content.get("kind") != "origination":
            continue
        result = content.get("metadata", {}).get("operation_result", {})
        found.extend(result.get("originated_contracts", []))
    return found


def op_check(final: Any, new_kt1s: list[str] | None = None) -> OperationResult:
    """Interpret the injection answer: an operation hash means success."""
    if isinstance(final, str) and len(final) == OPERATION_HASH_LENGTH:
        return OperationResult.ok(opHash=final, newKT1s=new_kt1s)
    return OperationResult(success=False, payload={"opHash": None, "msg": final})


# =========================================================================
# Failure description
# =========================================================================


def parse_trace(text: str) -> str:
    """Extract the useful part of a plain-text validation trace.

    The node reports malformed bodies as a multi-line trace. The last
    ``At /<path>`` pointer (other than ``At /kind``) is joined with the
    line after it. Text without a pointer is returned unchanged.
    """
    lines = [line.strip() for line in text.split("\n")]
    result = text
    for i, line in enumerate(lines[:-1]):
        if line.startswith("At /") and not line.startswith("At /kind") and lines[i + 1]:
            result = f"{line} {lines[i + 1]}"
    return result


def _render_node_error(error: dict[str, Any], renderer: ErrorRenderer) -> str:
    error_id = error.get("id")
    if error.get("message"):
        return renderer.render(error["message"])
    if not error_id:
        return renderer.render(error["msg"]) if error.get("msg") else UNRECOGNIZED_ERROR
    if "with" in error:
        return renderer.render(error_id, error["with"], error.get("location"))
    if error_id == "failure" and error.get("msg"):
        return renderer.render(error["msg"])
    return renderer.render(error_id)


def _describe_body(body: Any, renderer: ErrorRenderer) -> OperationResult:
    if isinstance(body, str):
        return OperationResult.failed(renderer.render(parse_trace(body)))
    if isinstance(body, list) and body:
        body = body[0]
    if isinstance(body, dict):
        return OperationResult.failed(_render_node_error(body, renderer), body.get("id"))
    return OperationResult.failed(UNRECOGNIZED_ERROR)


def describe_failure(exc: BaseException, renderer: ErrorRenderer) -> OperationResult:
    """Convert a pipeline exception into the uniform failure result."""
    if isinstance(exc, OperationFailure):
        return _describe_body(exc.error, renderer)
    if isinstance(exc, ProtocolRejection):
        return _describe_body(exc.body, renderer)
    if isinstance(exc, EngineError):
        return OperationResult.failed(renderer.render(exc.error_id), exc.error_id)
    if str(exc):
        return OperationResult.failed(renderer.render(str(exc)))
    return OperationResult.failed(UNRECOGNIZED_ERROR)
