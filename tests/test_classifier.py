"""
Tests for node answer classification.

Test plan:
- select_error: last error wins, balance_too_low supersedes a trailing
  subtraction_underflow, only for that ordered pair
- check_applied: applied passes, failed raises with the selected error,
  internal operation errors, failure without errors, simulation flag,
  activation contents skipped
- originated_contracts collected from originations only
- op_check: 51-char hash succeeds, anything else fails
- parse_trace: last pointer joined with the following line
- describe_failure: every exception family maps to the uniform result
  and a node message takes precedence over its id
"""

from typing import Any

import pytest

from tzops.classifier import (
    UNRECOGNIZED_ERROR,
    ErrorCause,
    OperationResult,
    cause_of,
    check_applied,
    describe_failure,
    op_check,
    originated_contracts,
    parse_trace,
    select_error,
)
from tzops.errors import (
    FeeTooHigh,
    OperationFailure,
    ProtocolRejection,
    TransportError,
    UncaughtAppliedFailure,
)
from tzops.messages import DefaultErrorRenderer

BALANCE_TOO_LOW = {"kind": "temporary", "id": "proto.017-PtNairob.contract.balance_too_low"}
UNDERFLOW = {"kind": "temporary", "id": "proto.017-PtNairob.tez.subtraction_underflow"}
SCRIPT_REJECTED = {"kind": "temporary", "id": "proto.017-PtNairob.michelson_v1.script_rejected"}
RUNTIME_ERROR = {"kind": "temporary", "id": "proto.017-PtNairob.michelson_v1.runtime_error"}
GAS_EXHAUSTED = {"kind": "temporary", "id": "proto.017-PtNairob.gas_exhausted.operation"}

RENDERER = DefaultErrorRenderer()


def _content(kind: str, status: str | None, **extra: Any) -> dict[str, Any]:
    metadata: dict[str, Any] = {}
    if status is not None:
        metadata["operation_result"] = {"status": status, **extra}
    return {"kind": kind, "metadata": metadata}


def _applied(*contents: dict[str, Any]) -> list[dict[str, Any]]:
    return [{"contents": list(contents), "signature": "sig"}]


# ---------------------------------------------------------------------------
# Error selection
# ---------------------------------------------------------------------------


class TestSelectError:
    def test_cause_of(self) -> None:
        assert cause_of(BALANCE_TOO_LOW) is ErrorCause.BALANCE_TOO_LOW
        assert cause_of(UNDERFLOW) is ErrorCause.SUBTRACTION_UNDERFLOW
        assert cause_of(RUNTIME_ERROR) is ErrorCause.UNKNOWN
        assert cause_of({"kind": "temporary"}) is ErrorCause.UNKNOWN

    def test_last_error_wins(self) -> None:
        assert select_error([RUNTIME_ERROR, SCRIPT_REJECTED]) is SCRIPT_REJECTED

    def test_single_error(self) -> None:
        assert select_error([GAS_EXHAUSTED]) is GAS_EXHAUSTED

    def test_balance_too_low_supersedes_underflow(self) -> None:
        assert select_error([RUNTIME_ERROR, BALANCE_TOO_LOW, UNDERFLOW]) is BALANCE_TOO_LOW

    def test_underflow_kept_without_balance_error(self) -> None:
        assert select_error([RUNTIME_ERROR, UNDERFLOW]) is UNDERFLOW

    def test_order_matters(self) -> None:
        assert select_error([UNDERFLOW, BALANCE_TOO_LOW]) is BALANCE_TOO_LOW
        assert select_error([BALANCE_TOO_LOW, GAS_EXHAUSTED]) is GAS_EXHAUSTED


# ---------------------------------------------------------------------------
# Applied results
# ---------------------------------------------------------------------------


class TestCheckApplied:
    def test_all_applied(self) -> None:
        check_applied(_applied(_content("reveal", "applied"), _content("transaction", "applied")))

    def test_activation_is_not_checked(self) -> None:
        check_applied(_applied(_content("activate_account", None)))

    def test_failed_raises_selected_error(self) -> None:
        applied = _applied(
            _content("transaction", "failed", errors=[BALANCE_TOO_LOW, UNDERFLOW]),
        )
        with pytest.raises(OperationFailure) as exc_info:
            check_applied(applied)
        assert exc_info.value.error is BALANCE_TOO_LOW
        assert exc_info.value.simulation is False

    def test_backtracked_then_failed(self) -> None:
        applied = _applied(
            _content("transaction", "backtracked"),
            _content("transaction", "failed", errors=[SCRIPT_REJECTED]),
        )
        with pytest.raises(OperationFailure) as exc_info:
            check_applied(applied)
        assert exc_info.value.error is SCRIPT_REJECTED

    def test_internal_operation_error(self) -> None:
        content = _content("transaction", "backtracked")
        content["metadata"]["internal_operation_results"] = [
            {"kind": "transaction", "result": {"status": "applied"}},
            {"kind": "transaction", "result": {"status": "failed", "errors": [RUNTIME_ERROR, SCRIPT_REJECTED]}},
        ]
        with pytest.raises(OperationFailure) as exc_info:
            check_applied(_applied(content))
        assert exc_info.value.error is SCRIPT_REJECTED

    def test_failure_without_errors(self) -> None:
        with pytest.raises(UncaughtAppliedFailure):
            check_applied(_applied(_content("transaction", "failed")))

    def test_simulation_result_shape(self) -> None:
        simulated = {"contents": [_content("transaction", "failed", errors=[GAS_EXHAUSTED])]}
        with pytest.raises(OperationFailure) as exc_info:
            check_applied(simulated, simulation=True)
        assert exc_info.value.simulation is True
        assert exc_info.value.node_error_id == GAS_EXHAUSTED["id"]


class TestOriginatedContracts:
    def test_collects_originations(self) -> None:
        applied = _applied(
            _content("transaction", "applied", originated_contracts=["KT1ignored"]),
            _content("origination", "applied", originated_contracts=["KT1first"]),
            _content("origination", "applied", originated_contracts=["KT1second"]),
        )
        assert originated_contracts(applied) == ["KT1first", "KT1second"]

    def test_none(self) -> None:
        assert originated_contracts(_applied(_content("transaction", "applied"))) == []


# ---------------------------------------------------------------------------
# Injection answer
# ---------------------------------------------------------------------------


class TestOpCheck:
    def test_operation_hash(self) -> None:
        op_hash = "o" + "A" * 50
        result = op_check(op_hash, ["KT1new"])
        assert result == OperationResult(True, {"opHash": op_hash, "newKT1s": ["KT1new"]})

    def test_wrong_length(self) -> None:
        result = op_check("o" * 50)
        assert not result.success
        assert result.payload == {"opHash": None, "msg": "o" * 50}

    def test_not_a_string(self) -> None:
        assert not op_check({"error": "x"}).success

    def test_to_dict(self) -> None:
        assert OperationResult.failed("boom", "TooHighFee").to_dict() == {
            "success": False,
            "payload": {"errorId": "TooHighFee", "msg": "boom"},
        }


# ---------------------------------------------------------------------------
# Failure description
# ---------------------------------------------------------------------------


TRACE = """Failed to parse the request body: At /kind, unexpected string instead of endorsement
At /contents/0/amount,
  unexpected string instead of
  a decimal number"""


class TestParseTrace:
    def test_last_pointer(self) -> None:
        assert parse_trace(TRACE) == "At /contents/0/amount, unexpected string instead of"

    def test_no_pointer(self) -> None:
        assert parse_trace("plain message") == "plain message"


class TestDescribeFailure:
    def test_operation_failure(self) -> None:
        result = describe_failure(OperationFailure(BALANCE_TOO_LOW), RENDERER)
        assert result == OperationResult.failed("Insufficient balance", BALANCE_TOO_LOW["id"])

    def test_script_rejection_with_params(self) -> None:
        error = {**SCRIPT_REJECTED, "with": {"string": "NotEnoughBalance"}, "location": 42}
        result = describe_failure(OperationFailure(error), RENDERER)
        assert result.payload["msg"] == "The contract rejected the operation: NotEnoughBalance (at 42)"

    def test_failure_id_uses_msg(self) -> None:
        result = describe_failure(ProtocolRejection(500, [{"id": "failure", "msg": "Bad branch"}]), RENDERER)
        assert result.payload == {"errorId": "failure", "msg": "Bad branch"}

    def test_rejection_text_body(self) -> None:
        result = describe_failure(ProtocolRejection(400, TRACE), RENDERER)
        assert result.payload == {
            "errorId": None,
            "msg": "At /contents/0/amount, unexpected string instead of",
        }

    def test_message_preferred_over_id(self) -> None:
        body = [{"id": "proto.alpha.contract.balance_too_low", "message": "Node is bootstrapping"}]
        result = describe_failure(ProtocolRejection(500, body), RENDERER)
        assert result.payload == {
            "errorId": "proto.alpha.contract.balance_too_low",
            "msg": "Node is bootstrapping",
        }

    def test_rejection_without_id(self) -> None:
        result = describe_failure(ProtocolRejection(500, {"message": "internal"}), RENDERER)
        assert result.payload == {"errorId": None, "msg": "internal"}

    def test_rejection_unrecognized(self) -> None:
        assert describe_failure(ProtocolRejection(500, []), RENDERER).payload["msg"] == UNRECOGNIZED_ERROR
        assert describe_failure(ProtocolRejection(500, {}), RENDERER).payload["msg"] == UNRECOGNIZED_ERROR

    def test_engine_error(self) -> None:
        result = describe_failure(FeeTooHigh("fee 150 exceeds the hard cap"), RENDERER)
        assert result == OperationResult.failed("The fee is above the allowed maximum", "TooHighFee")

    def test_transport_error(self) -> None:
        result = describe_failure(TransportError("ConnectError"), RENDERER)
        assert result.payload == {"errorId": "TransportError", "msg": "Could not reach the node"}

    def test_uncaught(self) -> None:
        result = describe_failure(UncaughtAppliedFailure(), RENDERER)
        assert result.payload["errorId"] == "Uncaught error in applied"

    def test_foreign_exception(self) -> None:
        assert describe_failure(RuntimeError("boom"), RENDERER).payload == {"errorId": None, "msg": "boom"}
        assert describe_failure(RuntimeError(), RENDERER).payload["msg"] == UNRECOGNIZED_ERROR
