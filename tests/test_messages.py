"""
Tests for error rendering and the Torus key lookup client.

Test plan:
- node_error_suffix strips protocol prefixes
- DefaultErrorRenderer: known codes, unknown codes, overrides, params
  and location suffixes
- TorusKeyLookup: request shape, network selection, answer matching
"""

from typing import Any

import pytest

from tzops.lookup import TORUS_MAINNET_URL, TORUS_TESTNET_URL, KeyLookupService, TorusKeyLookup
from tzops.messages import DefaultErrorRenderer, ErrorRenderer, node_error_suffix


class TestRenderer:
    def test_suffix(self) -> None:
        assert node_error_suffix("proto.016-PtMumbai.contract.balance_too_low") == "balance_too_low"
        assert node_error_suffix("proto.016-PtMumbai.gas_exhausted.operation") == "gas_exhausted.operation"
        assert node_error_suffix("proto.016-PtMumbai.contract.unknown_thing") == "unknown_thing"
        assert node_error_suffix("TooHighFee") == "TooHighFee"

    def test_known_code(self) -> None:
        assert DefaultErrorRenderer().render("TooHighFee") == "The fee is above the allowed maximum"

    def test_unknown_code_returned(self) -> None:
        assert DefaultErrorRenderer().render("SomethingElse") == "SomethingElse"

    def test_override(self) -> None:
        renderer = DefaultErrorRenderer({"TooHighFee": "Frais trop élevés"})
        assert renderer.render("TooHighFee") == "Frais trop élevés"
        assert renderer.render("InvalidAddress") == "Invalid address"

    def test_params_and_location(self) -> None:
        params = {"prim": "Pair", "args": [{"string": "low"}, {"int": "3"}]}
        message = DefaultErrorRenderer().render("proto.alpha.michelson_v1.script_rejected", params, 17)
        assert message == "The contract rejected the operation: Pair low 3 (at 17)"

    def test_satisfies_protocol(self) -> None:
        assert isinstance(DefaultErrorRenderer(), ErrorRenderer)


# ---------------------------------------------------------------------------
# Torus lookup
# ---------------------------------------------------------------------------


class FakeTransport:
    def __init__(self, response: Any) -> None:
        self._response = response
        self.calls: list[tuple[str, str, Any]] = []

    async def request(self, method: str, url: str, payload: Any = None) -> Any:
        self.calls.append((method, url, payload))
        return self._response


class TestTorusKeyLookup:
    def test_network_selection(self) -> None:
        assert TorusKeyLookup("mainnet", FakeTransport(None)).url == TORUS_MAINNET_URL
        assert TorusKeyLookup("ghostnet", FakeTransport(None)).url == TORUS_TESTNET_URL
        assert isinstance(TorusKeyLookup("mainnet", FakeTransport(None)), KeyLookupService)

    @pytest.mark.asyncio
    async def test_matching_answer(self) -> None:
        answer = {"result": {"PublicKey": {"X": "ab", "Y": "cd"}, "Verifiers": {"google": ["me"]}}}
        transport = FakeTransport(answer)
        assert await TorusKeyLookup("mainnet", transport).lookup("ab", "cd") == answer
        method, url, payload = transport.calls[0]
        assert (method, url) == ("POST", TORUS_MAINNET_URL)
        assert payload == {
            "jsonrpc": "2.0",
            "method": "KeyLookupRequest",
            "id": 10,
            "params": {"pub_key_X": "ab", "pub_key_Y": "cd"},
        }

    @pytest.mark.asyncio
    async def test_mismatched_point(self) -> None:
        answer = {"result": {"PublicKey": {"X": "ab", "Y": "00"}}}
        assert await TorusKeyLookup("mainnet", FakeTransport(answer)).lookup("ab", "cd") is None

    @pytest.mark.asyncio
    async def test_error_answer(self) -> None:
        answer = {"error": {"code": -32602, "message": "not found"}}
        assert await TorusKeyLookup("mainnet", FakeTransport(answer)).lookup("ab", "cd") is None
