"""
Tests for RpcGateway: round-robin selection and bounded retry.

Uses a FakeTransport that replays a script of results per call and
records every URL it was asked for. Sleep is injected so nothing waits.

Test plan:
- Selection: attempt c goes to endpoints[c % N], paths joined cleanly
- Retry bound: max(3, N) attempts, including N = 1
- Exhaustion raises the first error, not the last
- ProtocolRejection is not retried
- Recovery after transient failures
- Sleep called between attempts only, with the configured delay
  (never before the first attempt or after the last)
"""

from typing import Any

import pytest

from tzops.errors import ConfigError, ProtocolRejection, TransportError
from tzops.rpc.gateway import RpcGateway

# ---------------------------------------------------------------------------
# Fakes
# ---------------------------------------------------------------------------


class FakeTransport:
    """Replays scripted results; exceptions in the script are raised."""

    def __init__(self, script: list[Any]) -> None:
        self._script = list(script)
        self.calls: list[tuple[str, str, Any]] = []

    async def request(self, method: str, url: str, payload: Any = None) -> Any:
        self.calls.append((method, url, payload))
        result = self._script.pop(0) if self._script else TransportError("script exhausted")
        if isinstance(result, Exception):
            raise result
        return result


class RecordingSleep:
    def __init__(self) -> None:
        self.delays: list[float] = []

    async def __call__(self, delay: float) -> None:
        self.delays.append(delay)


def _gateway(endpoints: list[str], script: list[Any]) -> tuple[RpcGateway, FakeTransport, RecordingSleep]:
    transport = FakeTransport(script)
    sleep = RecordingSleep()
    return RpcGateway(endpoints, transport=transport, retry_delay=0.25, sleep=sleep), transport, sleep


# ---------------------------------------------------------------------------
# Selection
# ---------------------------------------------------------------------------


class TestSelection:
    def test_empty_endpoints_rejected(self) -> None:
        with pytest.raises(ConfigError):
            RpcGateway([], transport=FakeTransport([]))

    def test_url_for_round_robin(self) -> None:
        gateway, _, _ = _gateway(["https://a/", "https://b"], [])
        assert gateway.url_for(0, "chains/main") == "https://a/chains/main"
        assert gateway.url_for(1, "/chains/main") == "https://b/chains/main"
        assert gateway.url_for(2, "chains/main") == "https://a/chains/main"

    def test_max_attempts(self) -> None:
        assert _gateway(["https://a"], [])[0].max_attempts == 3
        assert _gateway(["https://a", "https://b", "https://c", "https://d"], [])[0].max_attempts == 4

    @pytest.mark.asyncio
    async def test_first_attempt_uses_first_endpoint(self) -> None:
        gateway, transport, sleep = _gateway(["https://a", "https://b"], [{"ok": True}])
        assert await gateway.get("x") == {"ok": True}
        assert transport.calls == [("GET", "https://a/x", None)]
        assert sleep.delays == []

    @pytest.mark.asyncio
    async def test_post_body_forwarded(self) -> None:
        gateway, transport, _ = _gateway(["https://a"], ["ooHash"])
        assert await gateway.post("injection/operation", "abcd") == "ooHash"
        assert transport.calls == [("POST", "https://a/injection/operation", "abcd")]


# ---------------------------------------------------------------------------
# Retry
# ---------------------------------------------------------------------------


class TestRetry:
    @pytest.mark.asyncio
    async def test_three_endpoints_all_failing(self) -> None:
        errors = [TransportError("e1"), TransportError("e2"), TransportError("e3")]
        gateway, transport, sleep = _gateway(["https://a", "https://b", "https://c"], errors)
        with pytest.raises(TransportError) as exc_info:
            await gateway.get("x")
        assert exc_info.value is errors[0]
        assert [url for _, url, _ in transport.calls] == ["https://a/x", "https://b/x", "https://c/x"]
        assert sleep.delays == [0.25, 0.25]

    @pytest.mark.asyncio
    async def test_single_endpoint_still_three_attempts(self) -> None:
        errors = [TransportError("e1"), TransportError("e2"), TransportError("e3")]
        gateway, transport, _ = _gateway(["https://a"], errors)
        with pytest.raises(TransportError, match="e1"):
            await gateway.get("x")
        assert len(transport.calls) == 3
        assert {url for _, url, _ in transport.calls} == {"https://a/x"}

    @pytest.mark.asyncio
    async def test_five_endpoints_five_attempts(self) -> None:
        endpoints = [f"https://n{i}" for i in range(5)]
        gateway, transport, sleep = _gateway(endpoints, [TransportError(str(i)) for i in range(5)])
        with pytest.raises(TransportError, match="0"):
            await gateway.get("x")
        assert len(transport.calls) == 5
        assert len(sleep.delays) == 4

    @pytest.mark.asyncio
    async def test_recovers_on_next_endpoint(self) -> None:
        gateway, transport, sleep = _gateway(
            ["https://a", "https://b"], [TransportError("down"), {"level": 7}]
        )
        assert await gateway.get("x") == {"level": 7}
        assert [url for _, url, _ in transport.calls] == ["https://a/x", "https://b/x"]
        assert sleep.delays == [0.25]

    @pytest.mark.asyncio
    async def test_rejection_not_retried(self) -> None:
        rejection = ProtocolRejection(400, [{"id": "proto.counter_in_the_past"}])
        gateway, transport, sleep = _gateway(["https://a", "https://b"], [rejection])
        with pytest.raises(ProtocolRejection) as exc_info:
            await gateway.post("x", {})
        assert exc_info.value is rejection
        assert len(transport.calls) == 1
        assert sleep.delays == []

    @pytest.mark.asyncio
    async def test_sleep_only_between_attempts(self) -> None:
        events: list[str] = []

        class LoggingTransport(FakeTransport):
            async def request(self, method: str, url: str, payload: Any = None) -> Any:
                events.append(f"call {url}")
                return await super().request(method, url, payload)

        async def sleep(delay: float) -> None:
            events.append("sleep")

        transport = LoggingTransport([TransportError("e1"), TransportError("e2"), TransportError("e3")])
        gateway = RpcGateway(["https://a"], transport=transport, sleep=sleep)
        with pytest.raises(TransportError, match="e1"):
            await gateway.get("x")
        assert events == [
            "call https://a/x", "sleep", "call https://a/x", "sleep", "call https://a/x",
        ]
