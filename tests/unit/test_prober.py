"""Tests for the HTTP health prober."""

from __future__ import annotations

from collections.abc import Callable, Iterator

import httpx

from failover.prober import USER_AGENT, HttpProber, ProbeOutcome

MONITOR_URL = "https://www.example.com/health"


class SteppingMonotonic:
    """Monotonic clock that only moves when told to."""

    def __init__(self) -> None:
        self.now = 1000.0

    def __call__(self) -> float:
        return self.now


class DripStream(httpx.SyncByteStream):
    """Response body delivered one byte at a time, ``delay`` seconds apart."""

    def __init__(self, clock: SteppingMonotonic, body: bytes, delay: float) -> None:
        self._clock = clock
        self._body = body
        self._delay = delay
        self.chunks_sent = 0

    def __iter__(self) -> Iterator[bytes]:
        for index in range(len(self._body)):
            self._clock.now += self._delay
            self.chunks_sent += 1
            yield self._body[index : index + 1]


def _prober(handler: Callable[[httpx.Request], httpx.Response]) -> HttpProber:
    return HttpProber(transport=httpx.MockTransport(handler))


class TestHttpProber:
    """Tests for HttpProber.probe."""

    def test_200_is_healthy(self) -> None:
        prober = _prober(lambda request: httpx.Response(200, text="ok"))
        result = prober.probe(MONITOR_URL, 5)
        assert result.outcome is ProbeOutcome.HEALTHY
        assert result.healthy is True
        assert result.status_code == 200
        assert result.error is None
        assert result.latency_ms >= 0

    def test_other_2xx_is_unhealthy(self) -> None:
        prober = _prober(lambda request: httpx.Response(204))
        result = prober.probe(MONITOR_URL, 5)
        assert result.healthy is False
        assert result.status_code == 204

    def test_server_error_is_unhealthy(self) -> None:
        prober = _prober(lambda request: httpx.Response(503))
        result = prober.probe(MONITOR_URL, 5)
        assert result.outcome is ProbeOutcome.UNHEALTHY
        assert result.status_code == 503
        assert result.error == "HTTP 503"

    def test_redirect_is_not_followed(self) -> None:
        requested: list[str] = []

        def handler(request: httpx.Request) -> httpx.Response:
            requested.append(str(request.url))
            return httpx.Response(301, headers={"Location": "https://elsewhere.example.com/"})

        result = _prober(handler).probe(MONITOR_URL, 5)
        assert result.healthy is False
        assert result.status_code == 301
        assert requested == [MONITOR_URL]

    def test_timeout_is_unhealthy(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ReadTimeout("timed out", request=request)

        result = _prober(handler).probe(MONITOR_URL, 2)
        assert result.healthy is False
        assert result.status_code is None
        assert result.error == "timeout after 2s"

    def test_connection_error_is_unhealthy(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("connection refused", request=request)

        result = _prober(handler).probe(MONITOR_URL, 5)
        assert result.healthy is False
        assert result.status_code is None
        assert result.error is not None
        assert "ConnectError" in result.error

    def test_sends_user_agent(self) -> None:
        seen: list[str | None] = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request.headers.get("User-Agent"))
            return httpx.Response(200)

        _prober(handler).probe(MONITOR_URL, 5)
        assert seen == [USER_AGENT]


class TestProbeDeadline:
    """Tests for the overall request deadline."""

    def test_slow_drip_body_is_cut_off_at_deadline(self) -> None:
        clock = SteppingMonotonic()
        stream = DripStream(clock, b"healthy!", delay=0.6)
        prober = HttpProber(
            transport=httpx.MockTransport(lambda request: httpx.Response(200, stream=stream)),
            monotonic=clock,
        )

        result = prober.probe(MONITOR_URL, 1)

        assert result.healthy is False
        assert result.status_code is None
        assert result.error == "timeout after 1s"
        # Stops on the chunk that crosses the deadline, not after all eight
        assert stream.chunks_sent == 2

    def test_slow_headers_are_unhealthy(self) -> None:
        clock = SteppingMonotonic()

        def handler(request: httpx.Request) -> httpx.Response:
            clock.now += 1.5
            return httpx.Response(200, text="ok")

        prober = HttpProber(transport=httpx.MockTransport(handler), monotonic=clock)
        result = prober.probe(MONITOR_URL, 1)

        assert result.healthy is False
        assert result.error == "timeout after 1s"
        assert result.latency_ms == 1500

    def test_body_within_deadline_is_healthy(self) -> None:
        clock = SteppingMonotonic()
        stream = DripStream(clock, b"ok", delay=0.2)
        prober = HttpProber(
            transport=httpx.MockTransport(lambda request: httpx.Response(200, stream=stream)),
            monotonic=clock,
        )

        result = prober.probe(MONITOR_URL, 1)

        assert result.healthy is True
        assert result.status_code == 200
        assert stream.chunks_sent == 2
