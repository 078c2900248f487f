import socket
import threading
import unittest
from unittest.mock import Mock, patch

from q3portal.services.quake_status import (
    TIMEOUT_MESSAGE,
    QuakeStatusProber,
    RconError,
    _udp_round_trip,
)

STATUS_REPLY = (
    b"\xff\xff\xff\xffstatusResponse\n"
    b"\\sv_hostname\\Arena\\mapname\\q3dm17\\sv_maxclients\\8\n"
    b'3 50 "Visor"\n'
)


class FakeClock:
    def __init__(self):
        self.now = 1000.0

    def __call__(self):
        return self.now

    def advance(self, seconds):
        self.now += seconds


class ScriptedRoundTrip:
    """Stands in for the UDP transport; replays ``outcomes`` in order."""

    def __init__(self, *outcomes):
        self.outcomes = list(outcomes)
        self.calls = []

    def __call__(self, host, port, payload, timeout_ms):
        self.calls.append((host, port, payload, timeout_ms))
        outcome = self.outcomes.pop(0) if len(self.outcomes) > 1 else self.outcomes[0]
        if isinstance(outcome, BaseException):
            raise outcome
        return outcome


def _prober(round_trip, clock=None, **overrides):
    kwargs = {
        "host": "127.0.0.1",
        "port": 27960,
        "rcon_password": "pw",
        "log_action": Mock(),
        "log_exception": Mock(),
        "timeout_ms": 300,
        "clock": clock or FakeClock(),
        "round_trip": round_trip,
    }
    kwargs.update(overrides)
    return QuakeStatusProber(**kwargs)


class QuakeStatusCacheTests(unittest.TestCase):
    def test_cache_serves_within_ttl_and_requeries_after(self):
        clock = FakeClock()
        transport = ScriptedRoundTrip(STATUS_REPLY)
        prober = _prober(transport, clock)

        first = prober.get_server_status()
        clock.advance(29.9)
        second = prober.get_server_status()
        self.assertIs(first, second)
        self.assertEqual(len(transport.calls), 1)

        clock.advance(0.2)
        third = prober.get_server_status()
        self.assertEqual(len(transport.calls), 2)
        self.assertIsNot(third, first)
        self.assertEqual(third.mapname, "q3dm17")

    def test_offline_result_is_cached_too(self):
        clock = FakeClock()
        transport = ScriptedRoundTrip(TimeoutError("timed out"))
        prober = _prober(transport, clock)

        status = prober.get_server_status()
        self.assertFalse(status.online)
        self.assertEqual(status.error, TIMEOUT_MESSAGE)
        prober.get_server_status()
        self.assertEqual(len(transport.calls), 1)
        prober.log_action.assert_called_once_with(
            "server-status", command="127.0.0.1:27960", rejection_message=TIMEOUT_MESSAGE
        )

    def test_refresh_bypasses_cache(self):
        transport = ScriptedRoundTrip(STATUS_REPLY)
        prober = _prober(transport)
        prober.get_server_status()
        refreshed = prober.refresh_server_status()
        self.assertEqual(len(transport.calls), 2)
        self.assertTrue(refreshed.online)

    def test_query_sends_getstatus_with_timeout(self):
        transport = ScriptedRoundTrip(STATUS_REPLY)
        prober = _prober(transport)
        prober.query_quake_server("10.0.0.5", 27961, 1200)
        self.assertEqual(transport.calls[0], ("10.0.0.5", 27961, b"\xff\xff\xff\xffgetstatus\n", 1200))


class QuakeStatusFailureTests(unittest.TestCase):
    def test_socket_error_becomes_offline(self):
        prober = _prober(ScriptedRoundTrip(ConnectionRefusedError(111, "Connection refused")))
        status = prober.get_server_status()
        self.assertFalse(status.online)
        self.assertTrue(status.error)

    def test_malformed_reply_becomes_offline(self):
        prober = _prober(ScriptedRoundTrip(b"\xff\xff\xff\xffprint\nhello\n"))
        status = prober.get_server_status()
        self.assertFalse(status.online)
        self.assertEqual(status.error, "Invalid response")
        self.assertEqual(set(status.to_dict()), {"online", "error", "lastUpdate"})

    def test_unexpected_error_is_logged_and_offline(self):
        prober = _prober(ScriptedRoundTrip(RuntimeError("boom")))
        status = prober.get_server_status()
        self.assertFalse(status.online)
        self.assertEqual(status.error, "boom")
        prober.log_exception.assert_called_once()


class RconTests(unittest.TestCase):
    def test_rcon_returns_reply_without_prefix(self):
        transport = ScriptedRoundTrip(b"\xff\xff\xff\xffprint\nmap changed\n")
        prober = _prober(transport)
        reply = prober.send_rcon_command("map q3dm6")
        self.assertEqual(reply, "print\nmap changed\n")
        self.assertEqual(transport.calls[0][2], b'\xff\xff\xff\xffrcon "pw" map q3dm6\n')

    def test_rcon_is_never_cached(self):
        transport = ScriptedRoundTrip(b"\xff\xff\xff\xffprint\nok\n")
        prober = _prober(transport)
        prober.send_rcon_command("status")
        prober.send_rcon_command("status")
        self.assertEqual(len(transport.calls), 2)
        self.assertIsNone(prober.cached_status())

    def test_rcon_timeout_raises(self):
        prober = _prober(ScriptedRoundTrip(TimeoutError("timed out")))
        with self.assertRaises(RconError) as ctx:
            prober.send_rcon_command("status")
        self.assertEqual(str(ctx.exception), TIMEOUT_MESSAGE)
        prober.log_action.assert_called_once_with(
            "rcon", command="status", rejection_message=TIMEOUT_MESSAGE
        )

    def test_rcon_explicit_password_overrides_default(self):
        transport = ScriptedRoundTrip(b"print\n")
        prober = _prober(transport)
        prober.send_rcon_command("status", password="other")
        self.assertIn(b'rcon "other" status', transport.calls[0][2])


class RoundTripDeadlineTests(unittest.TestCase):
    def test_slow_resolution_consumes_the_deadline(self):
        clock = Mock(side_effect=[100.0, 105.0])
        fake_time = Mock(monotonic=clock)
        resolved = [(socket.AF_INET, socket.SOCK_DGRAM, 17, "", ("127.0.0.1", 27960))]
        with patch("q3portal.services.quake_status.time", fake_time), \
                patch("q3portal.services.quake_status.socket.getaddrinfo", return_value=resolved) as lookup:
            with self.assertRaises(TimeoutError):
                _udp_round_trip("q3.example.org", 27960, b"\xff\xff\xff\xffgetstatus\n", 1000)
        lookup.assert_called_once_with("q3.example.org", 27960, socket.AF_INET, socket.SOCK_DGRAM)

    def test_resolution_failure_is_offline(self):
        prober = QuakeStatusProber(
            host="unresolvable.invalid",
            port=27960,
            rcon_password="pw",
            log_action=Mock(),
            log_exception=Mock(),
            timeout_ms=300,
        )
        with patch(
            "q3portal.services.quake_status.socket.getaddrinfo",
            side_effect=socket.gaierror(-2, "Name or service not known"),
        ):
            status = prober.get_server_status()
        self.assertFalse(status.online)
        self.assertIn("Name or service not known", status.error)


class LoopbackUdpTests(unittest.TestCase):
    def setUp(self):
        self.server = socket.socket(socket.AF_INET, socket.SOCK_DGRAM)
        self.server.bind(("127.0.0.1", 0))
        self.server.settimeout(2.0)
        self.port = self.server.getsockname()[1]
        self.addCleanup(self.server.close)

    def _answer_once(self, reply):
        def _serve():
            try:
                data, addr = self.server.recvfrom(2048)
            except OSError:
                return
            self.received = data
            self.server.sendto(reply, addr)

        thread = threading.Thread(target=_serve, daemon=True)
        thread.start()
        return thread

    def test_real_socket_round_trip(self):
        thread = self._answer_once(STATUS_REPLY)
        prober = QuakeStatusProber(
            host="127.0.0.1",
            port=self.port,
            rcon_password="pw",
            log_action=Mock(),
            log_exception=Mock(),
            timeout_ms=2000,
        )
        status = prober.get_server_status()
        thread.join(2.0)
        self.assertTrue(status.online)
        self.assertEqual(status.hostname, "Arena")
        self.assertEqual(status.clients, 1)
        self.assertEqual(self.received, b"\xff\xff\xff\xffgetstatus\n")

    def test_real_socket_timeout(self):
        prober = QuakeStatusProber(
            host="127.0.0.1",
            port=self.port,
            rcon_password="pw",
            log_action=Mock(),
            log_exception=Mock(),
            timeout_ms=150,
        )
        status = prober.get_server_status()
        self.assertFalse(status.online)
        self.assertEqual(status.error, TIMEOUT_MESSAGE)


if __name__ == "__main__":
    unittest.main()
