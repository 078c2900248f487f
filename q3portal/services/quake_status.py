"""Cached Quake III server status probe and RCON transport."""

import socket
import threading
import time

from q3portal.services.quake_protocol import (
    MAX_DATAGRAM_BYTES,
    QuakeProtocolError,
    build_getstatus_packet,
    build_rcon_packet,
    parse_status_response,
    strip_oob_prefix,
)
from q3portal.state import QuakeServerStatus

STATUS_CACHE_TTL_MS = 30_000
DEFAULT_TIMEOUT_MS = 5000
TIMEOUT_MESSAGE = "Timeout - servidor no responde"


class RconError(RuntimeError):
    """Raised when an RCON round trip times out or fails at the socket level."""


def _socket_error_text(exc):
    text = str(exc).strip()
    return text or type(exc).__name__


def _udp_round_trip(host, port, payload, timeout_ms):
    """Send one datagram and return the first reply.

    One deadline covers name resolution, send and receive; the socket is
    closed on every path before this returns or raises.
    """
    deadline = time.monotonic() + max(timeout_ms, 1) / 1000.0

    def remaining():
        left = deadline - time.monotonic()
        if left <= 0:
            raise TimeoutError("timed out")
        return left

    family, _, _, _, address = socket.getaddrinfo(host, int(port), socket.AF_INET, socket.SOCK_DGRAM)[0]
    with socket.socket(family, socket.SOCK_DGRAM) as sock:
        sock.settimeout(remaining())
        sock.sendto(payload, address)
        sock.settimeout(remaining())
        data, _ = sock.recvfrom(MAX_DATAGRAM_BYTES)
        return data


class QuakeStatusProber:
    """Owns the process-wide status cache slot for one game server.

    Construct once at startup and share; tests build fresh instances.
    """

    def __init__(
        self,
        *,
        host,
        port,
        rcon_password,
        log_action,
        log_exception,
        timeout_ms=DEFAULT_TIMEOUT_MS,
        cache_ttl_ms=STATUS_CACHE_TTL_MS,
        clock=time.monotonic,
        round_trip=_udp_round_trip,
    ):
        self.host = host
        self.port = int(port)
        self.rcon_password = rcon_password
        self.timeout_ms = timeout_ms
        self.cache_ttl_ms = cache_ttl_ms
        self.log_action = log_action
        self.log_exception = log_exception
        self._clock = clock
        self._round_trip = round_trip
        self._cache_lock = threading.Lock()
        self._cached_status = None
        self._last_query_at = 0.0

    def cached_status(self):
        """Return the cached status, fresh or not, without network I/O."""
        with self._cache_lock:
            return self._cached_status

    def invalidate_cache(self):
        """Drop the cached status so the next query hits the network."""
        with self._cache_lock:
            self._cached_status = None
            self._last_query_at = 0.0

    def _probe(self, host, port, timeout_ms):
        try:
            payload = self._round_trip(host, port, build_getstatus_packet(), timeout_ms)
        except TimeoutError:
            return QuakeServerStatus.offline(TIMEOUT_MESSAGE)
        except OSError as exc:
            return QuakeServerStatus.offline(_socket_error_text(exc))
        try:
            return parse_status_response(payload)
        except QuakeProtocolError as exc:
            return QuakeServerStatus.offline(str(exc))

    def query_quake_server(self, host=None, port=None, timeout_ms=None):
        """Return the server status, served from cache while younger than the TTL.

        Every outcome, offline ones included, replaces the cache entry so a
        down server is not re-queried more than once per TTL window.
        """
        host = host or self.host
        port = port or self.port
        timeout_ms = timeout_ms or self.timeout_ms

        now = self._clock()
        with self._cache_lock:
            cached = self._cached_status
            cached_at = self._last_query_at
        if cached is not None and (now - cached_at) * 1000.0 < self.cache_ttl_ms:
            return cached

        try:
            status = self._probe(host, port, timeout_ms)
        except Exception as exc:
            self.log_exception("query_quake_server", exc)
            status = QuakeServerStatus.offline(_socket_error_text(exc))

        with self._cache_lock:
            self._cached_status = status
            self._last_query_at = now

        if not status.online:
            self.log_action("server-status", command=f"{host}:{port}", rejection_message=status.error)
        return status

    def get_server_status(self):
        """Query the configured server, honoring the cache."""
        return self.query_quake_server(self.host, self.port)

    def refresh_server_status(self):
        """Bypass the cache window and query the configured server now."""
        self.invalidate_cache()
        return self.get_server_status()

    def send_rcon_command(self, command, host=None, port=None, password=None, timeout_ms=None):
        """Send one RCON command and return the reply text.

        Never cached: each call is a fresh round trip. The game server does
        the password check; callers must restrict who can reach this.
        """
        host = host or self.host
        port = port or self.port
        password = self.rcon_password if password is None else password
        timeout_ms = timeout_ms or self.timeout_ms
        packet = build_rcon_packet(password, command)
        try:
            reply = self._round_trip(host, port, packet, timeout_ms)
        except TimeoutError as exc:
            self.log_action("rcon", command=command, rejection_message=TIMEOUT_MESSAGE)
            raise RconError(TIMEOUT_MESSAGE) from exc
        except OSError as exc:
            message = _socket_error_text(exc)
            self.log_action("rcon", command=command, rejection_message=message)
            raise RconError(message) from exc
        self.log_action("rcon", command=command)
        return strip_oob_prefix(reply).decode("utf-8", errors="replace")
