"""Quake III out-of-band packet builders and ``statusResponse`` parser.

Out-of-band datagrams start with four ``0xFF`` bytes. A ``getstatus`` reply
looks like::

    \\xff\\xff\\xff\\xffstatusResponse\\n
    \\sv_hostname\\My Server\\mapname\\q3dm6\\sv_maxclients\\16\\n
    5 23 "xXSniperXx"\\n
    -1 999 "Bot"\\n
"""

import re

from q3portal.state import QuakePlayer, QuakeServerStatus

OOB_PREFIX = b"\xff\xff\xff\xff"
STATUS_MARKER = "statusResponse"
INVALID_RESPONSE_MESSAGE = "Invalid response"
MAX_DATAGRAM_BYTES = 65535

_PLAYER_LINE_RE = re.compile(r'^(-?\d+)\s+(-?\d+)\s+"([^"]+)"$')
_LEADING_INT_RE = re.compile(r"^\s*(-?\d+)")


class QuakeProtocolError(ValueError):
    """Raised when a datagram is not a well-formed status reply."""


def build_getstatus_packet():
    """Return the ``getstatus`` query datagram."""
    return OOB_PREFIX + b"getstatus\n"


def build_rcon_packet(password, command):
    """Return an ``rcon "<password>" <command>`` datagram."""
    return OOB_PREFIX + f'rcon "{password}" {command}\n'.encode("utf-8")


def strip_oob_prefix(payload):
    """Drop the four-byte out-of-band header when present."""
    if payload.startswith(OOB_PREFIX):
        return payload[len(OOB_PREFIX):]
    return payload


def parse_int(value, default=0):
    """Parse the leading integer of ``value`` (``"16abc"`` -> 16), else ``default``."""
    match = _LEADING_INT_RE.match(str(value or ""))
    if not match:
        return default
    return int(match.group(1))


def parse_variables(line):
    """Parse ``\\key\\value\\key\\value`` into a dict.

    Only the empty token produced by the leading backslash is dropped, so an
    empty value keeps its key aligned. An odd trailing key is ignored.
    """
    parts = line.split("\\")
    if parts and parts[0] == "":
        parts = parts[1:]
    values = {}
    for idx in range(0, len(parts) - 1, 2):
        values[parts[idx]] = parts[idx + 1]
    return values


def parse_player_line(line):
    """Parse ``SCORE PING "NAME"``; returns ``None`` for anything else."""
    match = _PLAYER_LINE_RE.match(line.strip())
    if not match:
        return None
    return QuakePlayer(score=int(match.group(1)), ping=int(match.group(2)), name=match.group(3))


def parse_status_response(payload):
    """Decode a ``statusResponse`` datagram into an online status."""
    text = strip_oob_prefix(payload).decode("utf-8", errors="replace")
    if not text.startswith(STATUS_MARKER):
        raise QuakeProtocolError(INVALID_RESPONSE_MESSAGE)

    lines = text.split("\n")
    variables = parse_variables(lines[1].rstrip("\r") if len(lines) > 1 else "")

    players = []
    for raw in lines[2:]:
        line = raw.strip()
        if not line:
            continue
        player = parse_player_line(line)
        if player is not None:
            players.append(player)

    return QuakeServerStatus(
        online=True,
        hostname=variables.get("sv_hostname") or variables.get("hostname") or "Unknown",
        mapname=variables.get("mapname") or "Unknown",
        gametype=variables.get("g_gametype") or variables.get("gametype") or "Unknown",
        max_clients=parse_int(variables.get("sv_maxclients"), 0),
        clients=len(players),
        players=players,
        version=variables.get("version"),
        protocol=parse_int(variables.get("protocol"), 0),
    )
