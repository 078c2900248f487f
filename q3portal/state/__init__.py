"""Typed records shared by the status prober and the backup engine."""
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import List, Optional

from q3portal.core.filesystem_utils import iso_utc

SCOPE_DEFAULT = "default"
SCOPE_MANUAL = "manual"
BACKUP_SCOPES = (SCOPE_DEFAULT, SCOPE_MANUAL)
MANIFEST_FORMAT_VERSION = 1


def _utc_now():
    return datetime.now(timezone.utc)


@dataclass
class QuakePlayer:
    """One player line of a ``statusResponse``."""
    score: int
    ping: int
    name: str

    def to_dict(self):
        return {"score": self.score, "ping": self.ping, "name": self.name}


@dataclass
class QuakeServerStatus:
    """Snapshot of a game server; rebuilt on every network query."""
    online: bool
    hostname: Optional[str] = None
    mapname: Optional[str] = None
    gametype: Optional[str] = None
    max_clients: int = 0
    clients: int = 0
    players: List[QuakePlayer] = field(default_factory=list)
    version: Optional[str] = None
    protocol: int = 0
    error: Optional[str] = None
    last_update: datetime = field(default_factory=_utc_now)

    @classmethod
    def offline(cls, error):
        """Build an offline status; ``error`` is always non-empty."""
        return cls(online=False, error=str(error or "").strip() or "Unknown error")

    def to_dict(self):
        """Return the JSON shape served to the web client."""
        if not self.online:
            return {
                "online": False,
                "error": self.error,
                "lastUpdate": iso_utc(self.last_update),
            }
        payload = {
            "online": True,
            "hostname": self.hostname,
            "mapname": self.mapname,
            "gametype": self.gametype,
            "maxClients": self.max_clients,
            "clients": self.clients,
            "players": [player.to_dict() for player in self.players],
            "protocol": self.protocol,
            "lastUpdate": iso_utc(self.last_update),
        }
        if self.version is not None:
            payload["version"] = self.version
        return payload


@dataclass
class BackupSettings:
    """Persisted scheduler/rotation settings (``backup-settings.json``)."""
    enabled: bool = True
    max_copies: int = 3
    interval_days: int = 1
    last_backup_at: Optional[str] = None

    def to_dict(self):
        return {
            "enabled": self.enabled,
            "maxCopies": self.max_copies,
            "intervalDays": self.interval_days,
            "lastBackupAt": self.last_backup_at,
        }


@dataclass
class BackupEntry:
    """One archive found on disk; derived from a directory listing."""
    scope: str
    protected_from_rotation: bool
    filename: str
    full_path: str
    size_bytes: int
    created_at: str
    created_at_ts: float = 0.0

    def to_dict(self, include_path=True):
        payload = {
            "scope": self.scope,
            "protectedFromRotation": self.protected_from_rotation,
            "filename": self.filename,
            "sizeBytes": self.size_bytes,
            "createdAt": self.created_at,
        }
        if include_path:
            payload["fullPath"] = self.full_path
        return payload


@dataclass
class ManifestFile:
    """Content-addressed inventory line for one archived file."""
    path: str
    sha256: str
    size_bytes: int

    def to_dict(self):
        return {"path": self.path, "sha256": self.sha256, "sizeBytes": self.size_bytes}


@dataclass
class BackupManifest:
    """``.backup-manifest.json`` embedded at the archive root."""
    files: List[ManifestFile] = field(default_factory=list)
    format_version: int = MANIFEST_FORMAT_VERSION

    def to_dict(self):
        return {
            "formatVersion": self.format_version,
            "files": [item.to_dict() for item in self.files],
        }
