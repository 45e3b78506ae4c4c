"""Backup and recovery of the localnet directory as gzip tar archives."""

from __future__ import annotations

import json
import logging
import platform
import re
import shutil
import tarfile
import time
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import Callable, List, Optional

from .errors import BackupError, LocalnetError
from .localnet import LocalnetManager
from .mxpy import Mxpy
from .runtime_env import LocalnetSettings

LOGGER = logging.getLogger(__name__)

ARCHIVE_SUFFIX = ".tar.gz"
STAMP_FILE = ".last_backup_timestamp"
_NAME_TIMESTAMP = re.compile(r"(\d{8}_\d{6})")


def timestamp_for_filename(now: Optional[datetime] = None) -> str:
    return (now or datetime.now()).strftime("%Y%m%d_%H%M%S")


@dataclass
class BackupInfo:
    name: str
    path: Path
    size_bytes: int
    created: Optional[datetime]
    kind: str

    @property
    def size_mb(self) -> float:
        return self.size_bytes / (1024 * 1024)

    @classmethod
    def from_path(cls, path: Path) -> "BackupInfo":
        name = path.name[: -len(ARCHIVE_SUFFIX)]
        match = _NAME_TIMESTAMP.search(name)
        created = datetime.strptime(match.group(1), "%Y%m%d_%H%M%S") if match else None
        if name.startswith("incremental_"):
            kind = "incremental"
        elif name.startswith("pre_restore_"):
            kind = "pre-restore"
        else:
            kind = "full"
        return cls(name=name, path=path, size_bytes=path.stat().st_size, created=created, kind=kind)


class BackupManager:
    """Create, list, verify, restore and prune localnet backups."""

    def __init__(
        self,
        settings: LocalnetSettings,
        localnet: Optional[LocalnetManager] = None,
        max_backups: int = 10,
        compression: int = 6,
        mxpy: Optional[Mxpy] = None,
    ):
        if not 1 <= compression <= 9:
            raise ValueError("compression must be between 1 and 9")
        if max_backups < 1:
            raise ValueError(f"Number of backups to keep must be at least 1 (got {max_backups})")
        self.settings = settings
        self.localnet = localnet
        self.localnet_dir = settings.localnet_dir
        self.backup_dir = settings.backups_dir
        self.metadata_dir = self.backup_dir / "metadata"
        self.stamp_file = self.backup_dir / STAMP_FILE
        self.max_backups = max_backups
        self.compression = compression
        self.mxpy = mxpy or (localnet.mxpy if localnet else Mxpy(dry_run=settings.dry_run))

    def ensure_dirs(self) -> None:
        self.metadata_dir.mkdir(parents=True, exist_ok=True)

    def archive_path(self, name: str) -> Path:
        return self.backup_dir / f"{name}{ARCHIVE_SUFFIX}"

    def _unique_name(self, prefix: str) -> str:
        name = f"{prefix}_{timestamp_for_filename()}"
        candidate, counter = name, 1
        while self.archive_path(candidate).exists():
            candidate = f"{name}_{counter}"
            counter += 1
        return candidate

    # ------------------------------------------------------------------
    # creation
    # ------------------------------------------------------------------

    def _pause_localnet(self) -> bool:
        if self.localnet is None or not self.localnet.is_running():
            return False
        LOGGER.warning("Localnet is running. Stopping it for a consistent backup...")
        self.localnet.stop()
        return True

    def _resume_localnet(self) -> None:
        LOGGER.info("Restarting localnet...")
        try:
            self.localnet.start(wait=False, force=True)
        except (LocalnetError, OSError) as exc:
            LOGGER.error("Localnet did not restart, start it manually: %s", exc)

    def create_full(self) -> BackupInfo:
        """Archive the whole localnet directory."""
        if not self.localnet_dir.is_dir():
            raise BackupError(f"Localnet directory not found: {self.localnet_dir}")
        self.ensure_dirs()
        name = self._unique_name("backup")
        was_running = self._pause_localnet()
        try:
            archive = self.archive_path(name)
            LOGGER.info("Starting full backup: %s", name)
            try:
                with tarfile.open(archive, "w:gz", compresslevel=self.compression) as tar:
                    tar.add(self.localnet_dir, arcname=self.localnet_dir.name)
            except (OSError, tarfile.TarError) as exc:
                archive.unlink(missing_ok=True)
                raise BackupError(f"Failed to create backup archive: {exc}") from exc
            self._write_metadata(name, archive, "full")
            self._stamp()
            self.cleanup()
        finally:
            if was_running:
                self._resume_localnet()
        return BackupInfo.from_path(archive)

    def create_incremental(self) -> Optional[BackupInfo]:
        """
        Archive files changed since the last backup.

        Falls back to a full backup when no previous stamp exists and returns
        None when nothing changed.
        """
        if not self.stamp_file.exists():
            LOGGER.warning("No reference timestamp found, creating full backup instead")
            return self.create_full()
        if not self.localnet_dir.is_dir():
            raise BackupError(f"Localnet directory not found: {self.localnet_dir}")

        reference = self.stamp_file.stat().st_mtime
        changed = sorted(
            path for path in self.localnet_dir.rglob("*")
            if path.is_file() and path.stat().st_mtime > reference
        )
        if not changed:
            LOGGER.info("No files changed since last backup")
            self._stamp()
            return None

        name = self._unique_name("incremental")
        archive = self.archive_path(name)
        LOGGER.info("Creating incremental backup with %d changed files", len(changed))
        try:
            with tarfile.open(archive, "w:gz", compresslevel=self.compression) as tar:
                for path in changed:
                    arcname = Path(self.localnet_dir.name) / path.relative_to(self.localnet_dir)
                    tar.add(path, arcname=str(arcname))
        except (OSError, tarfile.TarError) as exc:
            archive.unlink(missing_ok=True)
            raise BackupError(f"Failed to create incremental backup: {exc}") from exc
        self._write_metadata(name, archive, "incremental", files=len(changed))
        self._stamp()
        return BackupInfo.from_path(archive)

    def _stamp(self) -> None:
        self.stamp_file.write_text(str(int(time.time())), encoding="utf-8")

    def _write_metadata(self, name: str, archive: Path, kind: str, files: Optional[int] = None) -> Path:
        metadata = {
            "backup_name": name,
            "timestamp": datetime.now().astimezone().isoformat(timespec="seconds"),
            "backup_path": str(archive),
            "size_bytes": archive.stat().st_size,
            "compression": "gzip",
            "compression_level": self.compression,
            "encrypted": False,
            "localnet_dir": str(self.localnet_dir),
            "system_info": {
                "os": platform.system(),
                "kernel": platform.release(),
                "arch": platform.machine(),
            },
            "mxpy_version": self.mxpy.version() or "unknown",
            "backup_type": kind,
        }
        if files is not None:
            metadata["files_changed"] = files
        path = self.metadata_dir / f"{name}.json"
        path.write_text(json.dumps(metadata, indent=4) + "\n", encoding="utf-8")
        LOGGER.info("Backup metadata created: %s", path)
        return path

    # ------------------------------------------------------------------
    # inspection and recovery
    # ------------------------------------------------------------------

    def list_backups(self) -> List[BackupInfo]:
        if not self.backup_dir.is_dir():
            return []
        archives = [BackupInfo.from_path(p) for p in self.backup_dir.glob(f"*{ARCHIVE_SUFFIX}")]
        return sorted(archives, key=lambda b: (b.created or datetime.min, b.path.stat().st_mtime), reverse=True)

    def _require(self, name: str) -> Path:
        if not name:
            raise BackupError("Backup name required")
        archive = self.archive_path(name)
        if not archive.is_file():
            raise BackupError(f"Backup file not found: {archive}")
        return archive

    def verify(self, name: str) -> int:
        """Read the whole archive and return its member count."""
        archive = self._require(name)
        try:
            with tarfile.open(archive, "r:gz") as tar:
                count = len(tar.getmembers())
        except (OSError, EOFError, tarfile.TarError) as exc:
            raise BackupError(f"Backup archive is corrupted: {archive} ({exc})") from exc
        LOGGER.info("Archive %s contains %d files/directories", name, count)
        return count

    def _check_members(self, tar: tarfile.TarFile) -> None:
        top = self.localnet_dir.name
        for member in tar.getmembers():
            member_path = Path(member.name)
            if member_path.is_absolute() or ".." in member_path.parts or member_path.parts[0] != top:
                raise BackupError(f"Refusing to restore member outside {top}/: {member.name}")
            if member.issym() or member.islnk():
                link = Path(member.linkname)
                if link.is_absolute() or ".." in link.parts:
                    raise BackupError(f"Refusing to restore link escaping {top}/: {member.name}")

    def restore(self, name: str) -> Path:
        """
        Replace the localnet directory with the contents of a backup.

        The current directory is archived as pre_restore_<timestamp> first.
        Incremental archives are laid over the existing directory instead of
        replacing it.
        """
        archive = self._require(name)
        self.ensure_dirs()
        incremental = BackupInfo.from_path(archive).kind == "incremental"

        was_running = self._pause_localnet()
        try:
            with tarfile.open(archive, "r:gz") as tar:
                self._check_members(tar)
                if self.localnet_dir.is_dir():
                    snapshot = self.archive_path(self._unique_name("pre_restore"))
                    LOGGER.warning("Creating backup of current state: %s", snapshot.name)
                    with tarfile.open(snapshot, "w:gz", compresslevel=self.compression) as snap:
                        snap.add(self.localnet_dir, arcname=self.localnet_dir.name)
                    if not incremental:
                        shutil.rmtree(self.localnet_dir)
                self.localnet_dir.parent.mkdir(parents=True, exist_ok=True)
                if hasattr(tarfile, "data_filter"):
                    tar.extractall(self.localnet_dir.parent, filter="data")
                else:
                    tar.extractall(self.localnet_dir.parent)
        except (OSError, EOFError, tarfile.TarError) as exc:
            raise BackupError(f"Failed to extract backup {name}: {exc}") from exc
        finally:
            if was_running:
                self._resume_localnet()
        LOGGER.info("Backup %s restored into %s", name, self.localnet_dir)
        return self.localnet_dir

    def cleanup(self) -> List[str]:
        """Delete the oldest archives beyond max_backups; return removed names."""
        archives = sorted(self.backup_dir.glob(f"*{ARCHIVE_SUFFIX}"), key=lambda p: p.stat().st_mtime, reverse=True)
        removed = []
        for old in archives[self.max_backups:]:
            name = old.name[: -len(ARCHIVE_SUFFIX)]
            old.unlink()
            (self.metadata_dir / f"{name}.json").unlink(missing_ok=True)
            LOGGER.info("Removed old backup: %s", name)
            removed.append(name)
        return removed

    def run_schedule(
        self,
        interval_hours: float = 24,
        iterations: Optional[int] = None,
        sleep: Callable[[float], None] = time.sleep,
    ) -> int:
        """Create a full backup every interval_hours; returns the number created."""
        if interval_hours <= 0:
            raise ValueError("interval_hours must be positive")
        created = 0
        while iterations is None or created < iterations:
            self.create_full()
            created += 1
            if iterations is not None and created >= iterations:
                break
            LOGGER.info("Next backup in %s hour(s)", interval_hours)
            sleep(interval_hours * 3600)
        return created
