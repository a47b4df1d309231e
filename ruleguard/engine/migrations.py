"""One-time migrations over the persisted trade collection.

Each migration is gated by a flag in the store. A run loads every trade
document, applies a per-entry transform, writes the collection back only
when something changed, and sets the flag in the same transaction.
Transforms are idempotent, so a run interrupted before the flag is set is
simply repeated on the next start.

When a migration rewrites trades, the collection as it was before is kept
in a backup collection that restore_backup() can put back.
"""

import base64
import binascii
import logging
from datetime import datetime
from typing import Iterable, Optional
from urllib.parse import unquote_to_bytes

from pydantic import BaseModel, Field
from pydantic import ValidationError as PydanticValidationError

from ruleguard.attachments.base import AttachmentStore
from ruleguard.db.store import SCHEMA_VERSION, TRADES, DataStore
from ruleguard.engine.compliance import calculate_pnl
from ruleguard.errors import (
    BackupNotFoundError,
    ConcurrentModificationError,
    MigrationError,
    RuleGuardError,
    StorageCorruption,
)
from ruleguard.models import document_image_ids

logger = logging.getLogger(__name__)

BACKUP_PREFIX = "backup:"
INLINE_IMAGE_FIELD = "images"
DEPRECATED_TRADE_FIELDS = ("images", "imageData", "screenshots")


class Migration:
    """Base class for trade collection migrations."""

    flag: str = ""
    description: str = ""
    requires: tuple[str, ...] = ()

    def begin(self) -> None:
        """Called before the first entry of a run."""

    def transform(self, entry: dict) -> dict:
        """Return the migrated entry, or the same entry if nothing changes.

        Raises:
            Exception: Any failure aborts this migration's run.
        """
        raise NotImplementedError

    def abort(self) -> None:
        """Called when a run fails, to release side effects of the run."""

    def commit(self) -> None:
        """Called after the migrated collection and flag are stored."""


def decode_inline_image(payload: str) -> bytes:
    """Decode an inline image payload (data URL or bare base64).

    Raises:
        ValueError: If the payload cannot be decoded.
    """
    if not isinstance(payload, str):
        raise ValueError(f"inline image must be a string, got {type(payload).__name__}")
    if payload.startswith("data:"):
        header, _, data = payload.partition(",")
        if header.endswith(";base64"):
            return base64.b64decode(data)
        return unquote_to_bytes(data)
    try:
        return base64.b64decode(payload, validate=True)
    except binascii.Error as e:
        raise ValueError(f"inline image is not valid base64: {e}") from e


class ExternalizeAttachments(Migration):
    """Move inline image payloads into the attachment store."""

    flag = "images_migrated_v1"
    description = "Store inline trade images in the attachment store"

    def __init__(self, attachments: AttachmentStore):
        self._attachments = attachments
        self._saved: list[int] = []

    def begin(self) -> None:
        self._saved = []

    def transform(self, entry: dict) -> dict:
        if INLINE_IMAGE_FIELD not in entry:
            return entry

        payloads = entry[INLINE_IMAGE_FIELD] or []
        if isinstance(payloads, str):
            payloads = [payloads]

        ids = list(entry.get("imageIds") or [])
        for payload in payloads:
            attachment_id = self._attachments.save(decode_inline_image(payload))
            self._saved.append(attachment_id)
            ids.append(attachment_id)

        migrated = {k: v for k, v in entry.items() if k != INLINE_IMAGE_FIELD}
        migrated["imageIds"] = ids
        return migrated

    def abort(self) -> None:
        for attachment_id in self._saved:
            try:
                self._attachments.delete(attachment_id)
            except RuleGuardError as e:
                logger.warning("Could not release attachment %s: %s", attachment_id, e)
        self._saved = []

    def commit(self) -> None:
        self._saved = []


class FixPnlSign(Migration):
    """Recompute P&L so Short trades use the Short formula."""

    flag = "pnl_fixed_v1"
    description = "Recompute P&L for every trade"

    def transform(self, entry: dict) -> dict:
        direction = entry.get("type")
        try:
            entry_price = float(entry["entry"])
            exit_price = float(entry["exit"])
            size = float(entry["size"])
        except (KeyError, TypeError, ValueError):
            # Nothing to recompute from
            return entry
        if direction not in ("Long", "Short"):
            return entry

        pnl = calculate_pnl(direction, entry_price, exit_price, size)
        if entry.get("pnl") == pnl:
            return entry
        return {**entry, "pnl": pnl}


class CleanupLegacyFields(Migration):
    """Strip fields left over from inline image storage."""

    flag = "images_cleaned_v1"
    description = "Remove deprecated inline image fields"
    requires = (ExternalizeAttachments.flag,)

    def transform(self, entry: dict) -> dict:
        if not any(field in entry for field in DEPRECATED_TRADE_FIELDS):
            return entry
        return {k: v for k, v in entry.items() if k not in DEPRECATED_TRADE_FIELDS}


def default_migrations(attachments: AttachmentStore) -> list[Migration]:
    """The registered migrations, in application order."""
    return [
        ExternalizeAttachments(attachments),
        FixPnlSign(),
        CleanupLegacyFields(),
    ]


class MigrationReport(BaseModel):
    """Outcome of one runner pass."""

    applied: list[str] = Field(default_factory=list, description="Ran and flagged")
    skipped: list[str] = Field(default_factory=list, description="Already flagged")
    deferred: list[str] = Field(
        default_factory=list, description="Waiting on a prerequisite"
    )
    failed: dict[str, str] = Field(default_factory=dict, description="Flag -> error")
    changed_entries: dict[str, int] = Field(
        default_factory=dict, description="Flag -> number of rewritten entries"
    )
    backups: dict[str, str] = Field(
        default_factory=dict, description="Flag -> backup of the trades it rewrote"
    )
    schema_version: int = Field(default=0, description="Applied migration prefix length")

    @property
    def ok(self) -> bool:
        """True when no migration failed."""
        return not self.failed


class MigrationBackup(BaseModel):
    """A snapshot of the trades collection taken before a migration."""

    id: str = Field(..., description="Collection holding the snapshot")
    migration: str = Field(..., description="Flag of the migration that took it")
    created_at: datetime = Field(..., description="When the snapshot was taken")
    entries: int = Field(..., description="Number of trade documents")


class MigrationRunner:
    """Applies the registered migrations that have not run yet."""

    def __init__(
        self,
        data_store: DataStore,
        attachments: AttachmentStore,
        migrations: Optional[Iterable[Migration]] = None,
    ):
        """Initialize the runner.

        Args:
            data_store: Store holding the trades and flags.
            attachments: Attachment store used by the image migration.
            migrations: Migrations in order. Defaults to default_migrations().
        """
        self._data_store = data_store
        self._attachments = attachments
        self._migrations = (
            list(migrations) if migrations is not None else default_migrations(attachments)
        )

    @property
    def migrations(self) -> list[Migration]:
        """Registered migrations in order."""
        return list(self._migrations)

    def pending(self) -> list[str]:
        """Flags of migrations that have not been applied."""
        return [m.flag for m in self._migrations if not self._data_store.get_flag(m.flag)]

    def run(self) -> MigrationReport:
        """Run every pending migration.

        A failing migration leaves its flag unset and does not stop the
        migrations after it.

        Returns:
            A report of what ran.
        """
        report = MigrationReport()

        for migration in self._migrations:
            if self._data_store.get_flag(migration.flag):
                report.skipped.append(migration.flag)
                continue

            missing = [flag for flag in migration.requires if not self._data_store.get_flag(flag)]
            if missing:
                logger.warning(
                    "Deferring %s until %s has been applied", migration.flag, ", ".join(missing)
                )
                report.deferred.append(migration.flag)
                continue

            try:
                changed, backup_id = self._apply(migration)
            except MigrationError as e:
                logger.error("Migration failed, will retry on next start: %s", e)
                report.failed[migration.flag] = str(e)
                continue

            report.applied.append(migration.flag)
            report.changed_entries[migration.flag] = changed
            if backup_id:
                report.backups[migration.flag] = backup_id
            logger.info("Applied %s (%d entries changed)", migration.flag, changed)

        report.schema_version = self._record_schema_version()
        return report

    def _apply(self, migration: Migration) -> tuple[int, Optional[str]]:
        try:
            trades, version = self._data_store.read_collection(TRADES, strict=True)
        except StorageCorruption as e:
            raise MigrationError(migration.flag, str(e)) from e

        migration.begin()

        migrated = []
        changed = 0
        backup_id = None
        try:
            for index, entry in enumerate(trades):
                if not isinstance(entry, dict):
                    raise TypeError(f"entry {index} is a {type(entry).__name__}, not a document")
                result = migration.transform(entry)
                if result != entry:
                    changed += 1
                migrated.append(result)

            updates = {migration.flag: (True, None)}
            if changed:
                updates[TRADES] = (migrated, version)
                backup_id = self._backup_id(migration.flag)
                updates[backup_id] = (
                    {
                        "migration": migration.flag,
                        "createdAt": datetime.now().isoformat(),
                        "trades": trades,
                    },
                    0,
                )
            self._data_store.write_collections(updates)
        except ConcurrentModificationError as e:
            migration.abort()
            raise MigrationError(migration.flag, str(e)) from e
        except Exception as e:
            migration.abort()
            raise MigrationError(migration.flag, f"{type(e).__name__}: {e}") from e

        migration.commit()
        return changed, backup_id

    def _backup_id(self, flag: str) -> str:
        taken = set(self._data_store.list_collections(BACKUP_PREFIX))
        stamp = int(datetime.now().timestamp() * 1000)
        while f"{BACKUP_PREFIX}{flag}:{stamp}" in taken:
            stamp += 1
        return f"{BACKUP_PREFIX}{flag}:{stamp}"

    def _schema_prefix(self, cleared: Iterable[str] = ()) -> int:
        cleared = set(cleared)
        applied = 0
        for migration in self._migrations:
            if migration.flag in cleared or not self._data_store.get_flag(migration.flag):
                break
            applied += 1
        return applied

    def _record_schema_version(self) -> int:
        applied = self._schema_prefix()
        if applied > self._data_store.get_schema_version():
            self._data_store.write_collection(SCHEMA_VERSION, applied)
        return max(applied, self._data_store.get_schema_version())

    # ==================== Backups ====================

    def _read_backup(self, backup_id: str) -> tuple[MigrationBackup, list]:
        payload = self._data_store.load(backup_id, default={})
        trades = payload.get("trades")
        if not isinstance(trades, list):
            raise StorageCorruption(backup_id, "backup holds no trade list")
        backup = MigrationBackup(
            id=backup_id,
            migration=payload.get("migration"),
            created_at=payload.get("createdAt"),
            entries=len(trades),
        )
        return backup, trades

    def list_backups(self) -> list[MigrationBackup]:
        """Get the stored backups, newest first. Unreadable ones are skipped."""
        backups = []
        for backup_id in self._data_store.list_collections(BACKUP_PREFIX):
            try:
                backup, _ = self._read_backup(backup_id)
            except (StorageCorruption, PydanticValidationError) as e:
                logger.warning("Skipping unreadable backup %s: %s", backup_id, e)
                continue
            backups.append(backup)
        return sorted(backups, key=lambda b: b.created_at, reverse=True)

    def restore_backup(self, backup_id: str) -> MigrationBackup:
        """Put a backup back as the trades collection.

        The migration that took the backup and every migration registered
        after it are marked as not applied, so they run again on the next
        pass. Trades logged after the backup was taken are replaced.
        Attachments referenced only by the replaced trades are released.

        Args:
            backup_id: Id from list_backups().

        Returns:
            The restored backup.

        Raises:
            BackupNotFoundError: If no backup has that id.
            StorageCorruption: If the backup cannot be read.
        """
        if backup_id not in self._data_store.list_collections(BACKUP_PREFIX):
            raise BackupNotFoundError(backup_id)
        try:
            backup, trades = self._read_backup(backup_id)
        except PydanticValidationError as e:
            raise StorageCorruption(backup_id, str(e)) from e

        flags = [m.flag for m in self._migrations]
        if backup.migration in flags:
            cleared = flags[flags.index(backup.migration):]
        else:
            cleared = [backup.migration]

        current, version = self._data_store.read_collection(TRADES)
        updates = {TRADES: (trades, version)}
        for flag in cleared:
            updates[flag] = (False, None)
        updates[SCHEMA_VERSION] = (self._schema_prefix(cleared), None)
        self._data_store.write_collections(updates)

        kept = {i for doc in trades if isinstance(doc, dict) for i in document_image_ids(doc)}
        for doc in current:
            if not isinstance(doc, dict):
                continue
            for attachment_id in document_image_ids(doc):
                if attachment_id in kept:
                    continue
                try:
                    self._attachments.delete(attachment_id)
                except RuleGuardError as e:
                    logger.warning("Could not release attachment %s: %s", attachment_id, e)

        logger.info(
            "Restored %d trades from %s; %s will run again",
            backup.entries,
            backup_id,
            ", ".join(cleared),
        )
        return backup
