"""SQLite document store for RuleGuard."""

import copy
import json
import logging
import sqlite3
from datetime import datetime
from pathlib import Path
from typing import Any, Callable, Optional

from pydantic import ValidationError as PydanticValidationError

from ruleguard.errors import ConcurrentModificationError, StorageCorruption
from ruleguard.models import (
    ActivityLogEntry,
    DailyStat,
    Progress,
    Rule,
    TradeEntry,
)

logger = logging.getLogger(__name__)

# Collection names
TRADES = "trades"
RULES = "rules"
DAILY_STATS = "daily_stats"
ACTIVITY_LOG = "activity_log"
PROGRESS = "progress"
UNLOCKED_ACHIEVEMENTS = "unlocked_achievements"
SCHEMA_VERSION = "schema_version"


class DataStore:
    """SQLite-backed key-value store of named JSON collections.

    Every collection carries a version stamp that is bumped on each write.
    Writes may pass the version they read to get compare-and-set semantics.
    """

    REQUIRED_TABLES = ["collections"]

    COLLECTION_DEFAULTS: dict[str, Any] = {
        TRADES: [],
        RULES: [],
        DAILY_STATS: {},
        ACTIVITY_LOG: [],
        PROGRESS: {},
        UNLOCKED_ACHIEVEMENTS: [],
        SCHEMA_VERSION: 0,
    }

    def __init__(self, db_path: Path):
        """Initialize the data store.

        Args:
            db_path: Path to the SQLite database file.
        """
        self.db_path = db_path
        self._ensure_db_dir()
        self._init_schema()

    def _ensure_db_dir(self) -> None:
        """Ensure the database directory exists."""
        self.db_path.parent.mkdir(parents=True, exist_ok=True)

    def _get_connection(self) -> sqlite3.Connection:
        """Get a database connection."""
        conn = sqlite3.connect(self.db_path)
        conn.row_factory = sqlite3.Row
        return conn

    def _init_schema(self) -> None:
        """Initialize database schema on first run."""
        conn = self._get_connection()
        try:
            cursor = conn.cursor()
            cursor.execute("""
                CREATE TABLE IF NOT EXISTS collections (
                    name TEXT PRIMARY KEY,
                    payload TEXT NOT NULL,
                    version INTEGER NOT NULL DEFAULT 0,
                    updated_at TEXT NOT NULL
                )
            """)
            conn.commit()
        finally:
            conn.close()

    def get_tables(self) -> list[str]:
        """Get list of all tables in the database."""
        conn = self._get_connection()
        try:
            cursor = conn.cursor()
            cursor.execute(
                "SELECT name FROM sqlite_master WHERE type='table' AND name NOT LIKE 'sqlite_%'"
            )
            return [row["name"] for row in cursor.fetchall()]
        finally:
            conn.close()

    # ==================== Raw collections ====================

    def _default_for(self, name: str, default: Any) -> Any:
        if default is None:
            default = self.COLLECTION_DEFAULTS.get(name)
        return copy.deepcopy(default)

    def read_collection(
        self, name: str, default: Any = None, strict: bool = False
    ) -> tuple[Any, int]:
        """Read a collection and its version.

        Args:
            name: Collection name.
            default: Value used when the collection is missing or corrupt.
                Falls back to the known default for built-in collections.
            strict: Raise instead of falling back when the collection is corrupt.

        Returns:
            Tuple of (value, version). A missing collection has version 0.
            A corrupt collection yields the default with its stored version,
            so a compare-and-set write can replace it.

        Raises:
            StorageCorruption: If strict and the payload cannot be decoded.
        """
        conn = self._get_connection()
        try:
            cursor = conn.cursor()
            cursor.execute(
                "SELECT payload, version FROM collections WHERE name = ?", (name,)
            )
            row = cursor.fetchone()
        finally:
            conn.close()

        fallback = self._default_for(name, default)
        if row is None:
            return fallback, 0

        try:
            value = json.loads(row["payload"])
            if fallback is not None and not isinstance(value, type(fallback)):
                raise StorageCorruption(
                    name,
                    f"expected {type(fallback).__name__}, found {type(value).__name__}",
                )
        except json.JSONDecodeError as e:
            if strict:
                raise StorageCorruption(name, str(e)) from e
            logger.warning("%s", StorageCorruption(name, str(e)))
            return fallback, row["version"]
        except StorageCorruption as e:
            if strict:
                raise
            logger.warning("%s", e)
            return fallback, row["version"]

        return value, row["version"]

    def load(self, name: str, default: Any = None) -> Any:
        """Read a collection value, ignoring its version."""
        value, _ = self.read_collection(name, default)
        return value

    def write_collection(
        self, name: str, value: Any, expected_version: Optional[int] = None
    ) -> int:
        """Write a single collection.

        Args:
            name: Collection name.
            value: JSON-serializable value.
            expected_version: Version the caller read, or None to overwrite.

        Returns:
            The new version.

        Raises:
            ConcurrentModificationError: If the stored version differs.
        """
        return self.write_collections({name: (value, expected_version)})[name]

    def write_collections(
        self, updates: dict[str, tuple[Any, Optional[int]]]
    ) -> dict[str, int]:
        """Write several collections in one transaction.

        Args:
            updates: Mapping of collection name to (value, expected_version).

        Returns:
            Mapping of collection name to its new version.

        Raises:
            ConcurrentModificationError: If any stored version differs. No
                collection is written in that case.
        """
        conn = self._get_connection()
        conn.isolation_level = None
        versions: dict[str, int] = {}
        try:
            cursor = conn.cursor()
            cursor.execute("BEGIN IMMEDIATE")
            try:
                for name, (value, expected) in updates.items():
                    cursor.execute(
                        "SELECT version FROM collections WHERE name = ?", (name,)
                    )
                    row = cursor.fetchone()
                    current = row["version"] if row else 0
                    if expected is not None and current != expected:
                        raise ConcurrentModificationError(name, expected, current)

                    cursor.execute(
                        """
                        INSERT OR REPLACE INTO collections
                        (name, payload, version, updated_at)
                        VALUES (?, ?, ?, ?)
                        """,
                        (
                            name,
                            json.dumps(value),
                            current + 1,
                            datetime.now().isoformat(),
                        ),
                    )
                    versions[name] = current + 1
                cursor.execute("COMMIT")
            except Exception:
                cursor.execute("ROLLBACK")
                raise
            return versions
        finally:
            conn.close()

    def update_collection(
        self,
        name: str,
        update: Callable[[Any], Any],
        default: Any = None,
        retries: int = 3,
    ) -> Any:
        """Apply a read-modify-write to one collection.

        The collection is re-read on every attempt, so ``update`` always sees
        the current persisted value.

        Args:
            name: Collection name.
            update: Function returning the new value from the current one.
            default: Value used when the collection is missing or corrupt.
            retries: Attempts before giving up on version conflicts.

        Returns:
            The value written.
        """
        for attempt in range(retries):
            value, version = self.read_collection(name, default)
            new_value = update(value)
            try:
                self.write_collection(name, new_value, expected_version=version)
                return new_value
            except ConcurrentModificationError:
                if attempt == retries - 1:
                    raise
                logger.debug("Retrying update of '%s' after a version conflict", name)
        return None

    def get_version(self, name: str) -> int:
        """Get the current version of a collection (0 if missing)."""
        conn = self._get_connection()
        try:
            cursor = conn.cursor()
            cursor.execute("SELECT version FROM collections WHERE name = ?", (name,))
            row = cursor.fetchone()
            return row["version"] if row else 0
        finally:
            conn.close()

    def list_collections(self, prefix: str = "") -> list[str]:
        """Get the names of stored collections starting with prefix."""
        conn = self._get_connection()
        try:
            cursor = conn.cursor()
            cursor.execute(
                "SELECT name FROM collections WHERE substr(name, 1, ?) = ? ORDER BY name",
                (len(prefix), prefix),
            )
            return [row["name"] for row in cursor.fetchall()]
        finally:
            conn.close()

    # ==================== Trades ====================

    def get_trades(self) -> list[TradeEntry]:
        """Get all trades, newest first.

        Returns:
            List of trades. Documents that fail validation are skipped.
        """
        trades = []
        for doc in self.load(TRADES):
            try:
                trades.append(TradeEntry.model_validate(doc))
            except PydanticValidationError as e:
                logger.warning(
                    "Skipping unreadable trade %s: %s",
                    doc.get("id") if isinstance(doc, dict) else doc,
                    e.error_count(),
                )
        return trades

    def get_trade(self, trade_id: int) -> Optional[TradeEntry]:
        """Get a trade by ID.

        Args:
            trade_id: Trade ID.

        Returns:
            Trade if found, None otherwise.
        """
        for trade in self.get_trades():
            if trade.id == trade_id:
                return trade
        return None

    # ==================== Rules ====================

    def get_rules(self) -> list[Rule]:
        """Get the rule catalog.

        Returns:
            List of rules. Documents that fail validation are skipped.
        """
        rules = []
        for doc in self.load(RULES):
            try:
                rules.append(Rule.model_validate(doc))
            except PydanticValidationError as e:
                logger.warning("Skipping unreadable rule: %s", e.error_count())
        return rules

    def add_rule(self, rule: Rule) -> Rule:
        """Add a rule to the catalog.

        Args:
            rule: Rule to add.

        Returns:
            The stored rule.
        """
        self.update_collection(RULES, lambda docs: docs + [rule.to_document()])
        return rule

    # ==================== Daily stats ====================

    def get_daily_stats(self) -> dict[str, DailyStat]:
        """Get daily statistics keyed by ISO date."""
        stats = {}
        for day, doc in self.load(DAILY_STATS).items():
            try:
                stats[day] = DailyStat.model_validate(doc)
            except PydanticValidationError:
                logger.warning("Skipping unreadable daily stat for %s", day)
        return stats

    # ==================== Activity log ====================

    def get_activity_log(self) -> list[ActivityLogEntry]:
        """Get the activity log, oldest first."""
        entries = []
        for doc in self.load(ACTIVITY_LOG):
            try:
                entries.append(ActivityLogEntry.model_validate(doc))
            except PydanticValidationError:
                logger.warning("Skipping unreadable activity log entry")
        return entries

    def append_activity(self, entry: ActivityLogEntry, limit: int) -> None:
        """Append to the activity log, dropping the oldest entries past ``limit``.

        Args:
            entry: Entry to append.
            limit: Maximum number of retained entries.
        """
        doc = entry.model_dump(mode="json", by_alias=True)
        self.update_collection(ACTIVITY_LOG, lambda log: (log + [doc])[-limit:])

    # ==================== Progress ====================

    def get_progress(self) -> Progress:
        """Get the completion counter."""
        try:
            return Progress.model_validate(self.load(PROGRESS))
        except PydanticValidationError:
            logger.warning("Progress document is unreadable, starting from zero")
            return Progress()

    # ==================== Achievements ====================

    def get_unlocked_achievements(self) -> list[str]:
        """Get the ids of unlocked achievements."""
        return [str(i) for i in self.load(UNLOCKED_ACHIEVEMENTS)]

    # ==================== Migration flags ====================

    def get_flag(self, flag: str) -> bool:
        """Get a migration flag."""
        return bool(self.load(flag, default=False))

    def set_flag(self, flag: str, value: bool = True) -> None:
        """Set a migration flag."""
        self.write_collection(flag, value)

    def get_schema_version(self) -> int:
        """Get the recorded schema version."""
        return int(self.load(SCHEMA_VERSION))

    # ==================== Stats ====================

    def get_stats(self) -> dict:
        """Get database statistics.

        Returns:
            Dictionary with record counts of the list and map collections.
        """
        return {
            name: len(self.load(name))
            for name in (TRADES, RULES, DAILY_STATS, ACTIVITY_LOG, UNLOCKED_ACHIEVEMENTS)
        }
