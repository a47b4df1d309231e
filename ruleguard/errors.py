"""Exception types raised by the RuleGuard core."""


class RuleGuardError(Exception):
    """Base class for all RuleGuard errors."""


class ValidationError(RuleGuardError, ValueError):
    """A trade submission carries malformed input. Nothing was persisted."""


class MigrationError(RuleGuardError):
    """A migration transform failed for one entry."""

    def __init__(self, flag: str, message: str):
        super().__init__(f"{flag}: {message}")
        self.flag = flag


class StorageCorruption(RuleGuardError):
    """A persisted collection could not be decoded."""

    def __init__(self, collection: str, message: str):
        super().__init__(f"{collection}: {message}")
        self.collection = collection


class ConcurrentModificationError(RuleGuardError):
    """A collection changed between read and write."""

    def __init__(self, collection: str, expected: int, actual: int):
        super().__init__(
            f"Collection '{collection}' is at version {actual}, expected {expected}"
        )
        self.collection = collection
        self.expected = expected
        self.actual = actual


class AttachmentError(RuleGuardError):
    """The attachment store failed to save or delete a blob."""


class TradeNotFoundError(RuleGuardError, KeyError):
    """No trade with the requested id exists."""

    def __str__(self) -> str:
        return f"Trade {self.args[0]} not found" if self.args else "Trade not found"


class BackupNotFoundError(RuleGuardError, KeyError):
    """No migration backup with the requested id exists."""

    def __str__(self) -> str:
        return f"Backup {self.args[0]} not found" if self.args else "Backup not found"
