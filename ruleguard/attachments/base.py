"""Attachment store interface for RuleGuard."""

from abc import ABC, abstractmethod
from typing import Optional


class AttachmentStore(ABC):
    """Abstract base class for trade image storage.

    Ids are opaque integers and are never reused after deletion.
    """

    @abstractmethod
    def save(self, data: bytes) -> int:
        """Store a blob.

        Args:
            data: Binary payload.

        Returns:
            The id of the stored blob.

        Raises:
            AttachmentError: If the blob could not be stored.
        """
        pass

    @abstractmethod
    def get(self, attachment_id: int) -> Optional[bytes]:
        """Get a blob.

        Args:
            attachment_id: Blob id.

        Returns:
            The payload if found, None otherwise.
        """
        pass

    @abstractmethod
    def delete(self, attachment_id: int) -> None:
        """Delete a blob. Deleting a missing id is a no-op.

        Args:
            attachment_id: Blob id.

        Raises:
            AttachmentError: If the blob could not be deleted.
        """
        pass
