"""Attachment store implementations for RuleGuard."""

from ruleguard.attachments.base import AttachmentStore
from ruleguard.attachments.local import LocalAttachmentStore

__all__ = [
    "AttachmentStore",
    "LocalAttachmentStore",
]
