"""Gmail Attachments - Download Gmail attachments by date window and file type."""

from gmail_attachments.core.models import (
    Credential,
    DestinationPolicy,
    DownloadTarget,
    MessageDetail,
    MessageRef,
    Part,
    ProgressCounters,
)
from gmail_attachments.pipeline.fetcher import AttachmentFetcher

__all__ = [
    "AttachmentFetcher",
    "Credential",
    "DestinationPolicy",
    "DownloadTarget",
    "MessageDetail",
    "MessageRef",
    "Part",
    "ProgressCounters",
]
