# HomeVault - Vault Module
#
# Attachment blob store and owner-scoped vault items.

from .attachments import (
    AttachmentVault,
    HostShell,
    SystemShell,
    normalize_url,
    sanitize_file_name,
)
from .backup import BACKUP_VERSION, BackupSummary
from .items import VaultItems

__all__ = [
    "AttachmentVault",
    "HostShell",
    "SystemShell",
    "normalize_url",
    "sanitize_file_name",
    "BACKUP_VERSION",
    "BackupSummary",
    "VaultItems",
]
