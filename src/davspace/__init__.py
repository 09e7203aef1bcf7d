"""davspace - browse, edit and rearrange a remote WebDAV tree as local files."""

from davspace.clients.store import RemoteStoreClient
from davspace.config import Settings, get_settings
from davspace.errors import DavspaceError
from davspace.managers.clipboard import Clipboard
from davspace.managers.overlay import DocumentOverlay
from davspace.managers.tree import TreeTransactionEngine
from davspace.workspace import DavWorkspace

__version__ = "0.1.0"

__all__ = [
    "Clipboard",
    "DavWorkspace",
    "DavspaceError",
    "DocumentOverlay",
    "RemoteStoreClient",
    "Settings",
    "TreeTransactionEngine",
    "get_settings",
]
