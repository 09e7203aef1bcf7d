"""Manager layer - documents and tree transactions."""

from davspace.managers.clipboard import Clipboard
from davspace.managers.overlay import DocumentOverlay
from davspace.managers.tree import TreeTransactionEngine

__all__ = ["Clipboard", "DocumentOverlay", "TreeTransactionEngine"]
