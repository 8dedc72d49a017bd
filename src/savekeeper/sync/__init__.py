"""Filesystem watching and reconciliation of external changes into the entity tree."""

from .classify import Classifier, RootKind, WatchRoot, WatchRoots
from .debounce import Debouncer, RenamePairer
from .events import ClassifiedEvent, NodeKind, Op, RawEvent, RawKind
from .reconciler import Reconciler
from .suppression import Suppression, SuppressionTable

__all__ = [
    "ClassifiedEvent",
    "Classifier",
    "Debouncer",
    "NodeKind",
    "Op",
    "RawEvent",
    "RawKind",
    "Reconciler",
    "RenamePairer",
    "RootKind",
    "Suppression",
    "SuppressionTable",
    "WatchRoot",
    "WatchRoots",
]
