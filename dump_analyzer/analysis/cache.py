"""Per-workspace call-tree cache."""

from __future__ import annotations

from collections import OrderedDict
from threading import Lock
from typing import Dict, List, Optional

from .call_tree import CallTreeNode

HOT_ENTRIES = 100


class CallTreeCache:
    """Bounded most-recently-used tier over an unbounded store."""

    def __init__(self, hot_entries: int = HOT_ENTRIES) -> None:
        self._lock = Lock()
        self._hot: "OrderedDict[str, List[CallTreeNode]]" = OrderedDict()
        self._store: Dict[str, List[CallTreeNode]] = {}
        self._hot_entries = hot_entries

    def put(self, workspace: str, forest: List[CallTreeNode]) -> None:
        with self._lock:
            self._store[workspace] = forest
            self._hot.pop(workspace, None)

    def get(self, workspace: str) -> Optional[List[CallTreeNode]]:
        with self._lock:
            forest = self._hot.get(workspace)
            if forest is not None:
                self._hot.move_to_end(workspace)
                return forest
            forest = self._store.get(workspace)
            if forest is not None:
                self._hot[workspace] = forest
                if len(self._hot) > self._hot_entries:
                    self._hot.popitem(last=False)
            return forest

    def exists(self, workspace: str) -> bool:
        with self._lock:
            return workspace in self._store

    def discard(self, workspace: str) -> None:
        with self._lock:
            self._store.pop(workspace, None)
            self._hot.pop(workspace, None)

    def reset(self) -> None:
        with self._lock:
            self._hot.clear()
            self._store.clear()


call_trees = CallTreeCache()
