"""Sample-weighted call trees built from parsed thread stacks."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, Iterable, List, Optional, Sequence, Tuple

from ..ingest.thread_dump import CallFrame, MethodCall, Thread
from ..utils.concurrency import cpu_count, create_thread_pool
from ..utils.logging_utils import get_logger
from .interner import StringInterner

LOGGER = get_logger("analysis.call_tree")


@dataclass
class CallTreeNode:
    method_name: str
    samples: int = 0
    next: Optional[List["CallTreeNode"]] = None

    def child(self, method_name: str) -> Optional["CallTreeNode"]:
        """Return the child for an interned *method_name*, if any."""

        if self.next is None:
            return None
        for node in self.next:
            if node.method_name is method_name:
                return node
        return None

    def add_child(self, method_name: str) -> "CallTreeNode":
        node = CallTreeNode(method_name=method_name)
        if self.next is None:
            self.next = []
        self.next.append(node)
        return node

    def to_dict(self, *, max_depth: Optional[int] = None) -> Dict[str, Any]:
        payload: Dict[str, Any] = {
            "method_name": self.method_name,
            "samples": self.samples,
        }
        if self.next and (max_depth is None or max_depth > 1):
            depth = None if max_depth is None else max_depth - 1
            payload["next"] = [
                node.to_dict(max_depth=depth)
                for node in sorted(self.next, key=lambda n: (-n.samples, n.method_name))
            ]
        return payload


CallTree = Dict[str, CallTreeNode]


def _method_key(call: CallFrame, interner: StringInterner) -> Optional[str]:
    if not isinstance(call.frame, MethodCall):
        return None
    signature = call.signature
    if signature is None:
        return None
    return interner.intern(signature)


class CallTreeBuilder:
    """Fold threads into a forest keyed by their outermost method."""

    def __init__(self, interner: Optional[StringInterner] = None) -> None:
        self.interner = interner if interner is not None else StringInterner()
        self.roots: CallTree = {}
        self.threads_added = 0

    def add_thread(self, thread: Thread) -> bool:
        """Fold one thread in; returns ``False`` when it contributes nothing."""

        frames = thread.frames
        if not frames:
            return False

        root_name = _method_key(frames[-1], self.interner)
        if root_name is None:
            return False

        node = self.roots.get(root_name)
        if node is None:
            node = CallTreeNode(method_name=root_name)
            self.roots[root_name] = node

        # Walk from the entry point towards the innermost frame.
        for call in reversed(frames[:-1]):
            node.samples += 1
            name = _method_key(call, self.interner)
            if name is None:
                break
            child = node.child(name)
            if child is None:
                child = node.add_child(name)
            node = child
        else:
            node.samples += 1

        self.threads_added += 1
        return True

    def add_threads(self, threads: Iterable[Thread]) -> "CallTreeBuilder":
        for thread in threads:
            self.add_thread(thread)
        return self

    def forest(self) -> List[CallTreeNode]:
        return list(self.roots.values())


def build_call_tree(
    threads: Iterable[Thread], *, interner: Optional[StringInterner] = None
) -> List[CallTreeNode]:
    """Build a forest with one root per distinct outermost method."""

    return CallTreeBuilder(interner).add_threads(threads).forest()


def _merge_node(target: CallTreeNode, source: CallTreeNode) -> None:
    pending: List[Tuple[CallTreeNode, CallTreeNode]] = [(target, source)]
    while pending:
        into, node = pending.pop()
        into.samples += node.samples
        for child in node.next or ():
            match = None
            for existing in into.next or ():
                if existing.method_name == child.method_name:
                    match = existing
                    break
            if match is None:
                match = into.add_child(child.method_name)
            pending.append((match, child))


def merge_forests(*forests: Iterable[CallTreeNode]) -> List[CallTreeNode]:
    """Union forests, summing samples of nodes on identical paths.

    The inputs are left untouched; the result is a fresh forest.
    """

    roots: CallTree = {}
    for forest in forests:
        for root in forest:
            target = roots.get(root.method_name)
            if target is None:
                target = CallTreeNode(method_name=root.method_name)
                roots[root.method_name] = target
            _merge_node(target, root)
    return list(roots.values())


def build_call_tree_parallel(
    threads: Sequence[Thread],
    *,
    workers: Optional[int] = None,
    interner: Optional[StringInterner] = None,
) -> List[CallTreeNode]:
    """Build partial forests on the thread pool and merge them."""

    workers = workers or cpu_count()
    if workers <= 1 or len(threads) < workers * 2:
        return build_call_tree(threads, interner=interner)

    shared = interner if interner is not None else StringInterner()
    size = len(threads) // workers
    slices = []
    for index in range(workers):
        start = index * size
        end = len(threads) if index == workers - 1 else start + size
        slices.append(threads[start:end])

    with create_thread_pool(workers, prefix="call-tree") as pool:
        partials = list(
            pool.map(lambda part: build_call_tree(part, interner=shared), slices)
        )
    merged = merge_forests(*partials)
    LOGGER.debug(
        "Merged %d partial forests into %d roots from %d threads",
        len(partials),
        len(merged),
        len(threads),
    )
    return merged


def hottest_path(forest: Iterable[CallTreeNode]) -> List[Tuple[str, int]]:
    """Follow the most-sampled child from the most-sampled root."""

    roots = list(forest)
    if not roots:
        return []
    node = max(roots, key=lambda n: n.samples)
    path = [(node.method_name, node.samples)]
    while node.next:
        node = max(node.next, key=lambda n: n.samples)
        path.append((node.method_name, node.samples))
    return path


def forest_to_dict(
    forest: Iterable[CallTreeNode], *, max_depth: Optional[int] = None
) -> List[Dict[str, Any]]:
    return [
        root.to_dict(max_depth=max_depth)
        for root in sorted(forest, key=lambda n: (-n.samples, n.method_name))
    ]
