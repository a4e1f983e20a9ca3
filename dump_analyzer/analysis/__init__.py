"""Call-tree aggregation, interning and the dictionary codec."""

from .cache import CallTreeCache, call_trees
from .call_tree import (
    CallTreeBuilder,
    CallTreeNode,
    build_call_tree,
    build_call_tree_parallel,
    forest_to_dict,
    hottest_path,
    merge_forests,
)
from .codec import Encoder, Page, PageTable, StackCompressor
from .interner import StringInterner

__all__ = [
    "CallTreeBuilder",
    "CallTreeCache",
    "CallTreeNode",
    "Encoder",
    "Page",
    "PageTable",
    "StackCompressor",
    "StringInterner",
    "build_call_tree",
    "build_call_tree_parallel",
    "call_trees",
    "forest_to_dict",
    "hottest_path",
    "merge_forests",
]
