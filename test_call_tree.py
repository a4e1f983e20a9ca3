from __future__ import annotations

from dataclasses import replace
from typing import List

from conftest import SAMPLE_DUMP
from dump_analyzer.analysis.call_tree import (
    CallTreeBuilder,
    CallTreeNode,
    build_call_tree,
    build_call_tree_parallel,
    forest_to_dict,
    hottest_path,
    merge_forests,
)
from dump_analyzer.analysis.interner import StringInterner
from dump_analyzer.ingest.thread_dump import (
    CallFrame,
    MethodCall,
    Monitor,
    MonitorAction,
    Thread,
    ThreadStatus,
    parse_lines,
)


def _thread(*signatures: str, name: str = "worker") -> Thread:
    """Build a thread whose frames are given innermost first."""

    frames = []
    for signature in signatures:
        class_name, _, method_name = signature.rpartition(".")
        frames.append(CallFrame(class_name, method_name, 1, MethodCall()))
    return Thread(
        id=None,
        name=name,
        daemon=False,
        prio=5,
        os_prio=0,
        tid=1,
        nid=1,
        status=ThreadStatus.RUNNABLE,
        address=None,
        frames=tuple(frames),
    )


def _only(forest: List[CallTreeNode]) -> CallTreeNode:
    assert len(forest) == 1
    return forest[0]


def test_shared_prefix_splits_at_depth_four():
    forest = build_call_tree(
        [
            _thread("app.D.first", "app.C.c", "app.B.b", "app.A.a"),
            _thread("app.D.second", "app.C.c", "app.B.b", "app.A.a"),
        ]
    )

    root = _only(forest)
    assert (root.method_name, root.samples) == ("app.A.a", 2)
    b = _only(root.next)
    assert (b.method_name, b.samples) == ("app.B.b", 2)
    c = _only(b.next)
    assert (c.method_name, c.samples) == ("app.C.c", 2)
    assert sorted((n.method_name, n.samples) for n in c.next) == [
        ("app.D.first", 1),
        ("app.D.second", 1),
    ]
    assert all(n.next is None for n in c.next)


def test_children_hold_interned_names():
    interner = StringInterner()
    forest = build_call_tree([_thread("x.Y.z", "x.Y.main")], interner=interner)
    child = forest[0].next[0]
    assert child.method_name is interner.intern("x.Y.z")


def test_lock_frame_ends_walk():
    thread = _thread("app.Inner.work", "app.Outer.run", "app.Main.main")
    frames = list(thread.frames)
    frames.insert(
        1,
        CallFrame(
            "java.lang.Object",
            None,
            None,
            Monitor(monitor_address=0xC7C600D0, action=MonitorAction.WAITING_TO_LOCK),
        ),
    )
    blocked = replace(thread, frames=tuple(frames))

    root = _only(build_call_tree([blocked]))
    assert root.samples == 1
    outer = _only(root.next)
    assert (outer.method_name, outer.samples) == ("app.Outer.run", 1)
    assert outer.next is None


def test_threads_without_method_root_contribute_nothing():
    builder = CallTreeBuilder()
    empty = _thread()
    assert builder.add_thread(empty) is False
    assert builder.forest() == []
    assert builder.threads_added == 0


def test_single_frame_thread_counts_one_sample():
    root = _only(build_call_tree([_thread("app.Main.main")]))
    assert root.samples == 1
    assert root.next is None


def test_sample_dump_forest():
    threads = parse_lines(SAMPLE_DUMP.splitlines()).threads
    forest = build_call_tree(threads)

    roots = {node.method_name: node.samples for node in forest}
    assert roots == {
        "java.lang.Thread.run": 2,
        "java.lang.ref.Reference.tryHandlePending": 1,
    }
    assert hottest_path(forest) == [
        ("java.lang.Thread.run", 2),
        ("com.example.MyClass.run", 2),
        ("com.example.MyClass.myMethod", 1),
    ]


def test_merge_is_order_independent():
    left = [
        _thread("app.D.first", "app.C.c", "app.A.a"),
        _thread("app.E.e", "app.A.a"),
    ]
    right = [
        _thread("app.D.second", "app.C.c", "app.A.a"),
        _thread("app.Z.z"),
    ]
    one = forest_to_dict(merge_forests(build_call_tree(left), build_call_tree(right)))
    two = forest_to_dict(merge_forests(build_call_tree(right), build_call_tree(left)))
    whole = forest_to_dict(build_call_tree(left + right))
    assert one == two == whole


def test_merge_leaves_inputs_untouched():
    partial = build_call_tree([_thread("app.B.b", "app.A.a")])
    merge_forests(partial, partial)
    assert partial[0].samples == 1


def test_parallel_build_matches_serial():
    threads = [
        _thread(f"app.Leaf.m{index % 7}", f"app.Mid.m{index % 3}", "app.Main.main")
        for index in range(60)
    ]
    serial = forest_to_dict(build_call_tree(threads))
    parallel = forest_to_dict(build_call_tree_parallel(threads, workers=4))
    assert serial == parallel


def test_to_dict_orders_children_and_limits_depth():
    root = _only(
        build_call_tree(
            [
                _thread("app.B.rare", "app.A.a"),
                _thread("app.B.hot", "app.A.a"),
                _thread("app.B.hot", "app.A.a"),
            ]
        )
    )
    payload = root.to_dict()
    assert [child["method_name"] for child in payload["next"]] == ["app.B.hot", "app.B.rare"]
    assert "next" not in root.to_dict(max_depth=1)


def test_hottest_path_of_empty_forest():
    assert hottest_path([]) == []
