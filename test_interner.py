from __future__ import annotations

from concurrent.futures import ThreadPoolExecutor

from dump_analyzer.analysis.interner import StringInterner


def _fresh(text: str) -> str:
    # Build an equal string that is a distinct object.
    return "".join(list(text))


def test_equal_strings_share_one_instance():
    interner = StringInterner()
    first = interner.intern(_fresh("com.example.MyClass.run"))
    second = interner.intern(_fresh("com.example.MyClass.run"))

    assert first == second
    assert first is second
    assert len(interner) == 1
    assert "com.example.MyClass.run" in interner


def test_distinct_strings_stay_distinct():
    interner = StringInterner()
    assert interner.intern("a.b") is not interner.intern("a.c")
    assert len(interner) == 2


def test_instances_are_isolated():
    left = StringInterner()
    right = StringInterner()
    left.intern("x.y")
    assert "x.y" not in right


def test_concurrent_interning_returns_one_handle():
    interner = StringInterner()
    with ThreadPoolExecutor(max_workers=8) as pool:
        handles = list(pool.map(lambda _: interner.intern(_fresh("java.lang.Thread.run")), range(200)))
    assert all(handle is handles[0] for handle in handles)
    assert len(interner) == 1
