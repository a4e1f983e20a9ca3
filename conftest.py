from __future__ import annotations

from pathlib import Path

import pytest

from dump_analyzer.storage.database import connect

SAMPLE_DUMP = "\n".join(
    [
        "2024-01-01 12:00:00",
        "Full thread dump OpenJDK 64-Bit Server VM (25.292-b10 mixed mode):",
        "",
        '"Thread-1" #1 prio=5 os_prio=0 tid=0x00007f3d70001800 nid=0x2f03 runnable [0x00007f3d80f21000]',
        "   java.lang.Thread.State: RUNNABLE",
        "\tat com.example.MyClass.myMethod(MyClass.java:10)",
        "\tat com.example.MyClass.run(MyClass.java:5)",
        "\tat java.lang.Thread.run(Thread.java:748)",
        "",
        '"Thread-2" #2 prio=5 os_prio=0 tid=0x00007f3d70002800 nid=0x2f04 waiting for monitor entry [0x00007f3d80e20000]',
        "   java.lang.Thread.State: BLOCKED (on object monitor)",
        "\tat com.example.MyClass.myMethod(MyClass.java:10)",
        "\t- waiting to lock <0x00000000c7c600d0> (a java.lang.Object)",
        "\tat com.example.MyClass.run(MyClass.java:5)",
        "\tat java.lang.Thread.run(Thread.java:748)",
        "",
        '"VM Thread" os_prio=0 tid=0x00007f3d7006e000 nid=0x2f00 runnable ',
        "",
        '"Broken" #3 prio=5 os_prio=0 nid=0x2f05 runnable',
        "   java.lang.Thread.State: RUNNABLE",
        "\tat com.example.Broken.run(Broken.java:1)",
        "",
        '"Reference Handler" #4 daemon prio=10 os_prio=0 tid=0x00007f3d70010000 nid=0x2f06 in Object.wait() [0x00007f3d80d1f000]',
        "   java.lang.Thread.State: WAITING (on object monitor)",
        "\tat java.lang.Object.wait(Native Method)",
        "\t- waiting on <0x00000000c7c08ed0> (a java.lang.ref.Reference$Lock)",
        "\tat java.lang.ref.Reference.tryHandlePending(Reference.java:191)",
        "",
        '"Attach Listener" #5 daemon prio=9 os_prio=0 tid=0x00007f3d70020000 nid=0x2f07 waiting on condition [0x0000000000000000]',
        "",
        "   Locked ownable synchronizers:",
        "\t- None",
    ]
) + "\n"

DUMP_NAME = "app_jstack_20240101_120000.txt"


@pytest.fixture
def connection():
    conn = connect(":memory:")
    yield conn
    conn.close()


@pytest.fixture
def dump_file(tmp_path: Path) -> Path:
    capture = tmp_path / "capture"
    capture.mkdir()
    target = capture / DUMP_NAME
    target.write_text(SAMPLE_DUMP, encoding="utf-8")
    return target


@pytest.fixture
def dump_dir(dump_file: Path) -> Path:
    (dump_file.parent / "gc.log").write_text("0.123: [GC pause (young)]\n", encoding="utf-8")
    return dump_file.parent
