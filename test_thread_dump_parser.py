from __future__ import annotations

import pytest

from conftest import SAMPLE_DUMP
from dump_analyzer.errors import (
    IllegalStatusError,
    InvalidStatusError,
    MissingFieldError,
    ParseError,
    UnknownFrameError,
)
from dump_analyzer.ingest.thread_dump import (
    Eliminated,
    Lock,
    MethodCall,
    Monitor,
    MonitorAction,
    NativeMethod,
    Parking,
    ThreadStatus,
    is_system_thread,
    parse_frame,
    parse_header,
    parse_lines,
    parse_stanza,
    parse_thread_dump,
    parse_thread_dumps,
    split_stanzas,
)

EXAMPLE_STANZA = [
    '"Thread-1" #1 prio=5 os_prio=0 tid=0x00007f3d70001800 nid=0x2f03 runnable [0x00007f3d80f21000]',
    "java.lang.Thread.State: RUNNABLE",
    "at com.example.MyClass.myMethod(MyClass.java:10)",
    "at com.example.MyClass.run(MyClass.java:5)",
    "at java.lang.Thread.run(Thread.java:748)",
]


def test_example_stanza_fields():
    thread = parse_stanza(EXAMPLE_STANZA)

    assert thread.id == "#1"
    assert thread.name == "Thread-1"
    assert thread.daemon is False
    assert thread.prio == 5
    assert thread.os_prio == 0
    assert thread.tid == 0x00007F3D70001800
    assert thread.nid == 0x2F03
    assert thread.status is ThreadStatus.RUNNABLE
    assert thread.address == "0x00007f3d80f21000"
    assert [(f.method_name, f.line_number) for f in thread.frames] == [
        ("myMethod", 10),
        ("run", 5),
        ("run", 748),
    ]
    assert thread.frames[0].class_name == "com.example.MyClass"
    assert thread.frames[2].class_name == "java.lang.Thread"
    assert all(isinstance(f.frame, MethodCall) for f in thread.frames)
    assert thread.top_method == "com.example.MyClass.myMethod"


def test_parsing_is_deterministic():
    assert parse_stanza(EXAMPLE_STANZA) == parse_stanza(list(EXAMPLE_STANZA))


def test_missing_tid_raises_missing_field():
    with pytest.raises(MissingFieldError) as excinfo:
        parse_header('"Broken" #3 prio=5 os_prio=0 nid=0x2f05 runnable')
    assert excinfo.value.field == "tid"
    assert isinstance(excinfo.value, ParseError)


def test_missing_nid_raises_missing_field():
    with pytest.raises(MissingFieldError) as excinfo:
        parse_header('"Broken" #3 prio=5 os_prio=0 tid=0x00007f3d70001800 runnable')
    assert excinfo.value.field == "nid"


def test_missing_os_prio_defaults_to_zero():
    header = parse_header('"C1 CompilerThread" #7 daemon prio=9 tid=0x1 nid=0x2 waiting on condition')
    assert header["os_prio"] == 0
    assert header["daemon"] is True
    assert header["address"] is None


def test_bad_hex_raises_invalid_status():
    with pytest.raises(InvalidStatusError):
        parse_header('"T" #1 prio=5 os_prio=0 tid=0xZZ nid=0x1 runnable')


def test_jdk11_header_extras_are_accepted():
    header = parse_header(
        '"main" #1 prio=5 os_prio=0 cpu=120.50ms elapsed=30.12s tid=0x00007f0c2c017000 nid=0x1a03 runnable  [0x00007f0c33bfe000]'
    )
    assert header["tid"] == 0x00007F0C2C017000
    assert header["nid"] == 0x1A03
    assert header["address"] == "0x00007f0c33bfe000"


def test_jdk19_header_with_os_thread_id_and_decimal_nid():
    header = parse_header(
        '"Reference Handler" #9 [11452] daemon prio=10 os_prio=0 cpu=0.22ms elapsed=12.04s tid=0x00007f6e2c13d800 nid=11452 waiting on condition  [0x00007f6e0c1fe000]'
    )
    assert header["id"] == "#9"
    assert header["daemon"] is True
    assert header["prio"] == 10
    assert header["tid"] == 0x00007F6E2C13D800
    assert header["nid"] == 11452
    assert header["state_text"] == "waiting on condition"
    assert header["address"] == "0x00007f6e0c1fe000"


def test_garbled_nid_raises_invalid_status():
    with pytest.raises(InvalidStatusError):
        parse_header('"T" #1 prio=5 os_prio=0 tid=0x1 nid=12ab runnable')


def test_illegal_state_word():
    lines = list(EXAMPLE_STANZA)
    lines[1] = "java.lang.Thread.State: SNOOZING"
    with pytest.raises(IllegalStatusError):
        parse_stanza(lines)


def test_monitor_waiting_to_lock_frame():
    call = parse_frame("- waiting to lock <0x00000000c7c600d0> (a java.lang.Object)")
    assert call.frame == Monitor(monitor_address=0xC7C600D0, action=MonitorAction.WAITING_TO_LOCK)
    assert call.class_name == "java.lang.Object"
    assert call.method_name is None


@pytest.mark.parametrize(
    "line, expected",
    [
        ("- locked <0x00000000d5e0c2a8> (a java.lang.Object)", Lock(lock_address=0xD5E0C2A8)),
        (
            "- waiting on <0x00000000c7c08ed0> (a java.lang.ref.Reference$Lock)",
            Monitor(monitor_address=0xC7C08ED0, action=MonitorAction.WAITING_ON),
        ),
        (
            "- parking to wait for  <0x00000000e1b6a4b8> (a java.util.concurrent.locks.AbstractQueuedSynchronizer$ConditionObject)",
            Parking(parking_address=0xE1B6A4B8),
        ),
        ("- eliminated <owner is scalar replaced> (a java.lang.Object)", Eliminated()),
    ],
)
def test_lock_like_frames(line, expected):
    assert parse_frame(line).frame == expected


def test_native_and_module_frames():
    native = parse_frame("at java.lang.Object.wait(Native Method)")
    assert isinstance(native.frame, NativeMethod)
    assert native.file_name == "Native Method"
    assert native.line_number is None

    module = parse_frame("at java.base@11.0.2/java.lang.Thread.run(Thread.java:834)")
    assert module.class_name == "java.lang.Thread"
    assert module.method_name == "run"
    assert module.line_number == 834

    app = parse_frame("at app//com.example.Worker.call(Worker.java:42)")
    assert app.signature == "com.example.Worker.call"


def test_unknown_frames():
    with pytest.raises(UnknownFrameError):
        parse_frame("- frobnicating <0x1> (a java.lang.Object)")
    with pytest.raises(UnknownFrameError):
        parse_frame("- locked (a java.lang.Object)")
    with pytest.raises(UnknownFrameError):
        parse_frame("something else entirely")


def test_split_stanzas_tracks_line_numbers():
    stanzas = list(split_stanzas(SAMPLE_DUMP.splitlines()))
    assert [s.start_line for s in stanzas] == [4, 10, 17, 19, 23, 29]
    assert stanzas[0].end_line == 8
    assert all("Locked ownable" not in line for s in stanzas for line in s.lines)


def test_system_thread_detection():
    assert is_system_thread(['"VM Thread" os_prio=0 tid=0x1 nid=0x2 runnable'])
    assert not is_system_thread(EXAMPLE_STANZA)


def test_blocked_thread_end_to_end():
    result = parse_lines(SAMPLE_DUMP.splitlines(), source="sample")
    by_name = {thread.name: thread for thread in result.threads}

    assert by_name["Thread-1"].status is ThreadStatus.RUNNABLE
    blocked = by_name["Thread-2"]
    assert blocked.status is ThreadStatus.BLOCKED
    monitors = [f.frame for f in blocked.frames if isinstance(f.frame, Monitor)]
    assert monitors == [
        Monitor(monitor_address=0x00000000C7C600D0, action=MonitorAction.WAITING_TO_LOCK)
    ]


def test_bad_stanza_is_reported_not_raised():
    result = parse_lines(SAMPLE_DUMP.splitlines(), source="sample")

    assert sorted(t.name for t in result.threads) == [
        "Attach Listener",
        "Reference Handler",
        "Thread-1",
        "Thread-2",
    ]
    assert result.skipped == 1
    assert len(result.failures) == 1
    failure = result.failures[0]
    assert failure.start_line == 19
    assert isinstance(failure.error, MissingFieldError)
    assert failure.as_dict()["error_type"] == "MissingFieldError"


def test_header_only_stanza_status_from_text():
    result = parse_lines(SAMPLE_DUMP.splitlines())
    listener = next(t for t in result.threads if t.name == "Attach Listener")
    assert listener.status is ThreadStatus.WAITING
    assert listener.frames == ()
    assert listener.daemon is True


def test_parse_thread_dump_file(dump_file):
    result = parse_thread_dump(dump_file)
    assert result.path == dump_file
    assert len(result.threads) == 4
    thread = next(t for t in result.threads if t.name == "Thread-1")
    assert (thread.start_line, thread.end_line) == (4, 8)


def test_parse_thread_dumps_reports_unreadable_files(dump_file, tmp_path):
    missing = tmp_path / "gone_jstack.txt"
    results = parse_thread_dumps([dump_file, missing], max_workers=2)

    assert len(results[0].threads) == 4
    assert results[1].threads == []
    assert len(results[1].failures) == 1
