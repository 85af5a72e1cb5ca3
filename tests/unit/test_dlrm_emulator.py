from __future__ import annotations

import pytest

from wmma_test.dlrm_bench.emulator import AcceleratorError, EmulatedStream, Event


def _recorder(log: list[str], name: str):
    def kernel() -> None:
        log.append(name)

    return kernel


def _launch(stream: EmulatedStream, log: list[str], name: str) -> None:
    stream.launch(name, _recorder(log, name), (1, 1, 1), (64, 1, 1), 0)


def test_relaxed_stream_retires_newest_first() -> None:
    stream = EmulatedStream(ordering="relaxed")
    log: list[str] = []
    _launch(stream, log, "a")
    _launch(stream, log, "b")
    assert log == []
    assert stream.pending_count == 2
    stream.synchronize()
    assert log == ["b", "a"]
    assert stream.launch_log == ["b", "a"]
    assert stream.submit_log == ["a", "b"]


def test_in_order_stream_retires_in_submission_order() -> None:
    stream = EmulatedStream(ordering="in_order")
    log: list[str] = []
    _launch(stream, log, "a")
    _launch(stream, log, "b")
    stream.synchronize()
    assert log == ["a", "b"]


def test_event_wait_orders_relaxed_launches() -> None:
    stream = EmulatedStream(ordering="relaxed")
    log: list[str] = []
    _launch(stream, log, "a")
    ev = Event()
    ev.record(stream)
    assert not ev.query()
    ev.synchronize()
    assert ev.query()
    _launch(stream, log, "b")
    stream.synchronize()
    assert log == ["a", "b"]


def test_event_on_idle_stream_completes_immediately() -> None:
    stream = EmulatedStream()
    ev = Event()
    ev.record(stream)
    assert ev.query()


def test_elapsed_time_between_events() -> None:
    stream = EmulatedStream()
    log: list[str] = []
    start, stop = Event(), Event()
    start.record(stream)
    _launch(stream, log, "a")
    stop.record(stream)
    with pytest.raises(AcceleratorError):
        start.elapsed_time(stop)
    stop.synchronize()
    assert start.elapsed_time(stop) >= 0.0


def test_unrecorded_event_cannot_be_synchronized() -> None:
    with pytest.raises(AcceleratorError):
        Event().synchronize()


@pytest.mark.parametrize(
    "grid,block,lds",
    [
        ((0, 1, 1), (64, 1, 1), 0),
        ((1, 1, 1), (2048, 1, 1), 0),
        ((1, 1, 1), (64, 1, 1), 1 << 20),
        ((1, 1), (64, 1, 1), 0),
    ],
)
def test_bad_launch_configuration_raises_immediately(grid: tuple, block: tuple, lds: int) -> None:
    stream = EmulatedStream()
    with pytest.raises(AcceleratorError):
        stream.launch("k", lambda: None, grid, block, lds)
    assert stream.submit_log == []


def test_kernel_fault_is_reported_at_sync_and_sticky() -> None:
    stream = EmulatedStream()

    def faulty() -> None:
        raise IndexError("out of bounds")

    stream.launch("faulty", faulty, (1, 1, 1), (64, 1, 1), 0)
    with pytest.raises(AcceleratorError, match="faulty"):
        stream.synchronize()
    assert stream.launch_log == []
    with pytest.raises(AcceleratorError):
        stream.launch("next", lambda: None, (1, 1, 1), (64, 1, 1), 0)
    with pytest.raises(AcceleratorError):
        stream.synchronize()


def test_unknown_ordering_rejected() -> None:
    with pytest.raises(ValueError):
        EmulatedStream(ordering="random")  # type: ignore[arg-type]
