import threading

from carina.readiness import ReadinessCheck


def test_not_ready_before_start():
    check = ReadinessCheck(lambda: None, 0.01)
    assert check.ready() == (False, None)


def test_successful_check_makes_ready():
    stop = threading.Event()
    stop.set()
    check = ReadinessCheck(lambda: None, 0.01)
    check.start(stop)
    assert check.ready() == (True, None)


def test_failing_check_reports_error():
    error = RuntimeError("lvm not running")

    def failing():
        raise error

    stop = threading.Event()
    stop.set()
    check = ReadinessCheck(failing, 0.01)
    check.start(stop)
    ready, err = check.ready()
    assert ready is False
    assert err is error


def test_stays_ready_after_later_failure():
    stop = threading.Event()
    calls = []
    error = ValueError("gone")

    def flaky():
        calls.append(1)
        if len(calls) >= 2:
            stop.set()
            raise error

    check = ReadinessCheck(flaky, 0.001)
    check.start(stop)
    assert len(calls) == 2
    assert check.ready() == (True, error)


def test_becomes_ready_after_recovery():
    stop = threading.Event()
    calls = []

    def recovering():
        calls.append(1)
        if len(calls) == 1:
            raise OSError("not yet")
        stop.set()

    check = ReadinessCheck(recovering, 0.001)
    check.start(stop)
    assert len(calls) == 2
    assert check.ready() == (True, None)


def test_start_in_thread_stops_on_event():
    stop = threading.Event()
    check = ReadinessCheck(lambda: None, 0.005)
    worker = threading.Thread(target=check.start, args=(stop,))
    worker.start()
    stop.set()
    worker.join(timeout=2)
    assert not worker.is_alive()
    assert check.ready() == (True, None)


def test_no_leader_election():
    assert ReadinessCheck(lambda: None, 1).need_leader_election() is False