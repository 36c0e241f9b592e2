# tests/test_clock.py

import threading

from ludo_server.services.clock import Clock, TimerHandle

from conftest import FakeClock


class TestRealClock:

    def test_call_later_runs_callback(self):
        fired = threading.Event()
        Clock().call_later(0.01, fired.set)
        assert fired.wait(2)

    def test_cancelled_task_never_runs(self):
        fired = threading.Event()
        handle = Clock().call_later(0.05, fired.set)
        handle.cancel()
        assert not fired.wait(0.2)

    def test_callback_errors_are_contained(self):
        """Исключение в задаче логируется и не роняет поток таймера"""
        done = threading.Event()

        def boom():
            done.set()
            raise RuntimeError("boom")

        Clock().call_later(0.01, boom)
        assert done.wait(2)

    def test_cancel_is_idempotent(self):
        handle = TimerHandle()
        handle.cancel()
        handle.cancel()
        assert handle.cancelled


class TestFakeClock:
    """Тестовые часы, на которых построены тесты комнат"""

    def test_tasks_run_in_due_order(self):
        clock = FakeClock()
        calls = []
        clock.call_later(5, calls.append, 'b')
        clock.call_later(1, calls.append, 'a')

        clock.advance(10)
        assert calls == ['a', 'b']

    def test_time_moves_to_task_due_time(self):
        clock = FakeClock(start=0)
        seen = []
        clock.call_later(3, lambda: seen.append(clock.now()))

        clock.advance(5)
        assert seen == [3]
        assert clock.now() == 5
