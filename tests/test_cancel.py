"""
Tests for the cancel hook.
"""

import threading

from partwise.core.cancel import CancelHook


class TestCancelHook:
    """Test one-shot cancellation."""

    def test_plain_cancel_keeps_local_state(self):
        calls = []
        hook = CancelHook()
        hook.set_cleaner(lambda: calls.append("clean"))
        hook.set_aborter(lambda: calls.append("abort"))

        assert hook.cancel(False)
        assert hook.is_cancelled()
        assert not hook.aborted
        assert calls == []

    def test_abort_runs_cleaner_then_aborter(self):
        calls = []
        hook = CancelHook()
        hook.set_cleaner(lambda: calls.append("clean"))
        hook.set_aborter(lambda: calls.append("abort"))

        assert hook.cancel(True)
        assert hook.aborted
        assert calls == ["clean", "abort"]

    def test_second_cancel_has_no_effect(self):
        calls = []
        hook = CancelHook()
        hook.set_cleaner(lambda: calls.append("clean"))

        assert hook.cancel(True)
        assert not hook.cancel(True)
        assert not hook.cancel(False)
        assert calls == ["clean"]
        assert hook.aborted

    def test_concurrent_cancel_runs_effects_once(self):
        calls = []
        lock = threading.Lock()

        def clean():
            with lock:
                calls.append("clean")

        hook = CancelHook()
        hook.set_cleaner(clean)
        barrier = threading.Barrier(10)
        results = []

        def cancel():
            barrier.wait()
            results.append(hook.cancel(True))

        threads = [threading.Thread(target=cancel) for _ in range(10)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert results.count(True) == 1
        assert calls == ["clean"]

    def test_failing_cleaner_still_aborts(self):
        calls = []

        def clean():
            raise OSError("read-only filesystem")

        hook = CancelHook()
        hook.set_cleaner(clean)
        hook.set_aborter(lambda: calls.append("abort"))

        assert hook.cancel(True)
        assert calls == ["abort"]
        assert hook.wait(0)

    def test_effects_registered_after_abort_run_immediately(self):
        calls = []
        hook = CancelHook()

        assert hook.cancel(True)
        hook.set_cleaner(lambda: calls.append("clean"))
        hook.set_aborter(lambda: calls.append("abort"))
        assert calls == ["clean", "abort"]

        hook.run_abort_effects()
        assert calls == ["clean", "abort"]

    def test_effects_registered_after_plain_cancel_do_not_run(self):
        calls = []
        hook = CancelHook()

        assert hook.cancel(False)
        hook.set_cleaner(lambda: calls.append("clean"))
        hook.run_abort_effects()
        assert calls == []
