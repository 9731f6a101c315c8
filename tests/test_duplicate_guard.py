import threading

import pytest

from donorlink.core.errors import AlreadyProcessing, FailureKind
from donorlink.services.duplicate_guard import DuplicateGuard


def test_second_acquire_is_rejected():
    guard = DuplicateGuard()
    guard.try_acquire("DON-1")

    with pytest.raises(AlreadyProcessing) as exc:
        guard.try_acquire("DON-1")

    assert exc.value.kind == FailureKind.ALREADY_PROCESSING
    assert guard.is_held("DON-1")


def test_release_allows_reacquire():
    guard = DuplicateGuard()
    guard.try_acquire("DON-1")
    guard.release("DON-1")

    guard.try_acquire("DON-1")
    assert len(guard) == 1


def test_release_of_unknown_donor_is_a_no_op():
    guard = DuplicateGuard()
    guard.release("nobody")
    assert len(guard) == 0


def test_only_one_thread_acquires():
    guard = DuplicateGuard()
    barrier = threading.Barrier(16)
    wins = []

    def attempt():
        barrier.wait()
        try:
            guard.try_acquire("DON-1")
            wins.append(True)
        except AlreadyProcessing:
            pass

    threads = [threading.Thread(target=attempt) for _ in range(16)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    assert wins == [True]
