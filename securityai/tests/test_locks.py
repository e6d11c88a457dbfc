import threading
import time

from securityai.locks import RWLock


def wait_until(predicate, timeout=2.0):
    end = time.monotonic() + timeout
    while time.monotonic() < end:
        if predicate():
            return True
        time.sleep(0.005)
    return predicate()


def test_readers_share_the_lock():
    lock = RWLock()
    both_inside = threading.Barrier(2, timeout=2)
    errors = []

    def reader():
        with lock.read():
            try:
                both_inside.wait()
            except threading.BrokenBarrierError as e:
                errors.append(e)

    threads = [threading.Thread(target=reader) for _ in range(2)]
    for t in threads:
        t.start()
    for t in threads:
        t.join(timeout=5)

    assert errors == []


def test_writer_excludes_readers_and_writers():
    lock = RWLock()
    entered = []

    def reader():
        with lock.read():
            entered.append("reader")

    def writer():
        with lock.write():
            entered.append("writer")

    lock.acquire_write()
    threads = [threading.Thread(target=reader), threading.Thread(target=writer)]
    for t in threads:
        t.start()
    time.sleep(0.1)
    assert entered == []

    lock.release_write()
    for t in threads:
        t.join(timeout=5)
    assert sorted(entered) == ["reader", "writer"]


def test_waiting_writer_blocks_new_readers():
    lock = RWLock()
    order = []

    def writer():
        with lock.write():
            order.append("writer")

    def reader():
        with lock.read():
            order.append("reader")

    lock.acquire_read()
    w = threading.Thread(target=writer)
    w.start()
    assert wait_until(lambda: lock._writers_waiting == 1)

    r = threading.Thread(target=reader)
    r.start()
    time.sleep(0.1)
    # the held read lock keeps the writer out, the waiting writer keeps the reader out
    assert order == []

    lock.release_read()
    w.join(timeout=5)
    r.join(timeout=5)
    assert order == ["writer", "reader"]


def test_concurrent_counter_under_write_lock():
    lock = RWLock()
    counter = {"n": 0}

    def bump():
        for _ in range(500):
            with lock.write():
                value = counter["n"]
                time.sleep(0)
                counter["n"] = value + 1

    threads = [threading.Thread(target=bump) for _ in range(8)]
    for t in threads:
        t.start()
    for t in threads:
        t.join(timeout=10)

    assert counter["n"] == 8 * 500
