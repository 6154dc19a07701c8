"""
Unit tests for the job queue and worker.
"""

import threading

from portfolion.queue import Job, MemoryQueue, SyncQueue, Worker


class TestJob:
    def test_name_from_payload(self):
        assert Job({"event": "task.created"}).name == "task.created"
        assert Job({"job": "send_mail"}).name == "send_mail"
        assert Job({}).name == "job"


class TestMemoryQueue:
    """Tests for MemoryQueue."""

    def test_fifo(self, clock):
        queue = MemoryQueue(clock)
        queue.enqueue({"n": 1})
        queue.enqueue({"n": 2})

        assert queue.dequeue().payload == {"n": 1}
        assert queue.dequeue().payload == {"n": 2}
        assert queue.dequeue() is None

    def test_dequeue_reserves(self, clock):
        queue = MemoryQueue(clock)
        queue.enqueue({"n": 1})

        job = queue.dequeue()
        assert job.reserved
        assert job.attempts == 1
        assert queue.size() == 0
        assert queue.reserved_count() == 1

        queue.ack(job)
        assert queue.reserved_count() == 0

    def test_delay(self, clock):
        queue = MemoryQueue(clock)
        queue.enqueue({"n": 1}, delay=30)

        assert queue.dequeue() is None
        clock.advance(30)
        assert queue.dequeue() is not None

    def test_release_makes_job_visible_later(self, clock):
        queue = MemoryQueue(clock)
        queue.enqueue({"n": 1})
        job = queue.dequeue()

        queue.release(job, delay=10)
        assert queue.size() == 1
        assert queue.dequeue() is None

        clock.advance(10)
        again = queue.dequeue()
        assert again is job
        assert again.attempts == 2


class TestSyncQueue:
    """Tests for SyncQueue."""

    def test_runs_immediately(self):
        seen = []
        queue = SyncQueue(lambda job: seen.append(job.payload))

        job = queue.enqueue({"event": "task.created"})

        assert seen == [{"event": "task.created"}]
        assert queue.processed == [job]
        assert queue.size() == 0

    def test_failures_do_not_reach_caller(self):
        def failing(job):
            raise RuntimeError("mail server down")

        queue = SyncQueue(failing)
        queue.enqueue({"event": "x"})

        assert queue.processed == []

    def test_without_handler_records_jobs(self):
        queue = SyncQueue()
        queue.enqueue({"event": "x"})

        assert len(queue.processed) == 1


class TestWorker:
    """Tests for Worker."""

    def test_processes_and_acks(self, clock):
        queue = MemoryQueue(clock)
        seen = []
        queue.enqueue({"n": 1})
        queue.enqueue({"n": 2})

        assert Worker(queue, lambda job: seen.append(job.payload["n"])).run_once() == 2
        assert seen == [1, 2]
        assert queue.reserved_count() == 0

    def test_failed_job_retried_after_back_off(self, clock):
        queue = MemoryQueue(clock)
        attempts = []

        def flaky(job):
            attempts.append(job.attempts)
            if job.attempts < 2:
                raise RuntimeError("try again")

        worker = Worker(queue, flaky, max_attempts=3, retry_after=60)
        queue.enqueue({"event": "flaky"})

        worker.run_once()
        assert queue.size() == 1

        clock.advance(60)
        worker.run_once()

        assert attempts == [1, 2]
        assert queue.size() == 0
        assert worker.failed == []

    def test_gives_up_after_max_attempts(self, clock):
        queue = MemoryQueue(clock)

        def broken(job):
            raise RuntimeError("always")

        worker = Worker(queue, broken, max_attempts=2, retry_after=5)
        queue.enqueue({"event": "broken"})

        worker.run_once()
        clock.advance(5)
        worker.run_once()

        assert len(worker.failed) == 1
        assert worker.failed[0].attempts == 2
        assert queue.size() == 0
        assert queue.reserved_count() == 0

    def test_run_stops(self):
        queue = MemoryQueue()
        done = threading.Event()

        def handler(job):
            done.set()

        worker = Worker(queue, handler)
        thread = threading.Thread(target=worker.run, kwargs={"poll_interval": 0.01}, daemon=True)
        thread.start()

        queue.enqueue({"event": "x"})
        assert done.wait(timeout=5.0)

        worker.stop()
        thread.join(timeout=5.0)
        assert not thread.is_alive()
