import threading

from machina.application.deployment.scheduler import ManualJobScheduler, ThreadPoolJobScheduler


def test_manual_scheduler_runs_jobs_in_submission_order():
    # Arrange
    scheduler = ManualJobScheduler()
    seen = []

    def job(value):
        seen.append(value)
        if value == "first":
            scheduler.submit(job, "enqueued-by-first")

    scheduler.submit(job, "first")
    scheduler.submit(job, "second")

    # Act
    count = scheduler.run_pending()

    # Assert
    assert count == 3
    assert seen == ["first", "second", "enqueued-by-first"]
    assert scheduler.pending == 0


def test_thread_pool_scheduler_runs_jobs():
    scheduler = ThreadPoolJobScheduler(max_workers=2)
    done = threading.Event()

    scheduler.submit(done.set)
    scheduler.shutdown(wait=True)

    assert done.is_set()
