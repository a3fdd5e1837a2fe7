from celery import Task


class AsyncTask(Task):
    """
    Runs a coroutine task body on the worker process's persistent event loop,
    so SQLAlchemy's async pool and the Redis client stay bound to one loop.
    """
    def __call__(self, *args, **kwargs):
        from .celery_app import get_worker_loop

        loop = get_worker_loop()
        if loop is None:
            raise RuntimeError("Asyncio event loop not initialized for worker process")

        return loop.run_until_complete(self.run(*args, **kwargs))
