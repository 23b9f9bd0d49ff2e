"""
Cooperative cancellation of a training run.
"""

import threading
from concurrent.futures import Executor
from typing import Callable, Iterable, List


class TrainingTerminatedError(RuntimeError):
    """Raised when a running training is asked to stop."""

    def __init__(self, message: str = "The training run was terminated."):
        super().__init__(message)


class TerminationFlag:
    """
    "Keep running" signal shared by the scheduler and the workers.

    Long-running work polls assert_running(); stop() makes every later poll
    raise TrainingTerminatedError.

    Example:
        >>> flag = TerminationFlag()
        >>> flag.running()
        True
        >>> flag.stop()
        >>> flag.running()
        False
    """

    def __init__(self):
        self._stopped = threading.Event()

    def stop(self):
        """Signal all pollers to stop."""
        self._stopped.set()

    def running(self) -> bool:
        return not self._stopped.is_set()

    def assert_running(self):
        """
        Raises:
            TrainingTerminatedError: If stop() was called
        """
        if self._stopped.is_set():
            raise TrainingTerminatedError()


def map_or_cancel(executor: Executor, function: Callable, items: Iterable) -> List:
    """
    Apply function to every item on the executor, results in item order.

    The first failure in item order is re-raised after every call that
    has not started yet is cancelled.
    """
    futures = [executor.submit(function, item) for item in items]
    try:
        return [future.result() for future in futures]
    except BaseException:
        for future in futures:
            future.cancel()
        raise
