"""
Progress Tracking Module.

This module describes the nested tasks of a training run and reports
progress on them:
- Task: a leaf (fixed volume of work) or an iterative task (repeats its
  subtasks up to max_iterations times)
- progress_tasks: the task layout of a GraphSAGE training run
- ProgressTracker: console logging of task begin/end, percentages and
  info messages

The trainer only talks to the tracker interface; ProgressTracker.empty()
gives a silent tracker.
"""

import threading
import time
from dataclasses import dataclass, field
from typing import Dict, List, Optional


UNKNOWN_VOLUME = -1


@dataclass
class Task:
    """
    Node of the progress task tree.

    Attributes:
        description: Name used to begin/end the task
        volume: Units of work of a leaf (UNKNOWN_VOLUME for iterative tasks)
        subtasks: Subtasks run on each iteration
        max_iterations: Upper bound on iterations (1 for leaves)
    """
    description: str
    volume: int = UNKNOWN_VOLUME
    subtasks: List['Task'] = field(default_factory=list)
    max_iterations: int = 1

    @classmethod
    def leaf(cls, description: str, volume: int = UNKNOWN_VOLUME) -> 'Task':
        return cls(description, volume)

    @classmethod
    def iterative(cls, description: str, subtasks: List['Task'], max_iterations: int) -> 'Task':
        return cls(description, UNKNOWN_VOLUME, list(subtasks), max_iterations)

    def is_leaf(self) -> bool:
        return not self.subtasks

    def find_subtask(self, description: str) -> Optional['Task']:
        for subtask in self.subtasks:
            if subtask.description == description:
                return subtask
        return None


def progress_tasks(
    number_of_batches: int,
    batches_per_iteration: int,
    max_iterations: int,
    epochs: int
) -> List[Task]:
    """
    Task layout of a training run.

    Args:
        number_of_batches: Batches prepared before training
        batches_per_iteration: Batch tasks run per iteration
        max_iterations: Iterations per epoch (upper bound)
        epochs: Number of epochs (upper bound)

    Returns:
        ["Prepare batches" leaf, "Train model" -> "Epoch" -> "Iteration"]
    """
    return [
        Task.leaf("Prepare batches", number_of_batches),
        Task.iterative(
            "Train model",
            [Task.iterative(
                "Epoch",
                [Task.leaf("Iteration", batches_per_iteration)],
                max_iterations
            )],
            epochs
        ),
    ]


class _Frame:
    """A task that has begun and not yet ended."""

    def __init__(self, task: Optional[Task], description: str, label: str):
        self.task = task
        self.description = description
        self.label = label
        self.progress = 0
        self.last_logged_percent = 0
        self.started_children: Dict[str, int] = {}
        self.start_time = time.time()


class ProgressTracker:
    """
    Console progress tracker for nested training tasks.

    Example:
        >>> tracker = ProgressTracker(progress_tasks(10, 2, 5, 1))
        >>> tracker.begin_subtask("Prepare batches")
        Prepare batches :: Start
        >>> tracker.log_progress(10)
        Prepare batches 100%
        >>> tracker.end_subtask("Prepare batches")
        Prepare batches :: Finished (0.0s)
    """

    def __init__(
        self,
        tasks: Optional[List[Task]] = None,
        verbose: bool = True,
        log_every_percent: int = 10
    ):
        """
        Initialize tracker.

        Args:
            tasks: Top-level tasks (see progress_tasks); unknown tasks are
                   tracked without volume
            verbose: Whether to print to console
            log_every_percent: Print leaf progress every N percent
        """
        self.root = Task.iterative("root", tasks or [], 1)
        self.verbose = verbose
        self.log_every_percent = log_every_percent

        self.messages: List[str] = []
        self._stack: List[_Frame] = [_Frame(self.root, "", "")]
        self._lock = threading.Lock()

    @staticmethod
    def empty() -> 'ProgressTracker':
        """Tracker that records nothing to the console."""
        return ProgressTracker(verbose=False)

    def begin_subtask(self, description: str):
        """Begin a subtask of the current task."""
        with self._lock:
            parent = self._stack[-1]
            task = parent.task.find_subtask(description) if parent.task is not None else None

            count = parent.started_children.get(description, 0) + 1
            parent.started_children[description] = count

            # repeated subtasks of an iterative task are numbered: "Epoch 2 of 5"
            label = description
            if parent.task is not None and parent.task.max_iterations > 1:
                label = f"{description} {count} of {parent.task.max_iterations}"

            self._stack.append(_Frame(task, description, label))
            self._log(f"{self._path()} :: Start")

    def end_subtask(self, description: str):
        """
        End the current subtask.

        Raises:
            ValueError: If description does not match the current subtask
        """
        with self._lock:
            if len(self._stack) == 1:
                raise ValueError(f"Cannot end `{description}`: no task is running")

            frame = self._stack[-1]
            if frame.description != description:
                raise ValueError(f"Cannot end `{description}`: current task is `{frame.label}`")

            elapsed = time.time() - frame.start_time
            self._log(f"{self._path()} :: Finished ({elapsed:.1f}s)")
            self._stack.pop()

    def log_progress(self, units: int = 1):
        """Add units of work to the current task; safe to call from workers."""
        with self._lock:
            frame = self._stack[-1]
            frame.progress += units

            volume = frame.task.volume if frame.task is not None else UNKNOWN_VOLUME
            if volume <= 0:
                return

            percent = min(100, int(100 * frame.progress / volume))
            if percent >= frame.last_logged_percent + self.log_every_percent or (
                percent == 100 and frame.last_logged_percent < 100
            ):
                frame.last_logged_percent = percent
                self._log(f"{self._path()} {percent}%")

    def log_info(self, message: str):
        """Log a message in the context of the current task."""
        with self._lock:
            path = self._path()
            self._log(f"{path} :: {message}" if path else message)

    def _path(self) -> str:
        return " :: ".join(frame.label for frame in self._stack[1:])

    def _log(self, line: str):
        self.messages.append(line)
        if self.verbose:
            print(line)
