"""
File transfer module.

This module handles client-side file transfer: building outbound attachment
messages from files on disk and saving inbound attachments to disk. Both run
as tasks on a bounded QThreadPool and report progress in [0, 1].

Observers either connect to the task's Qt signals (delivered on the
receiver's own thread) or use the thread-safe accessors: ``progress``,
``state``, ``wait()``, ``result()``, ``exception()`` and
``add_done_callback()``.
"""

import os
import threading
from enum import Enum
from pathlib import Path
from typing import Callable, List, Optional

from PyQt6.QtCore import QObject, QRunnable, QThreadPool, pyqtSignal

from relay_client.utils.config import ClientConfig
from relay_client.utils.logger import logger
from relay_common.constants import CHUNK_SIZE, MAX_FILE_SIZE, PROGRESS_LOG_INTERVAL
from relay_common.errors import ConnectionError, ProtocolError, TransferError
from relay_common.protocol_definitions import (
    Message, MessageType, create_file_message, determine_file_type
)


class TaskState(Enum):
    """Lifecycle of a transfer task."""
    PENDING = 'pending'
    RUNNING = 'running'
    COMPLETED = 'completed'
    FAILED = 'failed'


class TransferSignals(QObject):
    """Signals emitted by a transfer task."""

    progress_changed = pyqtSignal(float)  # fraction in [0, 1]
    completed = pyqtSignal(object)  # task result
    failed = pyqtSignal(object)  # TransferError


class TransferTask(QRunnable):
    """Base class for chunked transfer tasks with a single terminal outcome."""

    action = 'TRANSFER'

    def __init__(self, name: str, chunk_size: int, progress_log_interval: int):
        super().__init__()
        self.setAutoDelete(False)
        self.name = name
        self.chunk_size = chunk_size
        self.progress_log_interval = progress_log_interval
        self.signals = TransferSignals()

        self._lock = threading.Lock()
        self._done = threading.Event()
        self._state = TaskState.PENDING
        self._progress = 0.0
        self._result = None
        self._error: Optional[TransferError] = None
        self._callbacks: List[Callable] = []

    @property
    def state(self) -> TaskState:
        with self._lock:
            return self._state

    @property
    def progress(self) -> float:
        with self._lock:
            return self._progress

    def done(self) -> bool:
        return self._done.is_set()

    def succeeded(self) -> bool:
        return self.state is TaskState.COMPLETED

    def wait(self, timeout: Optional[float] = None) -> bool:
        """Block until the task finishes. Returns False on timeout."""
        return self._done.wait(timeout)

    def result(self, timeout: Optional[float] = None):
        """Return the task's result, raising its TransferError if it failed."""
        if not self._done.wait(timeout):
            raise TimeoutError(f"{self.name} did not finish within {timeout}s")
        if self._error is not None:
            raise self._error
        return self._result

    def exception(self, timeout: Optional[float] = None) -> Optional[TransferError]:
        """Return the task's TransferError, or None if it succeeded."""
        if not self._done.wait(timeout):
            raise TimeoutError(f"{self.name} did not finish within {timeout}s")
        return self._error

    def add_done_callback(self, fn: Callable[['TransferTask'], None]):
        """Call ``fn(task)`` once the task finishes.

        The callback runs on the worker thread, or immediately on the calling
        thread if the task has already finished.
        """
        with self._lock:
            if not self._done.is_set():
                self._callbacks.append(fn)
                return
        self._invoke_callback(fn)

    def run(self):
        """Run the transfer. Called by the thread pool."""
        with self._lock:
            if self._state is not TaskState.PENDING:
                return
            self._state = TaskState.RUNNING

        try:
            result = self._execute()
        except TransferError as e:
            self._finish(error=e)
        except Exception as e:
            self._finish(error=TransferError(f"{self.name}: {e}"))
        else:
            self._finish(result=result)

    def _execute(self):
        raise NotImplementedError

    def _report_progress(self, fraction: float):
        fraction = min(max(fraction, 0.0), 1.0)
        with self._lock:
            if fraction <= self._progress:
                return
            self._progress = fraction
        self.signals.progress_changed.emit(fraction)

    def _log_progress(self, done: int, total: int):
        if done % self.progress_log_interval < self.chunk_size or done == total:
            logger.log_transfer_progress(self.action, self.name, done, total)

    def _finish(self, result=None, error: Optional[TransferError] = None):
        with self._lock:
            if error is None:
                self._result = result
                self._state = TaskState.COMPLETED
                report_full = self._progress < 1.0
                self._progress = 1.0
            else:
                self._error = error
                self._state = TaskState.FAILED
            callbacks, self._callbacks = self._callbacks, []
            self._done.set()

        if error is None:
            if report_full:
                self.signals.progress_changed.emit(1.0)
            self.signals.completed.emit(result)
        else:
            logger.log_error(f"{self.action.lower()} {self.name}", error)
            self.signals.failed.emit(error)

        for fn in callbacks:
            self._invoke_callback(fn)

    def _invoke_callback(self, fn: Callable):
        try:
            fn(self)
        except Exception as e:
            logger.log_error(f"{self.name} done callback", e)


class FileSendTask(TransferTask):
    """Reads a file in chunks and completes with an attachment Message.

    When ``deliver`` is given it is called with the built message before the
    task completes; a delivery failure fails the task.
    """

    action = 'UPLOAD'

    def __init__(self, file_path: str, sender: str, recipient: Optional[str] = None,
                 message_type: Optional[MessageType] = None,
                 chunk_size: int = None, progress_log_interval: int = None,
                 max_file_size: int = None,
                 deliver: Optional[Callable[[Message], None]] = None):
        path = Path(file_path)
        super().__init__(path.name,
                         chunk_size or CHUNK_SIZE,
                         progress_log_interval or PROGRESS_LOG_INTERVAL)
        self.file_path = path
        self.sender = sender
        self.recipient = recipient
        self.message_type = message_type or determine_file_type(path.name)
        self.max_file_size = max_file_size or MAX_FILE_SIZE
        self.deliver = deliver

    def _execute(self) -> Message:
        path = self.file_path
        if not self.message_type.carries_payload:
            raise TransferError(f"{self.message_type.value} messages cannot carry a file", str(path))

        chunks = []
        bytes_read = 0
        try:
            if not path.exists():
                raise TransferError(f"File not found: {path}", str(path))
            if not path.is_file():
                raise TransferError(f"Not a file: {path}", str(path))

            size = path.stat().st_size
            if size > self.max_file_size:
                raise TransferError(
                    f"File too large: {size} bytes (max: {self.max_file_size} bytes)", str(path)
                )

            with open(path, 'rb') as f:
                while True:
                    data = f.read(self.chunk_size)
                    if not data:
                        break
                    chunks.append(data)
                    bytes_read += len(data)
                    if bytes_read > self.max_file_size:
                        raise TransferError(f"File grew beyond {self.max_file_size} bytes while reading", str(path))
                    total = max(size, bytes_read)
                    if bytes_read < total:
                        self._report_progress(bytes_read / total)
                    self._log_progress(bytes_read, total)
        except OSError as e:
            raise TransferError(f"Failed to read {path}: {e}", str(path))

        try:
            message = create_file_message(self.sender, path.name, b''.join(chunks),
                                          self.message_type, self.recipient)
        except ProtocolError as e:
            raise TransferError(f"Cannot build message for {path.name}: {e}", str(path))

        if self.deliver is not None:
            try:
                self.deliver(message)
            except (ConnectionError, ProtocolError) as e:
                raise TransferError(f"Failed to send {path.name}: {e}", str(path))

        logger.log_file_sent(path.name, bytes_read, self.recipient)
        return message


class FileSaveTask(TransferTask):
    """Writes an attachment's payload under a destination directory."""

    action = 'DOWNLOAD'

    def __init__(self, message: Message, destination_directory: str,
                 chunk_size: int = None, progress_log_interval: int = None):
        super().__init__(message.filename or 'attachment',
                         chunk_size or CHUNK_SIZE,
                         progress_log_interval or PROGRESS_LOG_INTERVAL)
        self.message = message
        self.destination_directory = Path(destination_directory)

    def _execute(self) -> str:
        message = self.message
        if not message.is_file or message.payload is None:
            raise TransferError(f"{message.type.value} message carries no file")

        # Sanitize filename to prevent path traversal
        safe_filename = os.path.basename((message.filename or '').replace('\\', '/'))
        if not safe_filename or safe_filename in ('.', '..'):
            raise TransferError(f"Invalid filename: {message.filename!r}")

        target = self.destination_directory / safe_filename
        try:
            self.destination_directory.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise TransferError(f"Cannot create {self.destination_directory}: {e}", str(target))

        payload = memoryview(message.payload)
        total = len(payload)
        created = False
        try:
            with open(target, 'xb') as f:
                created = True
                written = 0
                while written < total:
                    chunk = payload[written:written + self.chunk_size]
                    f.write(chunk)
                    written += len(chunk)
                    if written < total:
                        self._report_progress(written / total)
                    self._log_progress(written, total)
        except FileExistsError:
            raise TransferError(f"File already exists: {target}", str(target))
        except OSError as e:
            if created:
                # Clean up incomplete file
                target.unlink(missing_ok=True)
            raise TransferError(f"Failed to write {target}: {e}", str(target))

        logger.log_file_saved(safe_filename, total, str(target))
        return str(target)


class FileTransferService:
    """Creates transfer tasks and runs them on a bounded worker pool."""

    def __init__(self, config: Optional[ClientConfig] = None, max_workers: int = None):
        self.config = config or ClientConfig()
        self.pool = QThreadPool()
        self.pool.setMaxThreadCount(max_workers or self.config.max_transfer_workers)
        self._lock = threading.Lock()
        self._tasks = set()

    @property
    def max_workers(self) -> int:
        return self.pool.maxThreadCount()

    def create_send_task(self, file_path: str, sender: str, recipient: Optional[str] = None,
                         message_type: Optional[MessageType] = None,
                         deliver: Optional[Callable[[Message], None]] = None) -> FileSendTask:
        """Create (but do not start) a task that builds an attachment message."""
        return FileSendTask(file_path, sender, recipient, message_type,
                            deliver=deliver,
                            chunk_size=self.config.chunk_size,
                            progress_log_interval=self.config.progress_log_interval,
                            max_file_size=self.config.max_file_size)

    def create_save_task(self, message: Message, destination_directory: str) -> FileSaveTask:
        """Create (but do not start) a task that saves an attachment to disk."""
        return FileSaveTask(message, destination_directory,
                            chunk_size=self.config.chunk_size,
                            progress_log_interval=self.config.progress_log_interval)

    def submit(self, task: TransferTask) -> TransferTask:
        """Queue ``task`` on the pool; it starts when a worker is free."""
        with self._lock:
            self._tasks.add(task)
        task.add_done_callback(self._forget)
        self.pool.start(task)
        return task

    def send_file(self, connection, file_path: str, recipient: Optional[str] = None,
                  message_type: Optional[MessageType] = None) -> FileSendTask:
        """Read ``file_path`` in the background and send it once complete."""
        if not connection.is_connected():
            raise ConnectionError("Not connected to server")
        task = self.create_send_task(file_path, connection.username, recipient, message_type,
                                     deliver=connection.send_message)
        return self.submit(task)

    def save_file(self, message: Message, destination_directory: str = None) -> FileSaveTask:
        """Save an inbound attachment in the background."""
        task = self.create_save_task(message, destination_directory or self.config.download_dir)
        return self.submit(task)

    def active_count(self) -> int:
        """Number of transfers currently running."""
        return self.pool.activeThreadCount()

    def pending_count(self) -> int:
        """Number of submitted transfers still waiting for a worker."""
        with self._lock:
            return sum(1 for task in self._tasks if task.state is TaskState.PENDING)

    def shutdown(self, wait: bool = True, timeout: Optional[float] = None) -> bool:
        """Wait for submitted transfers. Returns False if the wait timed out."""
        if not wait:
            return True
        msecs = -1 if timeout is None else int(timeout * 1000)
        return self.pool.waitForDone(msecs)

    def _forget(self, task: TransferTask):
        with self._lock:
            self._tasks.discard(task)
