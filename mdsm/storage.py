"""File-based coordination records shared by the scheduler and its jobs."""

import fcntl
import json
import os
from contextlib import contextmanager
from datetime import datetime
from pathlib import Path
from typing import Iterator, List, Optional

from .errors import ConfigurationError
from .models import CompletionRecord, Config

RUN_DIR_FORMAT = "%Y-%b-%d.%H%M%S"


class Storage:
    """Files of one run directory, with locking.

    Jobs append to the completion and error streams and update the highest
    status record; the scheduler is the only reader and deletes each stream
    after draining it. Every access holds an exclusive lock on a per-run lock
    file, so a drain never races an append.
    """

    def __init__(self, run_dir: Path, log_name: str = "mdsm.log"):
        self.run_dir = Path(run_dir)
        self.log_file = self.run_dir / log_name
        self.rc_file = self._sibling("highestrc")
        self.completed_file = self._sibling("completed")
        self.err_file = self._sibling("err")
        self.lock_file = self._sibling("lock")

    @classmethod
    def create(cls, config: Config, now: Optional[datetime] = None) -> "Storage":
        """Create a timestamped run directory under the log root."""
        root = Path(config.toplogdir)
        run_dir = root / (now or datetime.now()).strftime(RUN_DIR_FORMAT)
        for directory in (root, run_dir):
            try:
                directory.mkdir(parents=True, exist_ok=True)
            except OSError as e:
                raise ConfigurationError(f"Cannot write to log directory: {directory} ({e.strerror})")
        if not os.access(run_dir, os.W_OK):
            raise ConfigurationError(f"Cannot write to log directory: {run_dir}")
        return cls(run_dir.resolve(), config.logfile)

    def _sibling(self, suffix: str) -> Path:
        return self.log_file.with_name(f"{self.log_file.name}.{suffix}")

    def job_output(self, index: int) -> Path:
        """Raw agent output of one job."""
        return self._sibling(str(index))

    @contextmanager
    def _locked(self) -> Iterator[None]:
        fd = os.open(str(self.lock_file), os.O_CREAT | os.O_WRONLY, 0o644)
        try:
            fcntl.flock(fd, fcntl.LOCK_EX)
            yield
        finally:
            fcntl.flock(fd, fcntl.LOCK_UN)
            os.close(fd)

    def _write_atomic(self, file_path: Path, text: str) -> None:
        """Write via a temp file and rename so readers never see a partial value."""
        temp_file = file_path.with_name(f"{file_path.name}.tmp")
        with open(temp_file, "w") as f:
            f.write(text)
            f.flush()
            os.fsync(f.fileno())
        temp_file.replace(file_path)

    def _read_highest(self) -> Optional[int]:
        if not self.rc_file.exists():
            return None
        return int(self.rc_file.read_text().strip())

    def read_highest(self) -> Optional[int]:
        """Last durable highest status, or None if no job has finished."""
        with self._locked():
            return self._read_highest()

    def record_status(self, status: int) -> int:
        """Raise the durable highest status to ``status`` if it is greater.

        The current value is reread under the lock right before the write, so
        concurrent jobs cannot overwrite a larger value with a smaller one.
        Returns the highest status after the update.
        """
        with self._locked():
            current = self._read_highest()
            if current is None or status > current:
                self._write_atomic(self.rc_file, f"{status}\n")
                return status
            return current

    def _append(self, file_path: Path, lines: List[str]) -> None:
        if not lines:
            return
        with self._locked():
            with open(file_path, "a") as f:
                f.write("".join(line + "\n" for line in lines))

    def append_completion(self, record: CompletionRecord) -> None:
        self._append(self.completed_file, [json.dumps(record.model_dump(mode="json"))])

    def append_errors(self, lines: List[str]) -> None:
        self._append(self.err_file, lines)

    def _drain(self, file_path: Path) -> List[str]:
        with self._locked():
            if not file_path.exists():
                return []
            with open(file_path, "r") as f:
                lines = [line.rstrip("\n") for line in f if line.strip()]
            file_path.unlink()
        return lines

    def drain_completions(self) -> List[CompletionRecord]:
        """Read and delete the completion stream."""
        return [
            CompletionRecord(**json.loads(line))
            for line in self._drain(self.completed_file)
        ]

    def drain_errors(self) -> List[str]:
        """Read and delete the error stream."""
        return self._drain(self.err_file)

    def remove_transient(self) -> None:
        """Delete the coordination files; run log and job output stay."""
        for file_path in (
            self.completed_file,
            self.err_file,
            self.rc_file,
            self.rc_file.with_name(f"{self.rc_file.name}.tmp"),
            self.lock_file,
        ):
            try:
                file_path.unlink()
            except FileNotFoundError:
                pass
