"""Job runner executing the backup agent for one target."""

import re
import signal
import subprocess
from typing import List

import psutil

from .durations import format_duration
from .models import (
    NOT_EXECUTABLE_STATUS,
    TIMEOUT_STATUS,
    Classification,
    CompletionRecord,
    Config,
    Job,
)
from .storage import Storage


def kill_process_tree(pid: int, timeout: float = 5.0) -> None:
    """Terminate a process and all of its descendants."""
    try:
        parent = psutil.Process(pid)
        procs = parent.children(recursive=True) + [parent]
    except psutil.NoSuchProcess:
        return
    for proc in procs:
        try:
            proc.terminate()
        except psutil.NoSuchProcess:
            pass
    gone, alive = psutil.wait_procs(procs, timeout=timeout)
    for proc in alive:
        try:
            proc.kill()
        except psutil.NoSuchProcess:
            pass


def exit_status(returncode: int) -> int:
    """Shell style status: death by signal N is reported as 128 + N."""
    if returncode < 0:
        return 128 - returncode
    return returncode


def describe(job: Job) -> str:
    """Completion line for the run log and summary."""
    head = (
        f"job[{job.index}] backup for {job.target.display_path} "
        f"completed in {format_duration(job.elapsed)}"
    )
    if job.classification is Classification.SUCCESS:
        return f"{head} with a status of success"
    if job.classification is Classification.WARNING:
        return f"{head} with one or more warnings - return code: 4"
    if job.classification is Classification.ERROR:
        return f"{head} with one or more errors - return code: 8"
    if job.timed_out:
        return f"{head} with a status of fail - timed out - return code: {job.status}"
    return f"{head} with a status of fail - return code: {job.status}"


class JobRunner:
    """Runs the agent for one job and records its outcome."""

    def __init__(self, config: Config, storage: Storage):
        self.config = config
        self.storage = storage
        self.error_mask = re.compile(self.config.tsmerrmask)
        self.ignore_mask = re.compile(self.config.tsmignoremask) if self.config.tsmignoremask else None

    def command(self, job: Job) -> List[str]:
        target = job.target
        return [self.config.dsmcpath, "incr", target.display_path, target.subdir_flag]

    def scan_errors(self, output: str) -> List[str]:
        """Lines of agent output starting with an error signature."""
        found = []
        for line in output.splitlines():
            if not self.error_mask.match(line):
                continue
            if self.ignore_mask is not None and self.ignore_mask.search(line):
                continue
            found.append(line)
        return found

    def _execute(self, job: Job) -> int:
        cmd = self.command(job)
        with open(self.storage.job_output(job.index), "a") as out:
            try:
                proc = subprocess.Popen(
                    cmd,
                    stdin=subprocess.DEVNULL,
                    stdout=out,
                    stderr=subprocess.STDOUT,
                )
            except OSError as e:
                out.write(f"cannot execute {cmd[0]}: {e.strerror}\n")
                return NOT_EXECUTABLE_STATUS

            job.pid = proc.pid
            try:
                return exit_status(proc.wait(timeout=self.config.timeout))
            except subprocess.TimeoutExpired:
                kill_process_tree(proc.pid)
                proc.wait()
                job.timed_out = True
                out.write(f"timed out after {format_duration(self.config.timeout)}\n")
                return TIMEOUT_STATUS

    def run(self, job: Job) -> Job:
        """Execute the job, then update the shared records.

        The highest status is recorded first so an interrupted run can still
        report it, then matched error lines, then the completion record.
        """
        status = self._execute(job)
        job.finalize(status)
        self.storage.record_status(status)

        output = self.storage.job_output(job.index).read_text(errors="replace")
        job.error_lines = self.scan_errors(output)
        if self.config.verbose:
            self.storage.append_errors([f"job[{job.index}] {line}" for line in job.error_lines])

        self.storage.append_completion(CompletionRecord(
            index=job.index,
            path=job.target.display_path,
            status=status,
            classification=job.classification,
            elapsed=int(job.elapsed),
            message=describe(job),
        ))
        return job


def run_job_process(config: Config, storage: Storage, job: Job) -> None:
    """Entry point of a forked job process."""
    # the coordinator's handlers are inherited across fork
    signal.signal(signal.SIGTERM, signal.SIG_DFL)
    signal.signal(signal.SIGINT, signal.SIG_DFL)
    JobRunner(config, storage).run(job)
