"""Coordinator: admission gate, record aggregation and run lifecycle."""

import logging
import multiprocessing
import os
import signal
import time
from enum import Enum
from typing import Dict, List, Optional, Set

import psutil

from .durations import format_duration
from .errors import RunInterrupted
from .models import INTERRUPTED_STATUS, Classification, CompletionRecord, Config, Job, RunState, Target
from .storage import Storage
from .worker import exit_status, kill_process_tree, run_job_process

logger = logging.getLogger(__name__)

_SIGNALS = (signal.SIGINT, signal.SIGTERM)


class RunPhase(str, Enum):
    RUNNING = "running"
    DRAINING = "draining"
    COMPLETED = "completed"
    INTERRUPTED = "interrupted"


def become_group_leader() -> bool:
    """Put this process in a process group of its own.

    Returns whether it leads its group afterwards. Session leaders cannot
    move and already lead their group.
    """
    if os.getpgrp() != os.getpid():
        try:
            os.setpgid(0, 0)
        except PermissionError:
            pass
    return os.getpgrp() == os.getpid()


class Scheduler:
    """Launches one job process per target under the MAXPROC ceiling."""

    def __init__(self, config: Config, storage: Storage):
        self.config = config
        self.storage = storage
        self.state = RunState()
        self.phase = RunPhase.RUNNING
        self.exit_code: Optional[int] = None
        self.pgid = os.getpgrp()
        self.processes: Dict[int, multiprocessing.Process] = {}
        self.targets: Dict[int, Target] = {}
        self.reported: Set[int] = set()
        self.gated_pids: Set[int] = set()
        self.total = 0
        self._ctx = multiprocessing.get_context("fork")
        self._previous_handlers = {}
        self._start_time = time.monotonic()

    # signal handling

    def _handle_signal(self, signum, frame):
        raise RunInterrupted(signum)

    def install_signal_handlers(self) -> None:
        for sig in _SIGNALS:
            self._previous_handlers[sig] = signal.signal(sig, self._handle_signal)

    def _ignore_signals(self) -> None:
        for sig in _SIGNALS:
            signal.signal(sig, signal.SIG_IGN)

    def _restore_signals(self) -> None:
        for sig, handler in self._previous_handlers.items():
            signal.signal(sig, handler)

    # concurrency gate

    def live_jobs(self) -> int:
        """Running gated job processes that belong to our process group."""
        count = 0
        for child in psutil.Process().children():
            if child.pid not in self.gated_pids:
                continue
            try:
                if child.status() == psutil.STATUS_ZOMBIE:
                    continue
                if os.getpgid(child.pid) != self.pgid:
                    continue
            except (psutil.NoSuchProcess, ProcessLookupError):
                continue
            count += 1
        return count

    def admit(self) -> None:
        """Block until a gated job may start."""
        while True:
            self.drain()
            if self.live_jobs() < self.config.maxproc:
                return
            time.sleep(self.config.sleepdelay)

    # aggregation

    def drain(self) -> None:
        """Pass job error lines through and fold finished jobs into the tallies."""
        for line in self.storage.drain_errors():
            logger.info(line)
        for record in self.storage.drain_completions():
            self.state.fold(record)
            self.reported.add(record.index)
            logger.info(record.message)
        # reap finished job processes
        multiprocessing.active_children()

    def account_for_lost_jobs(self) -> None:
        """Record a failure for every finished job process that never reported."""
        for index, process in sorted(self.processes.items()):
            if index in self.reported or process.is_alive():
                continue
            status = exit_status(process.exitcode) or 1
            target = self.targets[index]
            self.storage.record_status(status)
            record = CompletionRecord(
                index=index,
                path=target.display_path,
                status=status,
                classification=Classification.from_status(status),
                elapsed=0,
                message=(f"job[{index}] backup for {target.display_path} ended without "
                         f"reporting a result - return code: {status}"),
            )
            self.state.fold(record)
            self.reported.add(index)
            logger.error(record.message)

    # launching

    def launch(self, target: Target) -> Job:
        job = Job(index=target.index, target=target)
        process = self._ctx.Process(
            target=run_job_process,
            args=(self.config, self.storage, job),
            name=f"mdsm-job-{job.index}",
        )
        process.start()
        self.processes[job.index] = process
        self.targets[job.index] = target
        if not target.exempt:
            self.gated_pids.add(process.pid)
        job.pid = process.pid
        return job

    def join(self) -> None:
        """Wait for every launched job to finish."""
        for index, process in sorted(self.processes.items()):
            if process.is_alive():
                logger.info("waiting for pid: %d", process.pid)
                process.join()
            self.drain()

    def run(self, exempt: List[Target], queued: List[Target]) -> int:
        """Run every target and return the process exit status."""
        self.total = len(exempt) + len(queued)
        self.install_signal_handlers()
        try:
            self._start_time = time.monotonic()
            if exempt:
                logger.info("top level directories found: %d", len(exempt))
                for target in exempt:
                    job = self.launch(target)
                    logger.info("job[%d] backup started for top level directory %s as pid: %d",
                                job.index, target.display_path, job.pid)
                logger.info("")

            logger.info("generating job list:")
            for target in queued:
                logger.info("job[%d] will backup : %s", target.index, target.display_path)
            logger.info("")
            logger.info("starting incremental backup jobs for %d filesystems using %d threads.",
                        self.total, self.config.maxproc)
            logger.info("")

            for target in queued:
                self.admit()
                job = self.launch(target)
                logger.info("job[%d] backup started for %s as pid: %d",
                            job.index, target.display_path, job.pid)

            self.phase = RunPhase.DRAINING
            self.join()
            self.drain()
            self.account_for_lost_jobs()
            self.state.completed = True
            self.phase = RunPhase.COMPLETED
        except RunInterrupted as e:
            self._ignore_signals()
            self.phase = RunPhase.INTERRUPTED
            logger.error("program received termination signal (%s)", signal.Signals(e.signum).name)
        finally:
            self.cleanup()
        return self.exit_code

    # lifecycle

    def reconcile(self) -> int:
        """Exit status for the current phase.

        A completed run exits with the highest job status. An interrupted run
        exits with the last durable highest status, or 255 when no job had
        finished or all finished jobs succeeded.
        """
        durable = self.storage.read_highest()
        if self.phase is RunPhase.COMPLETED:
            self.state.highest = max(self.state.highest, durable or 0)
            return self.state.highest
        if durable:
            self.state.highest = max(self.state.highest, durable)
            return durable
        return INTERRUPTED_STATUS

    def summary(self) -> None:
        logger.info("")
        logger.info("+" + "-" * 103 + "+")
        logger.info("|%s|", "B A C K U P       C O M P L E T E".center(103))
        logger.info("+" + "-" * 103 + "+")
        logger.info("")
        for classification in Classification:
            lines = self.state.lines[classification]
            if lines:
                logger.info("%s:", classification.value)
                for line in lines:
                    logger.info(line)
        logger.info("")
        logger.info("Jobs completed successfully: %d", self.state.tallies[Classification.SUCCESS])
        logger.info("Jobs completed with warnings: %d", self.state.tallies[Classification.WARNING])
        logger.info("Jobs completed with errors: %d", self.state.tallies[Classification.ERROR])
        logger.info("Jobs failed: %d", self.state.tallies[Classification.FAIL])

    def stop_process_group(self) -> None:
        """Terminate every process of our group, or our own job trees if we do not lead one."""
        if self.pgid == os.getpid():
            try:
                os.killpg(self.pgid, signal.SIGTERM)
            except ProcessLookupError:
                pass
        else:
            for process in self.processes.values():
                if process.is_alive():
                    kill_process_tree(process.pid)
        for process in self.processes.values():
            process.join(timeout=5)
            if process.is_alive():
                process.kill()
                process.join()

    def cleanup(self) -> None:
        """Exit path of every run, completed or not."""
        self._ignore_signals()
        try:
            self.exit_code = self.reconcile()
            logger.info("")
            if self.phase is RunPhase.COMPLETED:
                self.summary()
                duration = format_duration(time.monotonic() - self._start_time)
                logger.info("")
                logger.info("Backup of %d filesystems completed in %s with highest return code: %d",
                            self.total, duration, self.exit_code)
            else:
                logger.info("Backup cancelled.")
            logger.info("stopping process group [%d]", self.pgid)
            self.stop_process_group()
            logger.info("removing temporary files")
            self.storage.remove_transient()
        finally:
            self._restore_signals()
