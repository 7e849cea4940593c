"""Data models for targets, jobs, run state and configuration."""

import re
from datetime import datetime
from enum import Enum
from typing import Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from .durations import parse_duration

TIMEOUT_STATUS = 124  # same as coreutils timeout(1)
NOT_EXECUTABLE_STATUS = 127
INTERRUPTED_STATUS = 255


class Classification(str, Enum):
    """Outcome of a job, derived from the agent exit status."""
    SUCCESS = "success"
    WARNING = "warning"
    ERROR = "error"
    FAIL = "fail"

    @classmethod
    def from_status(cls, status: int) -> "Classification":
        if status == 0:
            return cls.SUCCESS
        if status == 4:
            return cls.WARNING
        if status == 8:
            return cls.ERROR
        return cls.FAIL


class Target(BaseModel):
    """A path to back up."""
    model_config = ConfigDict(frozen=True)

    path: str
    recurse: bool = True
    index: int = 0

    @property
    def exempt(self) -> bool:
        """Top level LargeFS directories are launched outside the gate."""
        return not self.recurse

    @property
    def display_path(self) -> str:
        return self.path.rstrip("/") + "/"

    @property
    def subdir_flag(self) -> str:
        return "-subdir=yes" if self.recurse else "-subdir=no"


class Job(BaseModel):
    """One execution of the backup agent against a target."""
    index: int
    target: Target
    pid: Optional[int] = None
    started_at: datetime = Field(default_factory=datetime.now)
    finished_at: Optional[datetime] = None
    status: Optional[int] = None
    classification: Optional[Classification] = None
    timed_out: bool = False
    error_lines: List[str] = Field(default_factory=list)

    @property
    def elapsed(self) -> float:
        end = self.finished_at or datetime.now()
        return (end - self.started_at).total_seconds()

    def finalize(self, status: int) -> None:
        if self.status is not None:
            raise ValueError(f"job[{self.index}] already finalized")
        self.status = status
        self.classification = Classification.from_status(status)
        self.finished_at = datetime.now()


class CompletionRecord(BaseModel):
    """Line appended to the completion stream when a job finishes."""
    index: int
    path: str
    status: int
    classification: Classification
    elapsed: int
    message: str


class RunState(BaseModel):
    """Aggregate of every completion record drained so far."""
    highest: int = 0
    tallies: Dict[Classification, int] = Field(
        default_factory=lambda: {c: 0 for c in Classification}
    )
    lines: Dict[Classification, List[str]] = Field(
        default_factory=lambda: {c: [] for c in Classification}
    )
    completed: bool = False

    def fold(self, record: CompletionRecord) -> None:
        self.highest = max(self.highest, record.status)
        self.tallies[record.classification] += 1
        if record.classification is not Classification.SUCCESS:
            self.lines[record.classification].append(record.message)

    @property
    def finished(self) -> int:
        return sum(self.tallies.values())


class Config(BaseSettings):
    """Scheduler configuration.

    Values come from the key=value configuration file; any of them may also
    be supplied through an ``MDSM_<NAME>`` environment variable.
    """
    model_config = SettingsConfigDict(env_prefix="MDSM_", extra="ignore")

    maxproc: int
    largefs: List[str] = Field(default_factory=list)
    inclregx: str = "."
    exclregx: Optional[str] = None
    sleepdelay: float = Field(default=15.0, gt=0)
    timeout: float = 23 * 3600.0
    dsmcpath: str = "/usr/bin/dsmc"
    toplogdir: str = "logs/"
    logfile: str = "mdsm.log"
    logret: int = Field(default=14, ge=0)
    tsmerrmask: str = r"AN[SRE][1-9][1-9][1-9][1-9][EW]"
    tsmignoremask: Optional[str] = "ANS1228E"
    verbose: bool = True

    @field_validator("maxproc")
    @classmethod
    def _check_maxproc(cls, value: int) -> int:
        if value <= 1:
            raise ValueError("MAXPROC unset or invalid")
        return value

    @field_validator("largefs")
    @classmethod
    def _drop_empty(cls, value: List[str]) -> List[str]:
        return [v for v in value if v.strip()]

    @field_validator("inclregx", "exclregx", "tsmerrmask", "tsmignoremask")
    @classmethod
    def _check_regex(cls, value: Optional[str]) -> Optional[str]:
        if value is not None:
            try:
                re.compile(value)
            except re.error as e:
                raise ValueError(f"invalid regular expression {value!r}: {e}")
        return value

    @field_validator("timeout", mode="before")
    @classmethod
    def _parse_timeout(cls, value):
        return parse_duration(value)

    @field_validator("logret", mode="before")
    @classmethod
    def _parse_logret(cls, value):
        # find(1) style "+14"
        if isinstance(value, str):
            value = value.strip().lstrip("+")
        return value

    @field_validator("toplogdir")
    @classmethod
    def _check_toplogdir(cls, value: str) -> str:
        if value.rstrip("/") == "":
            raise ValueError("Log directory cannot be /")
        return value

    @field_validator("logfile")
    @classmethod
    def _check_logfile(cls, value: str) -> str:
        if not value or "/" in value:
            raise ValueError(f"LOGFILE must be a plain file name: {value!r}")
        return value

    @property
    def largefs_mode(self) -> bool:
        return bool(self.largefs)

    @property
    def mode(self) -> str:
        return "largeFS" if self.largefs_mode else "HighPerformance"
