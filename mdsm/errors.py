"""Exceptions that abort a scheduler run."""


class MdsmError(Exception):
    """Base class for fatal scheduler errors."""


class ConfigurationError(MdsmError):
    """Missing or invalid configuration, or an unusable log directory."""


class EnumerationError(MdsmError):
    """No eligible targets were found for backup."""


class RunInterrupted(MdsmError):
    """Raised in the coordinator when a termination signal arrives."""

    def __init__(self, signum: int):
        super().__init__(f"received signal {signum}")
        self.signum = signum
