"""Exceptions raised by the replication playground.

Resolution and execution failures carry the captured output so callers can
print the failing step together with what the database client said.
"""

from dataclasses import dataclass
from typing import Any, Dict, Optional


class PcrError(Exception):
    """Base exception for all playground errors."""

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}


class ResolutionError(PcrError):
    """A role has no running members, or the requested ordinal does not exist."""

    pass


class ExecutionError(PcrError):
    """A remote statement failed or the execution channel could not connect.

    Attributes:
        output: Captured stdout/stderr of the failed command
        exit_code: Exit status reported by the runtime (None if it never ran)
    """

    def __init__(self, message: str, output: str = "", exit_code: Optional[int] = None):
        super().__init__(message, {"output": output, "exit_code": exit_code})
        self.output = output
        self.exit_code = exit_code

    def __str__(self):
        if self.output:
            return f"{self.message}\n{self.output.strip()}"
        return self.message


class ConvergenceTimeout(PcrError):
    """The poller exhausted its iteration budget without reaching the target."""

    def __init__(self, message: str, outcome):
        super().__init__(message, {"last_token": outcome.last_token, "iterations": outcome.iterations})
        self.outcome = outcome


class PollCancelled(PcrError):
    """The operator cancelled a convergence wait."""

    pass


class FailoverPreconditionError(PcrError):
    """Failover was requested on a link that is not replicating."""

    pass


class UpgradeError(PcrError):
    """A rolling upgrade, finalize or rollback could not proceed."""

    pass


@dataclass
class StateInconsistency:
    """Breadcrumb flags disagree with what the clusters report.

    Reported as a warning during health checks; never raised and never
    corrected automatically.
    """

    key: str
    recorded: str
    observed: str
    message: str
