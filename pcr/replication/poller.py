"""
Convergence Poller

Bounded sleep-and-recheck loop used for every wait in the playground:
replication start, cutover readiness, cluster init, node restarts.

Each iteration runs a probe, extracts a state token from its text output,
and checks it against the target. A match returns immediately; running out
of iterations returns a timed-out outcome and leaves the decision (abort or
warn) to the caller through a TimeoutPolicy.
"""

import logging
import re
import threading
import time
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Iterable, Optional

from pcr.exceptions import ConvergenceTimeout, PollCancelled
from pcr.metrics import METRICS

logger = logging.getLogger(__name__)

UNKNOWN = "unknown"

LINK_STATUS_TOKENS = ("replicating", "initializing", "paused", "error", "offline", "stopped", "scan")
RESTART_STATUS_TOKENS = ("replicating", "initializing", "scan")
RESTART_DATA_STATE_TOKENS = ("ready", "initializing", "replicating", "offline", "error")
DATA_STATE_TOKENS = ("add", "ready", "initializing", "replicating", "offline", "error")
CUTOVER_TOKENS = ("ready", "replicating", "initializing", "paused", "error", "offline", "stopped")


def search_token(text: Optional[str], vocabulary: Iterable[str]) -> str:
    """Leftmost case-insensitive occurrence of any vocabulary word, else ``unknown``."""
    if not text:
        return UNKNOWN
    pattern = "|".join(re.escape(word) for word in vocabulary)
    match = re.search(pattern, text, re.IGNORECASE)
    return match.group(0).lower() if match else UNKNOWN


def field_token(text: Optional[str], vocabulary: Iterable[str]) -> str:
    """Vocabulary word present as a whole tab-separated field, else ``unknown``.

    Words earlier in ``vocabulary`` win when several are present.
    """
    if not text:
        return UNKNOWN
    fields = {
        value.strip().lower()
        for line in text.splitlines()
        for value in line.split("\t")
    }
    for word in vocabulary:
        if word.lower() in fields:
            return word.lower()
    return UNKNOWN


class TimeoutPolicy(Enum):
    STRICT = "strict"    # timeout aborts the operation
    LENIENT = "lenient"  # timeout is logged and the operation continues


@dataclass
class PollOutcome:
    converged: bool
    iterations: int
    last_token: Any = UNKNOWN
    last_output: Any = None

    @property
    def timed_out(self) -> bool:
        return not self.converged


class ConvergencePoller:
    """
    Generic poll loop.

    ``cancel`` is checked before every probe and used for the wait between
    iterations, so an operator interrupt (or another thread) can stop a long
    wait promptly.
    """

    def __init__(self, sleep: Callable[[float], None] = time.sleep,
                 cancel: Optional[threading.Event] = None):
        self.sleep = sleep
        self.cancel = cancel

    def wait(self, interval: float):
        """Sleep between iterations; raises PollCancelled if cancelled meanwhile."""
        if self.cancel is not None:
            if self.cancel.wait(interval):
                raise PollCancelled("Convergence wait cancelled")
        else:
            self.sleep(interval)

    def poll(
        self,
        probe: Callable[[], Any],
        extract: Callable[[Any], Any],
        is_target: Callable[[Any], bool],
        max_iters: int,
        interval: float,
        label: str = "poll",
    ) -> PollOutcome:
        started = time.monotonic()
        token, output = UNKNOWN, None
        outcome = None
        for i in range(1, max_iters + 1):
            if self.cancel is not None and self.cancel.is_set():
                raise PollCancelled(f"{label}: cancelled before iteration {i}")
            output = probe()
            token = extract(output)
            METRICS["poll_iterations"].labels(label=label).inc()
            logger.info("[poll %d/%d] %s token=%s", i, max_iters, label, token)
            if is_target(token):
                outcome = PollOutcome(True, i, token, output)
                break
            if i < max_iters:
                self.wait(interval)
        if outcome is None:
            outcome = PollOutcome(False, max_iters, token, output)
        METRICS["poll_outcomes"].labels(
            label=label, outcome="converged" if outcome.converged else "timed_out"
        ).inc()
        METRICS["poll_duration"].observe(time.monotonic() - started)
        return outcome


def enforce(outcome: PollOutcome, policy: TimeoutPolicy, what: str) -> PollOutcome:
    """Apply ``policy`` to a finished poll: raise on strict timeout, warn on lenient."""
    if outcome.converged:
        return outcome
    message = f"Timed out waiting for {what} (last token: {outcome.last_token})"
    if policy is TimeoutPolicy.STRICT:
        raise ConvergenceTimeout(message, outcome)
    logger.warning("WARNING: %s. Continuing.", message)
    return outcome
