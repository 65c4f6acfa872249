from pcr.replication.poller import ConvergencePoller, PollOutcome, TimeoutPolicy
from pcr.replication.state_machine import (
    A_TO_B,
    B_TO_A,
    Direction,
    ReplicationStateMachine,
    ReplicationState,
    direction_for,
)

__all__ = [
    "A_TO_B",
    "B_TO_A",
    "ConvergencePoller",
    "Direction",
    "PollOutcome",
    "ReplicationState",
    "ReplicationStateMachine",
    "TimeoutPolicy",
    "direction_for",
]
