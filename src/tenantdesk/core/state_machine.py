from __future__ import annotations

from typing import Dict, List

from ..domain.reports import JobState

# Report job lifecycle; FAILED is reachable from every non-terminal state.
JOB_TRANSITIONS: Dict[JobState, List[JobState]] = {
    JobState.PENDING: [JobState.QUERYING, JobState.FAILED],
    JobState.QUERYING: [JobState.RENDERING, JobState.FAILED],
    JobState.RENDERING: [JobState.DELIVERING, JobState.FAILED],
    JobState.DELIVERING: [JobState.DONE, JobState.FAILED],
    JobState.DONE: [],
    JobState.FAILED: [],
}


class InvalidTransition(RuntimeError):
    pass


def is_valid_transition(current: JobState, target: JobState) -> bool:
    return target in JOB_TRANSITIONS.get(current, [])


def is_terminal(state: JobState) -> bool:
    return not JOB_TRANSITIONS.get(state)
