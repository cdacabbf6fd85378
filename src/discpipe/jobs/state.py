"""Job status values and the legal transitions between them."""

from enum import Enum

from discpipe.error_handling import InvalidTransitionError


class JobStatus(Enum):
    """Lifecycle status of a job. Values are stored verbatim in the database."""

    NONE = "none"
    ACTIVE = "active"
    RIPPING = "ripping"
    RIPPING_FAIL = "ripping_fail"
    TRANSCODING = "transcoding"
    TRANSCODING_FAIL = "transcoding_fail"
    SUCCESS = "success"
    FAIL = "fail"
    EJECTED = "ejected"

    @property
    def is_finished(self) -> bool:
        return self in FINISHED_STATES

    @property
    def is_active(self) -> bool:
        return not self.is_finished

    @property
    def is_ripping(self) -> bool:
        return self in (JobStatus.RIPPING, JobStatus.RIPPING_FAIL)

    @property
    def is_transcoding(self) -> bool:
        return self in (JobStatus.TRANSCODING, JobStatus.TRANSCODING_FAIL)


FINISHED_STATES = frozenset({JobStatus.SUCCESS, JobStatus.FAIL, JobStatus.EJECTED})

TRANSITIONS: dict[JobStatus, frozenset[JobStatus]] = {
    JobStatus.NONE: frozenset({JobStatus.ACTIVE}),
    JobStatus.ACTIVE: frozenset(
        {
            JobStatus.RIPPING,
            JobStatus.TRANSCODING,
            JobStatus.FAIL,
            JobStatus.EJECTED,
        },
    ),
    JobStatus.RIPPING: frozenset(
        {
            JobStatus.TRANSCODING,
            JobStatus.RIPPING_FAIL,
            JobStatus.SUCCESS,
            JobStatus.FAIL,
            JobStatus.EJECTED,
        },
    ),
    JobStatus.RIPPING_FAIL: frozenset(
        {JobStatus.RIPPING, JobStatus.FAIL, JobStatus.EJECTED},
    ),
    JobStatus.TRANSCODING: frozenset(
        {
            JobStatus.TRANSCODING_FAIL,
            JobStatus.SUCCESS,
            JobStatus.FAIL,
            JobStatus.EJECTED,
        },
    ),
    JobStatus.TRANSCODING_FAIL: frozenset(
        {JobStatus.TRANSCODING, JobStatus.FAIL, JobStatus.EJECTED},
    ),
    JobStatus.SUCCESS: frozenset(),
    JobStatus.FAIL: frozenset(),
    JobStatus.EJECTED: frozenset(),
}


def can_transition(current: JobStatus, target: JobStatus) -> bool:
    return current == target or target in TRANSITIONS[current]


def transition(current: JobStatus, target: JobStatus | str) -> JobStatus:
    """Return ``target`` if moving there from ``current`` is legal.

    Writing the current status again is accepted as a no-op. Anything else
    outside the table raises :class:`InvalidTransitionError`.
    """
    try:
        target = JobStatus(target)
    except ValueError as e:
        raise InvalidTransitionError(current.value, str(target)) from e

    if not can_transition(current, target):
        raise InvalidTransitionError(current.value, target.value)
    return target
