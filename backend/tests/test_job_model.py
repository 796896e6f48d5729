"""Property tests for job status transitions."""

import pytest
from hypothesis import given, settings, strategies as st

from hlspipe.errors import InvalidStatusTransition
from hlspipe.models.job import Job, JobStatus

RANK = {
    JobStatus.QUEUED: 0,
    JobStatus.PROCESSING: 1,
    JobStatus.READY: 2,
    JobStatus.FAILED: 2,
}


def new_job() -> Job:
    return Job(id="j", original_filename="a.mp4", mime="video/mp4", storage_base="/tmp")


class TestStatusTransitions:
    @given(steps=st.lists(st.sampled_from(list(JobStatus)), max_size=12))
    @settings(max_examples=200)
    def test_status_never_moves_backward(self, steps) -> None:
        """Whatever transitions are attempted, accepted ones only move forward."""
        job = new_job()
        history = [job.status]
        for status in steps:
            try:
                job.transition_to(status)
            except InvalidStatusTransition:
                continue
            history.append(job.status)

        assert all(RANK[a] <= RANK[b] for a, b in zip(history, history[1:]))
        if any(s.is_terminal for s in history):
            assert JobStatus.PROCESSING in history

    @pytest.mark.parametrize("terminal", [JobStatus.READY, JobStatus.FAILED])
    @pytest.mark.parametrize("target", list(JobStatus))
    def test_terminal_status_is_final(self, terminal, target):
        job = new_job()
        job.transition_to(JobStatus.PROCESSING)
        job.transition_to(terminal)
        with pytest.raises(InvalidStatusTransition):
            job.transition_to(target)

    def test_ready_requires_processing(self):
        with pytest.raises(InvalidStatusTransition):
            new_job().transition_to(JobStatus.READY)

    def test_fail_from_queued_passes_through_processing(self):
        job = new_job()
        job.fail("broken")
        assert job.status == JobStatus.FAILED
        assert job.error_message == "broken"

    def test_fail_after_ready_rejected(self):
        job = new_job()
        job.transition_to(JobStatus.PROCESSING)
        job.transition_to(JobStatus.READY)
        with pytest.raises(InvalidStatusTransition):
            job.fail("late")
        assert job.error_message is None
