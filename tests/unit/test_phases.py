from __future__ import annotations

import pytest

from idynic.jobs.errors import InvalidPhaseTransition
from idynic.jobs.phases import OPPORTUNITY_JOB, RESUME_JOB, STORY_JOB, TAILOR_JOB, is_terminal, kind_for


def test_phase_sequences_per_job_type() -> None:
    assert RESUME_JOB.phases[:2] == ("validating", "parsing")
    assert "parsing" not in STORY_JOB.phases
    assert OPPORTUNITY_JOB.phases[-1] == "researching"
    assert TAILOR_JOB.phases == ("analyzing", "generating", "evaluating")


def test_history_prefix_check() -> None:
    assert STORY_JOB.is_prefix([])
    assert STORY_JOB.is_prefix(["validating", "extracting"])
    assert not STORY_JOB.is_prefix(["extracting"])
    assert not STORY_JOB.is_prefix(["validating", "embeddings"])


def test_phase_may_repeat_or_advance_but_not_regress() -> None:
    RESUME_JOB.check_transition(None, "validating")
    RESUME_JOB.check_transition("parsing", "parsing")
    RESUME_JOB.check_transition("parsing", "synthesis")

    with pytest.raises(InvalidPhaseTransition):
        RESUME_JOB.check_transition("synthesis", "extracting")


def test_phase_outside_sequence_is_rejected() -> None:
    with pytest.raises(InvalidPhaseTransition):
        STORY_JOB.check_transition("validating", "parsing")


def test_kind_lookup_and_terminal_statuses() -> None:
    assert kind_for("tailor") is TAILOR_JOB
    with pytest.raises(ValueError):
        kind_for("podcast")

    assert is_terminal("completed")
    assert is_terminal("failed")
    assert is_terminal("duplicate")
    assert not is_terminal("processing")
    assert not is_terminal("pending")
