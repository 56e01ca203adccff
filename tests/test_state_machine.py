import pytest

from core.state_machine import (
    PIPELINE,
    AnalysisStage,
    AnalysisStateMachine,
    InvalidTransitionError,
    StageTransition,
)


def test_full_pipeline_runs_forward():
    machine = AnalysisStateMachine()
    assert machine.current_stage == AnalysisStage.PENDING

    for stage in PIPELINE[1:]:
        machine.transition_to(stage)

    assert machine.current_stage == AnalysisStage.DONE
    assert machine.is_terminal_state()
    assert machine.to_dict()["stages"] == [s.value for s in PIPELINE[1:]]


def test_stages_cannot_be_skipped_or_repeated():
    machine = AnalysisStateMachine()
    with pytest.raises(InvalidTransitionError):
        machine.transition_to(AnalysisStage.BUILDING_PROMPT)

    machine.transition_to(AnalysisStage.FETCHING_CANDLES)
    with pytest.raises(InvalidTransitionError):
        machine.transition_to(AnalysisStage.FETCHING_CANDLES)
    with pytest.raises(InvalidTransitionError):
        machine.transition_to(AnalysisStage.PENDING)
    assert machine.current_stage == AnalysisStage.FETCHING_CANDLES


def test_any_working_stage_can_fail():
    for stage in PIPELINE[:-1]:
        assert StageTransition.is_valid_transition(stage, AnalysisStage.FAILED)

    machine = AnalysisStateMachine()
    machine.transition_to(AnalysisStage.FETCHING_CANDLES)
    machine.transition_to(AnalysisStage.COMPUTING_INDICATORS)
    machine.fail("boom")

    last = machine.get_last_transition()
    assert last.from_stage == AnalysisStage.COMPUTING_INDICATORS
    assert last.to_stage == AnalysisStage.FAILED
    assert last.reason == "boom"


def test_terminal_stages_have_no_exits():
    assert StageTransition.get_valid_next_stages(AnalysisStage.DONE) == set()
    assert StageTransition.get_valid_next_stages(AnalysisStage.FAILED) == set()

    machine = AnalysisStateMachine()
    machine.fail("early")
    assert not machine.can_transition_to(AnalysisStage.FETCHING_CANDLES)
    with pytest.raises(InvalidTransitionError):
        machine.fail("again")
