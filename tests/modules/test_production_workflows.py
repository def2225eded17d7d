"""Run and stage state machines."""

import pytest

from cogs_kernel.domain.workflow import Transition, Workflow
from cogs_modules.production import RUN_WORKFLOW, STAGE_WORKFLOW, RunStatus, StageStatus


class TestRunWorkflow:

    def test_states_match_run_status(self):
        assert set(RUN_WORKFLOW.states) == {s.value for s in RunStatus}
        assert RUN_WORKFLOW.initial_state == RunStatus.PLANNING.value

    @pytest.mark.parametrize("from_state, action, to_state", [
        ("planning", "start", "in_progress"),
        ("planning", "cancel", "cancelled"),
        ("in_progress", "complete", "completed"),
        ("in_progress", "cancel", "cancelled"),
    ])
    def test_declared_transitions(self, from_state, action, to_state):
        assert RUN_WORKFLOW.find_transition(from_state, action).to_state == to_state

    @pytest.mark.parametrize("from_state, action", [
        ("planning", "complete"),
        ("in_progress", "start"),
        ("completed", "cancel"),
        ("cancelled", "start"),
    ])
    def test_undeclared_transitions(self, from_state, action):
        assert RUN_WORKFLOW.find_transition(from_state, action) is None

    def test_terminal_states(self):
        assert RUN_WORKFLOW.is_terminal("completed")
        assert RUN_WORKFLOW.is_terminal("cancelled")
        assert not RUN_WORKFLOW.is_terminal("in_progress")

    def test_only_completion_posts(self):
        posting = [t.action for t in RUN_WORKFLOW.transitions if t.posts_to_ledger]
        assert posting == ["complete"]


class TestStageWorkflow:

    def test_states_match_stage_status(self):
        assert set(STAGE_WORKFLOW.states) == {s.value for s in StageStatus}

    def test_linear(self):
        assert STAGE_WORKFLOW.find_transition("pending", "start").to_state == "in_progress"
        assert STAGE_WORKFLOW.find_transition("in_progress", "complete").to_state == "completed"
        assert STAGE_WORKFLOW.find_transition("pending", "complete") is None


class TestWorkflowDefinition:

    def test_unknown_state_rejected(self):
        with pytest.raises(ValueError):
            Workflow(
                name="broken",
                description="",
                initial_state="a",
                states=("a",),
                transitions=(Transition("a", "b", action="go"),),
            )

    def test_terminal_state_cannot_have_exits(self):
        with pytest.raises(ValueError):
            Workflow(
                name="broken",
                description="",
                initial_state="a",
                states=("a", "b"),
                transitions=(Transition("b", "a", action="reopen"),),
                terminal_states=("b",),
            )
