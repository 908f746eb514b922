"""
Tests for the workflow table value objects and the declared
disbursement workflow.
"""

import pytest

from disbursement_kernel.domain.routing import DISBURSEMENT_WORKFLOW
from disbursement_kernel.domain.types import TERMINAL_STATUSES, RequestStatus, Role
from disbursement_kernel.domain.workflow import Guard, Transition, Workflow


def _workflow(*transitions, **overrides):
    kwargs = dict(
        name="test",
        description="test workflow",
        initial_state="open",
        states=("open", "review", "closed"),
        transitions=transitions,
        terminal_states=("closed",),
    )
    kwargs.update(overrides)
    return Workflow(**kwargs)


class TestWorkflowValidation:
    """Workflow.__post_init__ rejects malformed tables."""

    def test_valid_table_accepted(self):
        wf = _workflow(
            Transition("open", "review", "APPROVE", ("Manager",), ("Finance",)),
            Transition("review", "closed", "APPROVE", ("Finance",)),
        )
        assert len(wf.transitions) == 2

    def test_unknown_initial_state(self):
        with pytest.raises(ValueError, match="initial state"):
            _workflow(initial_state="missing")

    def test_unknown_target_state(self):
        with pytest.raises(ValueError, match="unknown state 'nowhere'"):
            _workflow(Transition("open", "nowhere", "APPROVE", ("Manager",), ("Finance",)))

    def test_terminal_state_with_outgoing_transition(self):
        with pytest.raises(ValueError, match="terminal state 'closed'"):
            _workflow(Transition("closed", "open", "REOPEN", ("CEO",), ("Manager",)))

    def test_terminal_transition_must_route_to_nobody(self):
        with pytest.raises(ValueError, match="route to nobody"):
            _workflow(Transition("review", "closed", "APPROVE", ("Finance",), ("CEO",)))

    def test_non_terminal_transition_must_route_somewhere(self):
        with pytest.raises(ValueError, match="route to nobody"):
            _workflow(Transition("open", "review", "APPROVE", ("Manager",)))


class TestTransitionsFrom:

    def test_declared_order_preserved(self):
        first = Guard("first", "first guard")
        second = Guard("second", "second guard")
        wf = _workflow(
            Transition("open", "review", "APPROVE", ("Manager",), ("Finance",), guard=first),
            Transition("open", "closed", "REJECT", ("Manager",)),
            Transition("open", "review", "APPROVE", ("Manager",), ("CEO",), guard=second),
        )
        approve = wf.transitions_from("open", "APPROVE")
        assert [t.guard for t in approve] == [first, second]
        assert len(wf.transitions_from("open")) == 3

    def test_no_transitions(self):
        wf = _workflow()
        assert wf.transitions_from("open") == ()


class TestDisbursementWorkflow:
    """Shape of the declared disbursement table."""

    def test_terminal_states_have_no_outgoing_rules(self):
        for status in TERMINAL_STATUSES:
            assert DISBURSEMENT_WORKFLOW.transitions_from(status.value) == ()

    def test_every_status_is_declared(self):
        assert set(DISBURSEMENT_WORKFLOW.states) == {s.value for s in RequestStatus}

    def test_reject_always_routes_to_nobody(self):
        rejects = [t for t in DISBURSEMENT_WORKFLOW.transitions if t.action == "REJECT"]
        assert rejects
        for t in rejects:
            assert t.to_state == RequestStatus.REJECTED.value
            assert t.next_action_by == ()

    def test_only_liquidation_approval_settles_an_advance(self):
        settling = [t for t in DISBURSEMENT_WORKFLOW.transitions if t.liquidates_advance]
        assert len(settling) == 1
        assert settling[0].from_state == RequestStatus.PENDING_FINANCE.value
        assert settling[0].actor_roles == (Role.FINANCE.value,)

    def test_no_rule_lets_an_employee_act(self):
        for t in DISBURSEMENT_WORKFLOW.transitions:
            assert Role.EMPLOYEE.value not in t.actor_roles
