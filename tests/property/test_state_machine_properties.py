# tests/property/test_state_machine_properties.py
"""Property-based tests for the publish transaction state machine.

Invariants checked across arbitrary transition sequences:
1. state always equals the last history entry's to_state
2. history only grows, by exactly one entry per applied transition
3. a rejected transition changes nothing
4. terminal states are absorbing
5. verify_history finds no problems
"""

from dataclasses import replace

from hypothesis import given
from hypothesis import strategies as st
from hypothesis.stateful import RuleBasedStateMachine, invariant, rule

from labflow.contracts.enums import TransactionState
from labflow.publishing.state_machine import (
    ALLOWED_TRANSITIONS,
    TERMINAL_STATES,
    can_transition,
    create_draft,
    try_transition,
    verify_history,
)

states = st.sampled_from(list(TransactionState))


class TransactionStateMachine(RuleBasedStateMachine):
    """Fires random target states at one transaction."""

    def __init__(self) -> None:
        super().__init__()
        self.tx = create_draft(actor="prop")
        self.applied = 0

    @rule(to_state=states)
    def attempt(self, to_state: TransactionState) -> None:
        before_state = self.tx.state
        before_history = list(self.tx.state_history)
        allowed = can_transition(before_state, to_state)

        result = try_transition(self.tx, to_state, "prop")

        assert result == allowed
        if result:
            self.applied += 1
            assert self.tx.state_history[:-1] == before_history
            assert self.tx.state_history[-1].from_state == before_state
        else:
            assert self.tx.state == before_state
            assert self.tx.state_history == before_history

    @rule()
    def follow_an_allowed_edge(self) -> None:
        targets = sorted(ALLOWED_TRANSITIONS[self.tx.state])
        if targets:
            assert try_transition(self.tx, targets[0], "prop")
            self.applied += 1

    @invariant()
    def state_matches_history(self) -> None:
        assert self.tx.state == self.tx.state_history[-1].to_state

    @invariant()
    def history_length(self) -> None:
        assert len(self.tx.state_history) == self.applied + 1

    @invariant()
    def history_verifies(self) -> None:
        assert verify_history(self.tx) == []


TestTransactionStateMachine = TransactionStateMachine.TestCase


class TestTransitionProperties:
    @given(source=states, target=states)
    def test_can_transition_matches_table(self, source: TransactionState, target: TransactionState) -> None:
        assert can_transition(source, target) == (target in ALLOWED_TRANSITIONS[source])

    @given(terminal=st.sampled_from(sorted(TERMINAL_STATES)), target=states)
    def test_terminal_states_absorb(self, terminal: TransactionState, target: TransactionState) -> None:
        tx = replace(create_draft(), state=terminal)
        assert not try_transition(tx, target)

    @given(path=st.lists(states, max_size=30))
    def test_random_paths_keep_history_consistent(self, path: list[TransactionState]) -> None:
        tx = create_draft()
        for target in path:
            try_transition(tx, target)
        assert tx.state == tx.state_history[-1].to_state
        assert all(tx.state_history[i].from_state == tx.state_history[i - 1].to_state for i in range(1, len(tx.state_history)))
