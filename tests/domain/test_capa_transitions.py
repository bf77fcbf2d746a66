"""The CAPA status transition table."""

import pytest
from hypothesis import given
from hypothesis import strategies as st

from quality_kernel.domain.capa import (
    CAPA_TRANSITIONS,
    CAPA_WORKFLOW,
    TERMINAL_CAPA_STATUSES,
    CAPADraft,
    CAPAStatus,
    is_allowed_transition,
)
from quality_kernel.exceptions import InvalidFieldValueError, MissingFieldError

S = CAPAStatus

EDGES = {
    (S.DRAFT, S.OPEN),
    (S.OPEN, S.IN_PROGRESS),
    (S.OPEN, S.CANCELLED),
    (S.IN_PROGRESS, S.PENDING_REVIEW),
    (S.IN_PROGRESS, S.UNDER_INVESTIGATION),
    (S.UNDER_INVESTIGATION, S.IMPLEMENTING),
    (S.IMPLEMENTING, S.PENDING_VERIFICATION),
    (S.PENDING_VERIFICATION, S.COMPLETED),
    (S.COMPLETED, S.VERIFIED),
    (S.VERIFIED, S.CLOSED),
    (S.PENDING_REVIEW, S.IMPLEMENTING),
    (S.PENDING_REVIEW, S.CANCELLED),
}

statuses = st.sampled_from(list(CAPAStatus))


class TestTransitionTable:

    def test_table_is_exactly_the_edge_set(self):
        declared = {
            (current, target)
            for current, targets in CAPA_TRANSITIONS.items()
            for target in targets
        }
        assert declared == EDGES

    @given(statuses, statuses)
    def test_allowed_iff_edge(self, current, target):
        assert is_allowed_transition(current, target) == ((current, target) in EDGES)

    @pytest.mark.parametrize("terminal", [S.CLOSED, S.CANCELLED])
    def test_terminal_states_have_no_exits(self, terminal):
        assert terminal in TERMINAL_CAPA_STATUSES
        assert CAPA_TRANSITIONS[terminal] == frozenset()

    def test_no_self_loops(self):
        assert all(not is_allowed_transition(s, s) for s in CAPAStatus)

    def test_workflow_starts_in_draft(self):
        assert CAPA_WORKFLOW.initial_state == "draft"


class TestCAPADraft:

    def test_defaults(self):
        draft = CAPADraft.from_payload({"title": "Fixture wear"})
        assert draft.status == S.DRAFT

    def test_title_required(self):
        with pytest.raises(MissingFieldError):
            CAPADraft.from_payload({"description": "no title"})

    def test_review_date_must_be_iso(self):
        with pytest.raises(InvalidFieldValueError):
            CAPADraft.from_payload({"title": "x", "scheduled_review_date": "next tuesday"})
