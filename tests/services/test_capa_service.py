"""CAPAService: creation, the status state machine and actions."""

import re

import pytest

from quality_kernel.domain.capa import CAPAActionType, CAPADraft, CAPAStatus
from quality_kernel.exceptions import (
    CAPANotFoundError,
    InvalidCAPATransitionError,
    InvalidFieldValueError,
    MissingFieldError,
)

TEST_ACTOR = "qa.tester"

HAPPY_PATH = [
    CAPAStatus.OPEN,
    CAPAStatus.IN_PROGRESS,
    CAPAStatus.UNDER_INVESTIGATION,
    CAPAStatus.IMPLEMENTING,
    CAPAStatus.PENDING_VERIFICATION,
    CAPAStatus.COMPLETED,
    CAPAStatus.VERIFIED,
    CAPAStatus.CLOSED,
]


@pytest.fixture
def draft_capa(capa_service):
    return capa_service.create(CAPADraft(title="Fixture wear on line 3"), actor=TEST_ACTOR)


class TestCreate:

    def test_defaults(self, draft_capa):
        assert draft_capa.status == CAPAStatus.DRAFT
        assert re.fullmatch(r"CAPA-20250206-[0-9A-F]{6}", draft_capa.number)
        assert draft_capa.actions == ()

    def test_may_start_open(self, capa_service):
        capa = capa_service.create(
            CAPADraft(title="x", status=CAPAStatus.OPEN), actor=TEST_ACTOR,
        )
        assert capa.status == CAPAStatus.OPEN

    def test_may_not_start_mid_lifecycle(self, capa_service):
        with pytest.raises(InvalidFieldValueError):
            capa_service.create(
                CAPADraft(title="x", status=CAPAStatus.VERIFIED), actor=TEST_ACTOR,
            )
        assert capa_service.list() == []


class TestReads:

    def test_get_unknown(self, capa_service):
        with pytest.raises(CAPANotFoundError):
            capa_service.get("nope")

    def test_list_filter(self, capa_service, draft_capa, clock):
        clock.advance(60)
        opened = capa_service.create(
            CAPADraft(title="y", status=CAPAStatus.OPEN), actor=TEST_ACTOR,
        )
        assert [c.id for c in capa_service.list()] == [opened.id, draft_capa.id]
        assert [c.id for c in capa_service.list("draft")] == [draft_capa.id]

    def test_list_rejects_unknown_status(self, capa_service):
        with pytest.raises(InvalidFieldValueError):
            capa_service.list("archived")


class TestTransition:

    def test_full_lifecycle_records_each_step(self, capa_service, draft_capa):
        capa = draft_capa
        for status in HAPPY_PATH:
            capa = capa_service.transition(capa.id, status, TEST_ACTOR, comment="ok")

        assert capa.status == CAPAStatus.CLOSED
        assert len(capa.actions) == len(HAPPY_PATH)
        assert all(a.type == CAPAActionType.STATUS_CHANGE for a in capa.actions)
        assert capa.actions[0].description == "draft -> open"
        assert capa.actions[-1].description == "verified -> closed"
        assert capa.actions[0].comment == "ok"

    def test_status_strings_accepted(self, capa_service, draft_capa):
        assert capa_service.transition(draft_capa.id, "open", TEST_ACTOR).status == CAPAStatus.OPEN

    def test_skipping_a_state_is_rejected(self, capa_service, draft_capa):
        with pytest.raises(InvalidCAPATransitionError) as exc_info:
            capa_service.transition(draft_capa.id, CAPAStatus.IN_PROGRESS, TEST_ACTOR)
        assert (exc_info.value.from_state, exc_info.value.to_state) == ("draft", "in_progress")
        stored = capa_service.get(draft_capa.id)
        assert stored.status == CAPAStatus.DRAFT
        assert stored.actions == ()

    def test_unknown_status_is_a_transition_error(self, capa_service, draft_capa):
        with pytest.raises(InvalidCAPATransitionError):
            capa_service.transition(draft_capa.id, "archived", TEST_ACTOR)

    def test_cancelled_is_terminal(self, capa_service, draft_capa):
        capa_service.transition(draft_capa.id, "open", TEST_ACTOR)
        capa_service.transition(draft_capa.id, "cancelled", TEST_ACTOR)
        for status in CAPAStatus:
            with pytest.raises(InvalidCAPATransitionError):
                capa_service.transition(draft_capa.id, status, TEST_ACTOR)

    def test_rejection_is_logged(self, capa_service, draft_capa, captured_logs):
        with pytest.raises(InvalidCAPATransitionError):
            capa_service.transition(draft_capa.id, "closed", TEST_ACTOR)
        rejected = [r for r in captured_logs() if r["message"] == "capa_transition_rejected"]
        assert rejected[0]["capa_id"] == draft_capa.id
        assert rejected[0]["to_state"] == "closed"

    def test_unknown_capa(self, capa_service):
        with pytest.raises(CAPANotFoundError):
            capa_service.transition("nope", "open", TEST_ACTOR)


class TestActions:

    def test_add_corrective_action(self, capa_service, draft_capa):
        capa = capa_service.add_action(
            draft_capa.id, "corrective", "Replace worn locator pins", TEST_ACTOR,
        )
        assert capa.actions[-1].type == CAPAActionType.CORRECTIVE
        assert capa.actions[-1].status == "open"
        assert capa.status == CAPAStatus.DRAFT

    @pytest.mark.parametrize("action_type", ["status_change", "bogus"])
    def test_only_corrective_or_preventive(self, capa_service, draft_capa, action_type):
        with pytest.raises(InvalidFieldValueError):
            capa_service.add_action(draft_capa.id, action_type, "x", TEST_ACTOR)

    def test_description_required(self, capa_service, draft_capa):
        with pytest.raises(MissingFieldError):
            capa_service.add_action(draft_capa.id, "preventive", "  ", TEST_ACTOR)
