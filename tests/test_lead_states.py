"""Status model tests."""

from lead_dispatch.core.lead_states import (
    DISTRIBUTABLE_STATUSES,
    FINAL_STATUSES,
    STATUS_INFO,
    UNTREATED_STATUSES,
    LeadStatus,
    status_values,
)


class TestStatusSets:

    def test_untreated_statuses(self):
        assert {s.value for s in UNTREATED_STATUSES} == {"pending_call", "email_confirmed", "callback_pending"}

    def test_distributable_is_part_of_untreated(self):
        assert DISTRIBUTABLE_STATUSES <= UNTREATED_STATUSES

    def test_is_untreated_matches_the_set(self):
        assert {s for s in LeadStatus if s.is_untreated} == set(UNTREATED_STATUSES)

    def test_final_statuses_are_not_active(self):
        for status in FINAL_STATUSES:
            assert status.is_final
            assert not status.is_active

    def test_confirmed_and_rejected_are_final(self):
        assert LeadStatus.CONFIRMED.is_final
        assert LeadStatus.REJECTED.is_final
        assert not LeadStatus.CALLBACK_PENDING.is_final
        assert not LeadStatus.QUOTE_SENT.is_final

    def test_engine_statuses_cannot_be_set_after_call(self):
        assert not LeadStatus.PENDING_EMAIL.can_be_set_after_call
        assert not LeadStatus.EMAIL_CONFIRMED.can_be_set_after_call
        assert not LeadStatus.PENDING_CALL.can_be_set_after_call

    def test_call_outcomes_can_be_set_after_call(self):
        for status in ("no_answer", "busy", "wrong_number", "not_interested",
                       "callback_pending", "quote_sent", "confirmed", "rejected"):
            assert LeadStatus(status).can_be_set_after_call


class TestStatusMetadata:

    def test_every_status_has_info(self):
        assert set(STATUS_INFO) == set(LeadStatus)

    def test_display_orders_are_unique(self):
        orders = [status.display_order for status in LeadStatus]
        assert len(orders) == len(set(orders))

    def test_parse(self):
        assert LeadStatus.parse("busy") is LeadStatus.BUSY
        assert LeadStatus.parse(LeadStatus.BUSY) is LeadStatus.BUSY
        assert LeadStatus.parse("archived") is None
        assert LeadStatus.parse(None) is None

    def test_status_values_follow_display_order(self):
        assert status_values(UNTREATED_STATUSES) == ["email_confirmed", "pending_call", "callback_pending"]
