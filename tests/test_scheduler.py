"""Tests for slot generation."""

from datetime import datetime, time, timedelta

import pytest
from conftest import NOW, TODAY, TOMORROW

from clinic_booking.config import SchedulingPolicy
from clinic_booking.errors import NotFound
from clinic_booking.models import BOOKING_CANCELLED, BOOKING_CONFIRMED, BOOKING_PENDING, Booking
from clinic_booking.schedule_store import ScheduleStore, ScheduleWindow
from clinic_booking.scheduler import candidate_slots, generate_slots
from clinic_booking.service_catalog import ServiceCatalog


def starts(slots):
    return [s.start.strftime("%H:%M") for s in slots]


def add_booking(db, service_id, day, start, end, status=BOOKING_PENDING, ref="BK-TEST"):
    db.add(
        Booking(
            reference=ref,
            service_id=service_id,
            booking_date=day,
            start_time=start,
            end_time=end,
            patient_email="someone@example.com",
            patient_first_name="Some",
            patient_last_name="One",
            status=status,
        )
    )
    db.commit()


class TestCandidateSlots:
    def test_partitions_window_by_duration(self):
        window = ScheduleWindow(time(9, 0), time(12, 0))
        slots = candidate_slots(window, 30, 30)
        assert starts(slots) == ["09:00", "09:30", "10:00", "10:30", "11:00", "11:30"]
        assert slots[-1].end == time(12, 0)

    def test_last_slot_must_fit_before_close(self):
        window = ScheduleWindow(time(9, 0), time(10, 45))
        assert starts(candidate_slots(window, 30, 30)) == ["09:00", "09:30", "10:00"]

    def test_interval_can_differ_from_duration(self):
        window = ScheduleWindow(time(9, 0), time(10, 0))
        slots = candidate_slots(window, 30, 15)
        assert starts(slots) == ["09:00", "09:15", "09:30"]
        assert slots[1].end == time(9, 45)

    def test_duration_longer_than_window_gives_nothing(self):
        window = ScheduleWindow(time(9, 0), time(9, 45))
        assert candidate_slots(window, 60, 60) == []


class TestGenerateSlots:
    def test_open_day_without_bookings(self, db, clinic, policy):
        slots = generate_slots(db, TOMORROW, clinic["consultation"], policy, now=NOW)
        assert starts(slots) == ["09:00", "09:30", "10:00", "10:30", "11:00", "11:30"]

    def test_sixty_minute_service(self, db, clinic, policy):
        slots = generate_slots(db, TOMORROW, clinic["checkup"], policy, now=NOW)
        assert starts(slots) == ["09:00", "10:00", "11:00"]

    def test_unknown_service_is_not_found(self, db, clinic, policy):
        with pytest.raises(NotFound):
            generate_slots(db, TOMORROW, 9999, policy, now=NOW)

    def test_inactive_service_is_not_found(self, db, clinic, policy):
        ServiceCatalog(db).update(clinic["consultation"], is_active=False)
        db.commit()
        with pytest.raises(NotFound):
            generate_slots(db, TOMORROW, clinic["consultation"], policy, now=NOW)

    def test_past_date_is_empty(self, db, clinic, policy):
        assert generate_slots(db, TODAY - timedelta(days=1), clinic["consultation"], policy, now=NOW) == []

    def test_day_without_rules_is_empty(self, db, clinic, policy):
        store = ScheduleStore(db)
        for rule in store.list_rules():
            if rule.weekday == 2:  # Tuesday
                store.delete_rule(rule.id)
        db.commit()
        assert generate_slots(db, TOMORROW, clinic["consultation"], policy, now=NOW) == []

    def test_closed_override_wins_over_weekday(self, db, clinic, policy):
        ScheduleStore(db).add_rule(specific_date=TOMORROW, is_closed=True)
        db.commit()
        assert generate_slots(db, TOMORROW, clinic["consultation"], policy, now=NOW) == []

    def test_special_hours_override(self, db, clinic, policy):
        ScheduleStore(db).add_rule(specific_date=TOMORROW, open_time=time(14, 0), close_time=time(15, 0))
        db.commit()
        slots = generate_slots(db, TOMORROW, clinic["consultation"], policy, now=NOW)
        assert starts(slots) == ["14:00", "14:30"]

    def test_split_windows_are_merged_in_order(self, db, clinic, policy):
        store = ScheduleStore(db)
        store.add_rule(specific_date=TOMORROW, open_time=time(13, 0), close_time=time(14, 0))
        store.add_rule(specific_date=TOMORROW, open_time=time(8, 0), close_time=time(9, 0))
        db.commit()
        slots = generate_slots(db, TOMORROW, clinic["consultation"], policy, now=NOW)
        assert starts(slots) == ["08:00", "08:30", "13:00", "13:30"]

    def test_rule_interval_override(self, db, clinic, policy):
        ScheduleStore(db).add_rule(
            specific_date=TOMORROW, open_time=time(9, 0), close_time=time(10, 0), slot_interval_minutes=15
        )
        db.commit()
        slots = generate_slots(db, TOMORROW, clinic["consultation"], policy, now=NOW)
        assert starts(slots) == ["09:00", "09:15", "09:30"]

    def test_policy_interval_applies_when_rule_has_none(self, db, clinic):
        policy = SchedulingPolicy(timezone="UTC", lead_time_minutes=60, slot_interval_minutes=60)
        slots = generate_slots(db, TOMORROW, clinic["consultation"], policy, now=NOW)
        assert starts(slots) == ["09:00", "10:00", "11:00"]

    def test_partial_overlap_removes_neighbouring_slots(self, db, clinic, policy):
        add_booking(db, clinic["consultation"], TOMORROW, time(10, 15), time(10, 45))
        slots = generate_slots(db, TOMORROW, clinic["consultation"], policy, now=NOW)
        assert starts(slots) == ["09:00", "09:30", "11:00", "11:30"]

    def test_confirmed_bookings_block_and_cancelled_do_not(self, db, clinic, policy):
        add_booking(db, clinic["consultation"], TOMORROW, time(9, 0), time(9, 30), BOOKING_CONFIRMED, "BK-1")
        add_booking(db, clinic["consultation"], TOMORROW, time(11, 0), time(11, 30), BOOKING_CANCELLED, "BK-2")
        slots = generate_slots(db, TOMORROW, clinic["consultation"], policy, now=NOW)
        assert starts(slots) == ["09:30", "10:00", "10:30", "11:00", "11:30"]

    def test_bookings_on_other_days_are_ignored(self, db, clinic, policy):
        add_booking(db, clinic["consultation"], TOMORROW + timedelta(days=1), time(9, 0), time(12, 0))
        assert len(generate_slots(db, TOMORROW, clinic["consultation"], policy, now=NOW)) == 6

    def test_fully_booked_day_is_empty_not_an_error(self, db, clinic, policy):
        add_booking(db, clinic["checkup"], TOMORROW, time(9, 0), time(12, 0))
        assert generate_slots(db, TOMORROW, clinic["consultation"], policy, now=NOW) == []

    def test_generated_slots_never_overlap_active_bookings(self, db, clinic, policy):
        add_booking(db, clinic["consultation"], TOMORROW, time(9, 30), time(10, 0), ref="BK-1")
        add_booking(db, clinic["checkup"], TOMORROW, time(10, 45), time(11, 45), ref="BK-2")
        for service_id in clinic.values():
            for slot in generate_slots(db, TOMORROW, service_id, policy, now=NOW):
                for start, end in [(time(9, 30), time(10, 0)), (time(10, 45), time(11, 45))]:
                    assert not (slot.start < end and start < slot.end)


class TestLeadTime:
    def test_same_day_slot_inside_lead_time_is_excluded(self, db, clinic, policy):
        slots = generate_slots(db, TODAY, clinic["consultation"], policy, now=NOW)
        assert "09:30" not in starts(slots)
        assert starts(slots) == ["10:00", "10:30", "11:00", "11:30"]

    def test_slot_exactly_at_lead_time_is_included(self, db, clinic, policy):
        slots = generate_slots(db, TODAY, clinic["consultation"], policy, now=NOW)
        assert starts(slots)[0] == "10:00"

    def test_one_minute_more_lead_time_excludes_boundary(self, db, clinic):
        policy = SchedulingPolicy(timezone="UTC", lead_time_minutes=61)
        slots = generate_slots(db, TODAY, clinic["consultation"], policy, now=NOW)
        assert starts(slots)[0] == "10:30"

    def test_lead_time_does_not_touch_tomorrow(self, db, clinic, policy):
        late = datetime(2030, 1, 14, 22, 0)
        slots = generate_slots(db, TOMORROW, clinic["consultation"], policy, now=late)
        assert len(slots) == 6

    def test_after_close_today_is_empty(self, db, clinic, policy):
        evening = datetime(2030, 1, 14, 18, 0)
        assert generate_slots(db, TODAY, clinic["consultation"], policy, now=evening) == []
