import logging
from datetime import date, time
from typing import List, Optional

from sqlalchemy.orm import Session

from .errors import NotFound, ValidationError
from .models import ScheduleRule

logger = logging.getLogger(__name__)

RULE_FIELDS = (
    "weekday",
    "specific_date",
    "open_time",
    "close_time",
    "is_closed",
    "slot_interval_minutes",
    "is_active",
)


def weekday_of(day: date) -> int:
    """Weekday index with 0=Sunday .. 6=Saturday."""
    return day.isoweekday() % 7


class ScheduleWindow:
    __slots__ = ("open_time", "close_time", "slot_interval_minutes")

    def __init__(self, open_time: time, close_time: time, slot_interval_minutes: Optional[int] = None):
        self.open_time = open_time
        self.close_time = close_time
        self.slot_interval_minutes = slot_interval_minutes

    def __repr__(self):
        return f"ScheduleWindow({self.open_time:%H:%M}-{self.close_time:%H:%M})"


class ScheduleStore:
    """Clinic opening hours: recurring weekday windows plus per-date overrides."""

    def __init__(self, db: Session):
        self.db = db

    def effective_windows(self, day: date) -> List[ScheduleWindow]:
        """Opening windows that apply to ``day``, ordered by open time.

        Date-specific rules replace the weekday rules entirely; a closed
        override yields no windows at all.
        """
        overrides = (
            self.db.query(ScheduleRule)
            .filter(ScheduleRule.specific_date == day, ScheduleRule.is_active.is_(True))
            .all()
        )
        if overrides:
            if any(r.is_closed for r in overrides):
                return []
            rules = overrides
        else:
            rules = (
                self.db.query(ScheduleRule)
                .filter(
                    ScheduleRule.weekday == weekday_of(day),
                    ScheduleRule.specific_date.is_(None),
                    ScheduleRule.is_active.is_(True),
                    ScheduleRule.is_closed.is_(False),
                )
                .all()
            )

        windows = [
            ScheduleWindow(r.open_time, r.close_time, r.slot_interval_minutes)
            for r in rules
            if r.open_time is not None and r.close_time is not None
        ]
        windows.sort(key=lambda w: w.open_time)
        return windows

    def list_rules(self) -> List[ScheduleRule]:
        return (
            self.db.query(ScheduleRule)
            .order_by(ScheduleRule.specific_date, ScheduleRule.weekday, ScheduleRule.open_time)
            .all()
        )

    def get_rule(self, rule_id: int) -> ScheduleRule:
        rule = self.db.get(ScheduleRule, rule_id)
        if rule is None:
            raise NotFound("Schedule rule not found")
        return rule

    def add_rule(
        self,
        weekday: Optional[int] = None,
        specific_date: Optional[date] = None,
        open_time: Optional[time] = None,
        close_time: Optional[time] = None,
        is_closed: bool = False,
        slot_interval_minutes: Optional[int] = None,
    ) -> ScheduleRule:
        rule = ScheduleRule(
            weekday=weekday,
            specific_date=specific_date,
            open_time=open_time,
            close_time=close_time,
            is_closed=is_closed,
            slot_interval_minutes=slot_interval_minutes,
            is_active=True,
        )
        self._validate(rule)
        self.db.add(rule)
        self.db.flush()
        logger.info(f"Schedule rule {rule.id} added ({self._describe(rule)})")
        return rule

    def update_rule(self, rule_id: int, **changes) -> ScheduleRule:
        rule = self.get_rule(rule_id)
        for field, value in changes.items():
            if field not in RULE_FIELDS:
                raise ValidationError(f"Unknown schedule field: {field}")
            setattr(rule, field, value)
        self._validate(rule)
        self.db.flush()
        logger.info(f"Schedule rule {rule.id} updated ({self._describe(rule)})")
        return rule

    def delete_rule(self, rule_id: int) -> None:
        rule = self.get_rule(rule_id)
        self.db.delete(rule)
        self.db.flush()
        logger.info(f"Schedule rule {rule_id} deleted")

    def _validate(self, rule: ScheduleRule) -> None:
        if (rule.weekday is None) == (rule.specific_date is None):
            raise ValidationError("Exactly one of weekday or specific date must be set")
        if rule.weekday is not None and not 0 <= rule.weekday <= 6:
            raise ValidationError("Weekday must be between 0 (Sunday) and 6 (Saturday)")
        if rule.is_closed:
            if rule.specific_date is None:
                raise ValidationError("Only date-specific rules can mark a closure")
            return
        if rule.open_time is None or rule.close_time is None:
            raise ValidationError("Open and close times are required")
        if rule.open_time >= rule.close_time:
            raise ValidationError("Open time must be before close time")
        if rule.slot_interval_minutes is not None and rule.slot_interval_minutes <= 0:
            raise ValidationError("Slot interval must be a positive number of minutes")
        if not rule.is_active:
            return

        siblings = self.db.query(ScheduleRule).filter(
            ScheduleRule.is_active.is_(True),
            ScheduleRule.is_closed.is_(False),
        )
        if rule.specific_date is not None:
            siblings = siblings.filter(ScheduleRule.specific_date == rule.specific_date)
        else:
            siblings = siblings.filter(
                ScheduleRule.weekday == rule.weekday, ScheduleRule.specific_date.is_(None)
            )
        if rule.id is not None:
            siblings = siblings.filter(ScheduleRule.id != rule.id)
        for other in siblings:
            if rule.open_time < other.close_time and other.open_time < rule.close_time:
                raise ValidationError(
                    f"Window overlaps existing window {other.open_time:%H:%M}-{other.close_time:%H:%M}"
                )

    @staticmethod
    def _describe(rule: ScheduleRule) -> str:
        key = rule.specific_date.isoformat() if rule.specific_date else f"weekday {rule.weekday}"
        if rule.is_closed:
            return f"{key} closed"
        return f"{key} {rule.open_time:%H:%M}-{rule.close_time:%H:%M}"
