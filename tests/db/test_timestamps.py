"""
Timestamps read back from the store are timezone-aware UTC on every backend.
"""

from datetime import datetime, timedelta, timezone

from sqlalchemy import select

from domos_kernel.db.base import UTCDateTime
from domos_kernel.models.workflow import StatefulEntity

OFFSET = timezone(timedelta(hours=2))


class TestUTCDateTime:

    def test_aware_value_is_stored_as_utc(self):
        bound = UTCDateTime().process_bind_param(datetime(2024, 1, 1, 14, 0, tzinfo=OFFSET), None)
        assert bound == datetime(2024, 1, 1, 12, 0, tzinfo=timezone.utc)
        assert bound.utcoffset() == timedelta(0)

    def test_naive_value_from_storage_is_utc(self):
        loaded = UTCDateTime().process_result_value(datetime(2024, 1, 1, 12, 0), None)
        assert loaded.tzinfo is timezone.utc


def test_reloaded_columns_are_aware(session, workflow, expense_report, seed, clock):
    workflow.execute_transition(expense_report.id, "expense_report.submit", [seed.alice])
    session.expire_all()

    entity = session.execute(
        select(StatefulEntity).where(StatefulEntity.id == expense_report.id)
    ).scalar_one()
    assert entity.created_at.tzinfo is not None
    assert entity.last_transition_at == clock.now()
