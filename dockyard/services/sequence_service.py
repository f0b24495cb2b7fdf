"""
Yard Sequence Service for date-scoped document numbers.

Formats:
    APPT-YYYYMMDD-NNNN   dock appointments
    YM-YYYYMMDD-NNNN     yard moves

Numbering restarts every day. The counter row is read with SELECT FOR UPDATE
(a no-op on SQLite) and incremented inside the caller's transaction, so the
number is only consumed if the caller commits.
"""
import uuid
from datetime import date, datetime, timezone
from typing import Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from dockyard.core.locks import sequence_lock
from dockyard.models.yard import YardSequence


APPOINTMENT_PREFIX = "APPT"
YARD_MOVE_PREFIX = "YM"

SEQUENCE_PADDING = 4


def format_number(prefix: str, sequence_date: date, number: int) -> str:
    return f"{prefix}-{sequence_date.strftime('%Y%m%d')}-{str(number).zfill(SEQUENCE_PADDING)}"


class YardSequenceService:
    """Atomic, per-tenant, per-day number generation."""

    def __init__(self, db: AsyncSession, tenant_id: uuid.UUID):
        self.db = db
        self.tenant_id = tenant_id

    async def _get_or_create_sequence(self, prefix: str, sequence_date: date) -> YardSequence:
        result = await self.db.execute(
            select(YardSequence)
            .where(
                YardSequence.tenant_id == self.tenant_id,
                YardSequence.prefix == prefix,
                YardSequence.sequence_date == sequence_date
            )
            .with_for_update()
        )
        sequence = result.scalar_one_or_none()
        if sequence is None:
            sequence = YardSequence(
                id=uuid.uuid4(),
                tenant_id=self.tenant_id,
                prefix=prefix,
                sequence_date=sequence_date,
                current_number=0
            )
            self.db.add(sequence)
        return sequence

    async def get_next_number(self, prefix: str, sequence_date: Optional[date] = None) -> str:
        """
        Reserve the next number for prefix on sequence_date (default: today, UTC).

        Returns:
            Formatted number, e.g. APPT-20260302-0001
        """
        sequence_date = sequence_date or datetime.now(timezone.utc).date()
        async with sequence_lock(self.tenant_id):
            sequence = await self._get_or_create_sequence(prefix, sequence_date)
            sequence.current_number += 1
            await self.db.flush()
            return format_number(prefix, sequence_date, sequence.current_number)

    async def next_appointment_number(self, sequence_date: Optional[date] = None) -> str:
        return await self.get_next_number(APPOINTMENT_PREFIX, sequence_date)

    async def next_move_number(self, sequence_date: Optional[date] = None) -> str:
        return await self.get_next_number(YARD_MOVE_PREFIX, sequence_date)
