"""Pre-check of existing data for a period."""

from __future__ import annotations

from decimal import Decimal

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from payroll_import.models import MonthlyRecord
from payroll_import.schemas import PeriodCheck, ScopeSummary
from payroll_import.types import PAYABLE_KINDS, CollaboratorKind, Period

ZERO = Decimal("0.00")


class PeriodService:
    """Answers whether a period already has monthly records, per collaborator kind."""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def check(self, period: Period) -> PeriodCheck:
        result = await self.session.execute(
            select(
                MonthlyRecord.collaborator_kind,
                func.count(MonthlyRecord.record_id),
                func.count(func.distinct(MonthlyRecord.collaborator_id)),
                func.coalesce(func.sum(MonthlyRecord.net_amount), 0),
            )
            .where(MonthlyRecord.month == period.month, MonthlyRecord.year == period.year)
            .group_by(MonthlyRecord.collaborator_kind)
        )
        counts = {
            kind: (records, collaborators, Decimal(str(net_total)).quantize(ZERO))
            for kind, records, collaborators, net_total in result.all()
        }

        kinds: dict[str, ScopeSummary] = {}
        for kind in sorted(PAYABLE_KINDS, key=lambda k: k.value):
            records, collaborators, net_total = counts.get(kind.value, (0, 0, ZERO))
            bounds = period.reference_bounds(kind)
            kinds[kind.value] = ScopeSummary(
                exists=records > 0,
                records=records,
                collaborators=collaborators,
                net_total=net_total,
                period_start_day=bounds.start_day,
                period_end_day=bounds.end_day,
            )

        total_collaborators = await self.session.scalar(
            select(func.count(func.distinct(MonthlyRecord.collaborator_id))).where(
                MonthlyRecord.month == period.month, MonthlyRecord.year == period.year
            )
        )
        return PeriodCheck(
            month=period.month,
            year=period.year,
            kinds=kinds,
            total_records=sum(s.records for s in kinds.values()),
            total_collaborators=total_collaborators or 0,
            net_total=sum((s.net_total for s in kinds.values()), ZERO),
        )

    async def summarize(self, period: Period, kind: CollaboratorKind) -> ScopeSummary:
        """Existing-data summary for one scope."""
        check = await self.check(period)
        return check.kinds[kind.value]
