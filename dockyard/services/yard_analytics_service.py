"""
Yard Analytics & Optimizer.

Read-only aggregation over appointments, trailers and yard locations:
- snapshot: the current operating day of a warehouse
- optimize: advisory projection through an OptimizationModel
- utilization_report: totals and recommendations over a date range

Snapshot sections are computed independently; a failing section is logged
and reported in partial_errors while the remaining sections are returned.
"""
import logging
import uuid
from collections import Counter, defaultdict
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta
from typing import Optional, List, Dict

from sqlalchemy import select, or_
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from dockyard.core.clock import Clock, utc_now, local_date, local_day_bounds
from dockyard.core.exceptions import YardError
from dockyard.models.yard import (
    Trailer, TrailerStatus, DockAppointment, AppointmentStatus, YardLocation
)
from dockyard.schemas.yard import (
    YardSnapshot, YardPolicy, TrailerStatusCounts, DockUtilization, YardUtilization,
    DwellTimeStats, OnTimePerformance, ActiveIssues, YardMetrics, OptimizationResult,
    UtilizationReport, ReportPeriod, PeakDay, DockUtilizationRange
)
from dockyard.services.cache_service import CacheService, get_cache
from dockyard.services.dock_calendar import DockCalendarService, operating_window
from dockyard.services.optimization_model import OptimizationModel, HeuristicOptimizationModel
from dockyard.services.trailer_service import calculate_detention_charge, dwell_hours
from dockyard.services.yard_config_service import YardConfigService

logger = logging.getLogger(__name__)


UNSCHEDULED = "unscheduled"


@dataclass
class _SnapshotContext:
    now: datetime
    policy: YardPolicy
    day: date
    day_start: datetime
    day_end: datetime
    trailers: Optional[List[Trailer]] = None
    appointments: Optional[List[DockAppointment]] = None
    errors: List[str] = field(default_factory=list)


def _rate(part: float, whole: float) -> float:
    """part / whole as a percentage, 0 for an empty whole."""
    if not whole:
        return 0.0
    return round(part / whole * 100, 2)


def _average(values: List[float]) -> float:
    if not values:
        return 0.0
    return round(sum(values) / len(values), 2)


def is_on_time(appointment: DockAppointment, grace_minutes: int) -> bool:
    """Started no later than scheduled start + grace."""
    if appointment.actual_start_time is None:
        return False
    deadline = appointment.scheduled_start_time + timedelta(minutes=grace_minutes)
    return appointment.actual_start_time <= deadline


class YardAnalyticsService:
    """Snapshot, optimization and utilization reporting for a tenant."""

    # Report recommendation thresholds
    PEAK_UTILIZATION_THRESHOLD = 90.0
    ON_TIME_THRESHOLD = 85.0
    DWELL_HOURS_THRESHOLD = 4.0
    DETENTION_COST_THRESHOLD = 10000.0

    def __init__(
        self,
        db: AsyncSession,
        tenant_id: uuid.UUID,
        cache: Optional[CacheService] = None,
        clock: Clock = utc_now,
        model: Optional[OptimizationModel] = None,
    ):
        self.db = db
        self.tenant_id = tenant_id
        self.cache = cache or get_cache()
        self.clock = clock
        self.model = model or HeuristicOptimizationModel()
        self.config = YardConfigService(db, tenant_id, self.cache)
        self.calendar = DockCalendarService(db, tenant_id, self.cache)

    # ========================================================================
    # SNAPSHOT
    # ========================================================================

    async def snapshot(self, warehouse_id: uuid.UUID) -> YardSnapshot:
        """Point-in-time view of the warehouse's current operating day."""
        now = self.clock()
        policy = await self.config.get_policy(warehouse_id)
        today = local_date(now, policy.zone)
        day_start, day_end = local_day_bounds(today, policy.zone)
        ctx = _SnapshotContext(
            now=now, policy=policy, day=today, day_start=day_start, day_end=day_end
        )

        logger.debug(f"Generating yard snapshot for warehouse {warehouse_id} ({today})")
        snapshot = YardSnapshot(warehouse_id=warehouse_id, timestamp=now, operating_date=today)

        sections = [
            ("trailers", self._trailer_section),
            ("dwell_time", self._dwell_section),
            ("dock_utilization", self._dock_section),
            ("yard_utilization", self._yard_section),
            ("on_time_performance", self._on_time_section),
            ("active_issues", self._issues_section),
        ]
        for name, section in sections:
            try:
                await section(warehouse_id, ctx, snapshot)
            except Exception as e:
                logger.exception(f"Snapshot section {name} failed for warehouse {warehouse_id}: {e}")
                if isinstance(e, SQLAlchemyError):
                    await self.db.rollback()
                snapshot.partial_errors.append(name)

        return snapshot

    async def _todays_trailers(self, warehouse_id: uuid.UUID, ctx: _SnapshotContext) -> List[Trailer]:
        """Trailers that arrived or checked in today, plus any still on site."""
        if ctx.trailers is None:
            result = await self.db.execute(
                select(Trailer)
                .where(
                    Trailer.tenant_id == self.tenant_id,
                    Trailer.warehouse_id == warehouse_id,
                    or_(
                        Trailer.check_in_time.between(ctx.day_start, ctx.day_end),
                        Trailer.arrival_time.between(ctx.day_start, ctx.day_end),
                        Trailer.status != TrailerStatus.DEPARTED.value,
                    )
                )
            )
            ctx.trailers = [
                t for t in result.scalars().all()
                if _within_day(t, ctx) or t.status != TrailerStatus.DEPARTED.value
            ]
        return ctx.trailers

    async def _todays_appointments(
        self,
        warehouse_id: uuid.UUID,
        ctx: _SnapshotContext
    ) -> List[DockAppointment]:
        if ctx.appointments is None:
            ctx.appointments = await self.calendar.load_appointments(warehouse_id, ctx.day)
        return ctx.appointments

    async def _trailer_section(self, warehouse_id, ctx, snapshot):
        trailers = await self._todays_trailers(warehouse_id, ctx)
        statuses = Counter(t.status for t in trailers)
        snapshot.total_trailers = len(trailers)
        snapshot.trailers_by_status = TrailerStatusCounts(
            **{s.value: statuses.get(s.value, 0) for s in TrailerStatus}
        )
        snapshot.trailers_by_type = dict(Counter(t.trailer_type for t in trailers))

    async def _dwell_section(self, warehouse_id, ctx, snapshot):
        trailers = [
            t for t in await self._todays_trailers(warehouse_id, ctx)
            if t.check_in_time and t.check_out_time
        ]
        appointment_ids = {t.appointment_id for t in trailers if t.appointment_id}
        operation_types: Dict[uuid.UUID, str] = {}
        if appointment_ids:
            result = await self.db.execute(
                select(DockAppointment.id, DockAppointment.operation_type)
                .where(
                    DockAppointment.tenant_id == self.tenant_id,
                    DockAppointment.id.in_(appointment_ids)
                )
            )
            operation_types = {row.id: row.operation_type for row in result}

        by_type: Dict[str, List[float]] = defaultdict(list)
        overall = []
        for trailer in trailers:
            hours = dwell_hours(trailer.check_in_time, trailer.check_out_time)
            overall.append(hours)
            by_type[operation_types.get(trailer.appointment_id, UNSCHEDULED)].append(hours)

        snapshot.average_dwell_time = DwellTimeStats(
            overall=_average(overall),
            by_operation_type={op: _average(values) for op, values in by_type.items()},
        )

    async def _dock_section(self, warehouse_id, ctx, snapshot):
        docks = await self.calendar.get_docks(warehouse_id, ctx.policy)
        appointments = await self._todays_appointments(warehouse_id, ctx)
        trailers = await self._todays_trailers(warehouse_id, ctx)

        occupied = {
            t.current_location for t in trailers
            if t.status == TrailerStatus.AT_DOCK.value and t.current_location
        }
        occupied.update(
            a.dock_number for a in appointments
            if a.status == AppointmentStatus.IN_PROGRESS.value
        )
        upcoming = sum(
            1 for a in appointments
            if a.status in (AppointmentStatus.SCHEDULED.value, AppointmentStatus.CONFIRMED.value)
            and a.scheduled_start_time > ctx.now
        )
        snapshot.dock_utilization = DockUtilization(
            total_docks=len(docks),
            occupied_docks=len(occupied),
            utilization_rate=_rate(len(occupied), len(docks)),
            upcoming_appointments=upcoming,
        )

    async def _yard_section(self, warehouse_id, ctx, snapshot):
        result = await self.db.execute(
            select(YardLocation)
            .where(
                YardLocation.tenant_id == self.tenant_id,
                YardLocation.warehouse_id == warehouse_id,
                YardLocation.is_active == True  # noqa: E712
            )
        )
        locations = result.scalars().all()
        total = sum(loc.capacity for loc in locations)
        occupied = sum(loc.current_occupancy for loc in locations)
        snapshot.yard_utilization = YardUtilization(
            total_spots=total,
            occupied_spots=occupied,
            utilization_rate=_rate(occupied, total),
        )

    async def _on_time_section(self, warehouse_id, ctx, snapshot):
        started = [
            a for a in await self._todays_appointments(warehouse_id, ctx)
            if a.actual_start_time is not None
        ]
        grace = ctx.policy.on_time_grace_minutes
        on_time = [a for a in started if is_on_time(a, grace)]
        late = [a for a in started if not is_on_time(a, grace)]
        delays = [
            (a.actual_start_time - a.scheduled_start_time).total_seconds() / 60
            for a in late
        ]
        snapshot.on_time_performance = OnTimePerformance(
            appointments_on_time=len(on_time),
            appointments_late=len(late),
            on_time_rate=_rate(len(on_time), len(started)),
            average_delay=_average(delays),
        )

    async def _issues_section(self, warehouse_id, ctx, snapshot):
        appointments = await self._todays_appointments(warehouse_id, ctx)
        trailers = await self._todays_trailers(warehouse_id, ctx)
        policy = ctx.policy
        grace = timedelta(minutes=policy.on_time_grace_minutes)

        late_arrivals = sum(
            1 for a in appointments
            if a.is_late and a.delay_minutes > policy.late_alert_threshold_minutes
        )
        overdue = sum(
            1 for a in appointments
            if a.status in (AppointmentStatus.SCHEDULED.value, AppointmentStatus.CONFIRMED.value)
            and a.scheduled_start_time + grace < ctx.now
        )
        detention_risk = sum(
            1 for t in trailers
            if t.status != TrailerStatus.DEPARTED.value and t.check_in_time
            and dwell_hours(t.check_in_time, ctx.now) > policy.detention_free_hours
        )

        types = {
            name: count for name, count in (
                ("late_arrivals", late_arrivals),
                ("overdue_appointments", overdue),
                ("detention_risk", detention_risk),
            )
            if count
        }
        snapshot.active_issues = ActiveIssues(count=sum(types.values()), types=types)

    # ========================================================================
    # OPTIMIZATION
    # ========================================================================

    async def optimize(self, warehouse_id: uuid.UUID) -> OptimizationResult:
        """Advisory projection of the current snapshot through the model."""
        snapshot = await self.snapshot(warehouse_id)
        policy = await self.config.get_policy(warehouse_id)

        current = YardMetrics(
            average_dwell_time=snapshot.average_dwell_time.overall,
            dock_utilization=snapshot.dock_utilization.utilization_rate,
            yard_utilization=snapshot.yard_utilization.utilization_rate,
            average_wait_time=snapshot.on_time_performance.average_delay,
        )
        optimized, improvements, action_plan = self.model.project(current, snapshot, policy)

        logger.info(
            f"Yard optimization for warehouse {warehouse_id} ({self.model.name}): "
            f"projected savings {improvements.cost_savings:.2f}"
        )
        return OptimizationResult(
            warehouse_id=warehouse_id,
            model=self.model.name,
            current_metrics=current,
            optimized_metrics=optimized,
            improvements=improvements,
            action_plan=action_plan,
        )

    # ========================================================================
    # UTILIZATION REPORT
    # ========================================================================

    async def utilization_report(
        self,
        warehouse_id: uuid.UUID,
        start_date: date,
        end_date: date
    ) -> UtilizationReport:
        """Utilization, punctuality and detention over [start_date, end_date]."""
        if end_date < start_date:
            raise YardError(
                "end_date must not be before start_date",
                details={"start_date": str(start_date), "end_date": str(end_date)}
            )

        policy = await self.config.get_policy(warehouse_id)
        tz = policy.zone
        range_start, _ = local_day_bounds(start_date, tz)
        _, range_end = local_day_bounds(end_date, tz)

        appointments = list((await self.db.execute(
            select(DockAppointment)
            .where(
                DockAppointment.tenant_id == self.tenant_id,
                DockAppointment.warehouse_id == warehouse_id,
                DockAppointment.scheduled_date >= start_date,
                DockAppointment.scheduled_date <= end_date
            )
        )).scalars().all())
        trailers = list((await self.db.execute(
            select(Trailer)
            .where(
                Trailer.tenant_id == self.tenant_id,
                Trailer.warehouse_id == warehouse_id,
                Trailer.check_in_time >= range_start,
                Trailer.check_in_time < range_end
            )
        )).scalars().all())

        days = [start_date + timedelta(days=i) for i in range((end_date - start_date).days + 1)]

        daily_counts = Counter(local_date(t.check_in_time, tz) for t in trailers)
        if daily_counts:
            peak_date, peak_count = max(daily_counts.items(), key=lambda item: (item[1], -item[0].toordinal()))
        else:
            peak_date, peak_count = start_date, 0

        active = [a for a in appointments if a.status != AppointmentStatus.CANCELLED.value]
        docks = await self.calendar.get_docks(warehouse_id, policy)
        daily_utilization = [
            self._daily_dock_utilization(day, active, len(docks), policy) for day in days
        ]
        dock_utilization = DockUtilizationRange(
            average=_average(daily_utilization),
            peak=max(daily_utilization),
            lowest=min(daily_utilization),
        )

        on_time_count = sum(1 for a in active if is_on_time(a, policy.on_time_grace_minutes))
        on_time_rate = _rate(on_time_count, len(active))

        dwell_times = [
            dwell_hours(t.check_in_time, t.check_out_time)
            for t in trailers if t.check_out_time
        ]
        average_dwell = _average(dwell_times)
        detention = round(sum(
            calculate_detention_charge(d, policy.detention_free_hours, policy.detention_rate_per_hour)
            for d in dwell_times
        ), 2)

        report = UtilizationReport(
            warehouse_id=warehouse_id,
            period=ReportPeriod(start_date=start_date, end_date=end_date),
            total_appointments=len(appointments),
            total_trailers=len(trailers),
            average_daily_trailers=round(len(trailers) / len(days), 2),
            peak_day=PeakDay(day=peak_date, trailer_count=peak_count),
            dock_utilization=dock_utilization,
            on_time_performance=on_time_rate,
            average_dwell_time=average_dwell,
            detention_costs=detention,
        )
        report.recommendations = self.recommendations(report)
        logger.info(
            f"Utilization report for warehouse {warehouse_id} {start_date}..{end_date}: "
            f"{len(appointments)} appointments, {len(trailers)} trailers"
        )
        return report

    @staticmethod
    def _daily_dock_utilization(
        day: date,
        appointments: List[DockAppointment],
        dock_count: int,
        policy: YardPolicy
    ) -> float:
        """Booked dock minutes as a share of the day's dock capacity."""
        open_at, close_at = operating_window(day, policy)
        capacity = (close_at - open_at).total_seconds() / 60 * dock_count
        booked = sum(
            (min(a.scheduled_end_time, close_at) - max(a.scheduled_start_time, open_at)).total_seconds() / 60
            for a in appointments
            if a.scheduled_date == day
            and a.scheduled_start_time < close_at and a.scheduled_end_time > open_at
        )
        return _rate(booked, capacity)

    def recommendations(self, report: UtilizationReport) -> List[str]:
        recommendations = []
        if report.dock_utilization.peak > self.PEAK_UTILIZATION_THRESHOLD:
            recommendations.append(
                "Consider adding more dock doors or extending operating hours during peak times"
            )
        if report.on_time_performance < self.ON_TIME_THRESHOLD:
            recommendations.append(
                "Improve appointment scheduling accuracy - consider buffer times"
            )
        if report.average_dwell_time > self.DWELL_HOURS_THRESHOLD:
            recommendations.append(
                "Reduce average dwell time through better dock assignment and resource allocation"
            )
        if report.detention_costs > self.DETENTION_COST_THRESHOLD:
            recommendations.append(
                f"High detention costs ({report.detention_costs:.2f}) - "
                f"streamline loading/unloading processes"
            )
        return recommendations


def _within_day(trailer: Trailer, ctx: _SnapshotContext) -> bool:
    for moment in (trailer.check_in_time, trailer.arrival_time):
        if moment is not None and ctx.day_start <= moment < ctx.day_end:
            return True
    return False
