"""
Yard Move Engine.

A move relocates a trailer between yard spots and dock doors. Requesting
a move only validates the destination; occupancy counters change when the
move is executed, in the same transaction that completes the move and
updates the trailer, so counters and trailer locations never disagree.

The transit itself is simulated: distance comes from the location
coordinates when both ends have them, otherwise a fixed default, and the
duration follows from a constant yard speed.
"""
import logging
import math
import uuid
from datetime import timedelta
from typing import Optional, List, Tuple

from sqlalchemy import select, func
from sqlalchemy.ext.asyncio import AsyncSession

from dockyard.config import settings
from dockyard.core.clock import Clock, utc_now
from dockyard.core.exceptions import NotFoundError, ConflictError, PreconditionFailedError
from dockyard.core.locks import yard_lock
from dockyard.models.yard import (
    YardMove, YardMoveStatus, YardLocation, Trailer, TrailerStatus
)
from dockyard.schemas.yard import YardMoveCreate
from dockyard.services.cache_service import CacheService, get_cache
from dockyard.services.event_publisher import EventPublisher, YardEventType, get_event_publisher
from dockyard.services.sequence_service import YardSequenceService
from dockyard.services.yard_location_service import YardLocationService

logger = logging.getLogger(__name__)


def move_distance(
    origin: Optional[YardLocation],
    destination: Optional[YardLocation],
    default: float = None
) -> float:
    """Straight-line distance in meters, or the default when coordinates are missing."""
    if default is None:
        default = settings.YARD_MOVE_DEFAULT_DISTANCE_METERS
    if (
        origin is None or destination is None
        or None in (origin.pos_x, origin.pos_y, destination.pos_x, destination.pos_y)
    ):
        return float(default)
    return round(math.hypot(destination.pos_x - origin.pos_x, destination.pos_y - origin.pos_y), 2)


def move_duration(distance: float, speed: float = None) -> int:
    """Transit minutes at yard speed, at least one minute."""
    speed = speed or settings.YARD_MOVE_SPEED_METERS_PER_MINUTE
    return max(1, math.ceil(distance / speed))


class YardMoveService:
    """Service for requesting and executing yard moves."""

    def __init__(
        self,
        db: AsyncSession,
        tenant_id: uuid.UUID,
        cache: Optional[CacheService] = None,
        events: Optional[EventPublisher] = None,
        clock: Clock = utc_now,
    ):
        self.db = db
        self.tenant_id = tenant_id
        self.cache = cache or get_cache()
        self.events = events or get_event_publisher()
        self.clock = clock
        self.locations = YardLocationService(db, tenant_id, self.cache)
        self.sequences = YardSequenceService(db, tenant_id)

    # ========================================================================
    # QUERIES
    # ========================================================================

    async def get_move(self, move_id: uuid.UUID) -> Optional[YardMove]:
        """Get yard move by ID."""
        result = await self.db.execute(
            select(YardMove)
            .where(
                YardMove.id == move_id,
                YardMove.tenant_id == self.tenant_id
            )
        )
        return result.scalar_one_or_none()

    async def require_move(self, move_id: uuid.UUID) -> YardMove:
        move = await self.get_move(move_id)
        if move is None:
            raise NotFoundError("Yard move not found", details={"move_id": str(move_id)})
        return move

    async def list_moves(
        self,
        warehouse_id: uuid.UUID,
        status: Optional[YardMoveStatus] = None,
        trailer_id: Optional[uuid.UUID] = None,
        skip: int = 0,
        limit: int = 100
    ) -> Tuple[List[YardMove], int]:
        """List yard moves with filters."""
        query = select(YardMove).where(
            YardMove.tenant_id == self.tenant_id,
            YardMove.warehouse_id == warehouse_id
        )
        if status:
            query = query.where(YardMove.status == status.value)
        if trailer_id:
            query = query.where(YardMove.trailer_id == trailer_id)

        count_query = select(func.count()).select_from(query.subquery())
        total = (await self.db.execute(count_query)).scalar() or 0

        query = query.order_by(YardMove.requested_time.desc()).offset(skip).limit(limit)
        result = await self.db.execute(query)
        return list(result.scalars().all()), total

    async def _require_trailer(self, trailer_id: uuid.UUID) -> Trailer:
        result = await self.db.execute(
            select(Trailer)
            .where(
                Trailer.id == trailer_id,
                Trailer.tenant_id == self.tenant_id
            )
        )
        trailer = result.scalar_one_or_none()
        if trailer is None:
            raise NotFoundError("Trailer not found", details={"trailer_id": str(trailer_id)})
        return trailer

    async def _get_open_move(self, trailer_id: uuid.UUID) -> Optional[YardMove]:
        result = await self.db.execute(
            select(YardMove)
            .where(
                YardMove.tenant_id == self.tenant_id,
                YardMove.trailer_id == trailer_id,
                YardMove.status.in_([
                    YardMoveStatus.PENDING.value,
                    YardMoveStatus.IN_PROGRESS.value,
                ])
            )
            .limit(1)
        )
        return result.scalar_one_or_none()

    @staticmethod
    def _ensure_movable(trailer: Trailer) -> None:
        """Only trailers checked in and still on site can be moved."""
        if trailer.status == TrailerStatus.DEPARTED.value:
            raise ConflictError(
                f"Trailer {trailer.trailer_number} has departed",
                details={"trailer_id": str(trailer.id)}
            )
        if trailer.check_in_time is None:
            raise PreconditionFailedError(
                f"Trailer {trailer.trailer_number} has not been checked in",
                details={"trailer_id": str(trailer.id), "status": trailer.status}
            )

    @staticmethod
    def _ensure_open(move: YardMove) -> None:
        if move.status == YardMoveStatus.COMPLETED.value:
            raise ConflictError(
                f"Yard move {move.move_number} is already completed",
                details={"move_id": str(move.id)}
            )

    # ========================================================================
    # REQUEST
    # ========================================================================

    async def request_move(self, data: YardMoveCreate, actor: Optional[str] = None) -> YardMove:
        """
        Request a move of a trailer to a yard location.

        A move with an assigned operator starts right away (in_progress);
        it still has to be executed to take effect.

        Raises:
            NotFoundError: Trailer or destination missing
            PreconditionFailedError: Trailer only registered at the gate
            ConflictError: Trailer departed or already has an open move,
                destination inactive, full or already the trailer's location
        """
        trailer = await self._require_trailer(data.trailer_id)
        self._ensure_movable(trailer)

        destination = await self.locations.get_location_by_code(trailer.warehouse_id, data.to_location)
        if destination is None:
            raise NotFoundError(
                "Target location not found",
                details={"location_code": data.to_location}
            )
        if not destination.is_active:
            raise ConflictError(
                f"Yard location {data.to_location} is inactive",
                details={"location_code": data.to_location}
            )
        if destination.is_full:
            raise ConflictError(
                "Target location is at capacity",
                details={"location_code": data.to_location, "capacity": destination.capacity}
            )
        if trailer.current_location == data.to_location:
            raise ConflictError(
                f"Trailer {trailer.trailer_number} is already at {data.to_location}",
                details={"trailer_id": str(trailer.id), "location_code": data.to_location}
            )

        now = self.clock()

        async with yard_lock(self.tenant_id, trailer.warehouse_id):
            open_move = await self._get_open_move(trailer.id)
            if open_move is not None:
                raise ConflictError(
                    f"Trailer {trailer.trailer_number} already has open move {open_move.move_number}",
                    details={"trailer_id": str(trailer.id), "move_id": str(open_move.id)}
                )

            move_number = await self.sequences.next_move_number(now.date())
            move = YardMove(
                id=uuid.uuid4(),
                tenant_id=self.tenant_id,
                warehouse_id=trailer.warehouse_id,
                move_number=move_number,
                trailer_id=trailer.id,
                from_location=trailer.current_location,
                to_location=data.to_location,
                move_reason=data.move_reason.value,
                priority=data.priority.value,
                requested_time=now,
                scheduled_time=data.scheduled_time,
                assigned_operator=data.assigned_operator,
                requested_by=actor,
                notes=data.notes,
            )
            if data.assigned_operator:
                move.status = YardMoveStatus.IN_PROGRESS.value
                move.started_time = now
            else:
                move.status = YardMoveStatus.PENDING.value

            self.db.add(move)
            await self.db.commit()

        logger.info(
            f"Yard move {move.move_number} requested: {trailer.trailer_number} "
            f"{move.from_location or 'gate'} -> {move.to_location}"
        )
        await self.events.publish(
            YardEventType.YARD_MOVE_REQUESTED,
            tenant_id=self.tenant_id,
            warehouse_id=move.warehouse_id,
            entity_id=move.id,
            move_number=move.move_number,
            trailer_id=str(trailer.id),
            from_location=move.from_location,
            to_location=move.to_location,
            priority=move.priority,
        )
        return move

    # ========================================================================
    # EXECUTE
    # ========================================================================

    async def execute(self, move_id: uuid.UUID, operator_id: str) -> YardMove:
        """
        Carry out a move: occupy the destination, free the origin, relocate
        the trailer and complete the move in one commit.

        The origin is the trailer's location at execution time; it may have
        changed since the move was requested.

        Raises:
            NotFoundError: Move or destination missing
            PreconditionFailedError: Trailer only registered at the gate
            ConflictError: Move already completed, trailer departed or
                already at the destination, destination inactive or at capacity
        """
        move = await self.require_move(move_id)
        self._ensure_open(move)
        trailer = await self._require_trailer(move.trailer_id)
        self._ensure_movable(trailer)

        async with yard_lock(self.tenant_id, move.warehouse_id):
            await self.db.refresh(move)
            await self.db.refresh(trailer)
            self._ensure_open(move)
            self._ensure_movable(trailer)
            if trailer.current_location == move.to_location:
                raise ConflictError(
                    f"Trailer {trailer.trailer_number} is already at {move.to_location}",
                    details={"trailer_id": str(trailer.id), "move_id": str(move.id)}
                )

            origin_code = trailer.current_location
            started = move.started_time or self.clock()

            try:
                destination = await self.locations.occupy(move.warehouse_id, move.to_location)
            except ConflictError:
                await self.db.rollback()
                raise

            origin = None
            if origin_code:
                origin = await self.locations.release(move.warehouse_id, origin_code)

            distance = move_distance(origin, destination)
            duration = move_duration(distance)

            trailer.current_location = move.to_location
            trailer.status = TrailerStatus.IN_YARD.value

            move.from_location = origin_code
            move.assigned_operator = operator_id
            move.started_time = started
            move.completed_time = started + timedelta(minutes=duration)
            move.duration = duration
            move.distance = distance
            move.status = YardMoveStatus.COMPLETED.value

            await self.db.commit()

        logger.info(
            f"Yard move {move.move_number} completed by {operator_id}: "
            f"{distance}m in {duration} min"
        )
        await self.events.publish(
            YardEventType.YARD_MOVE_COMPLETED,
            tenant_id=self.tenant_id,
            warehouse_id=move.warehouse_id,
            entity_id=move.id,
            move_number=move.move_number,
            trailer_id=str(trailer.id),
            from_location=move.from_location,
            to_location=move.to_location,
            duration=duration,
        )
        return move
