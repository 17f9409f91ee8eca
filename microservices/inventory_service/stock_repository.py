"""
Stock Repository

Data access layer for the inventory ledger using PostgreSQL (asyncpg).
Matches schema: inventory.stock_levels, inventory.stock_movements,
inventory.stock_reservations, inventory.stock_alerts

Durable storage only. Optimistic concurrency is a version column compared
on write; movements are append-only and keyed by idempotency_key.
"""

import asyncio
import logging
from contextlib import asynccontextmanager
from datetime import datetime
from typing import Any, Dict, List, Optional, Tuple

import asyncpg

from core.config.infra_config import InfraConfig
from core.postgres_client import PostgresClientWrapper, get_postgres_client
from .models import (
    AlertFilter,
    AlertType,
    MovementFilter,
    ReservationFilter,
    ReservationStatus,
    StockAlert,
    StockLevel,
    StockLevelFilter,
    StockMovement,
    StockReservation,
)
from .protocols import (
    DuplicateStockLevelError,
    InvalidAdjustmentError,
    InventoryError,
    RepositoryUnavailableError,
    VersionConflictError,
)

logger = logging.getLogger(__name__)

_RESERVATION_UPDATABLE = {
    "status",
    "updated_at",
    "committed_at",
    "released_at",
    "release_reason",
    "reference_id",
    "expires_at",
}

_LEVEL_COLUMNS = (
    "item_id, location_id, on_hand, reserved, reorder_point, maximum_stock, "
    "version, created_at, updated_at"
)

_MOVEMENT_COLUMNS = (
    "movement_id, item_id, location_id, movement_type, quantity_delta, "
    "quantity_before, quantity_after, reserved_before, reserved_after, reason, "
    "actor_ref, reference_id, stock_version, idempotency_key, occurred_at"
)

_RESERVATION_COLUMNS = (
    "reservation_id, item_id, location_id, quantity, holder_ref, status, "
    "created_at, expires_at, updated_at, committed_at, released_at, "
    "release_reason, reference_id"
)

_ALERT_COLUMNS = (
    "alert_id, item_id, location_id, alert_type, threshold_value, current_value, "
    "priority, status, condition_active, snoozed_until, resolution_notes, "
    "triggered_at, acknowledged_at, acknowledged_by, resolved_at, resolved_by, "
    "created_at, updated_at"
)


def _schema_sql(schema: str) -> List[str]:
    return [
        f'CREATE SCHEMA IF NOT EXISTS "{schema}"',
        f'''
        CREATE TABLE IF NOT EXISTS "{schema}".stock_levels (
            item_id TEXT NOT NULL,
            location_id TEXT NOT NULL,
            on_hand INTEGER NOT NULL,
            reserved INTEGER NOT NULL DEFAULT 0,
            reorder_point INTEGER NOT NULL DEFAULT 0,
            maximum_stock INTEGER,
            version BIGINT NOT NULL DEFAULT 0,
            created_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
            updated_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
            PRIMARY KEY (item_id, location_id),
            CONSTRAINT stock_levels_reserved_within_on_hand
                CHECK (reserved >= 0 AND reserved <= on_hand)
        )
        ''',
        f'''
        CREATE TABLE IF NOT EXISTS "{schema}".stock_movements (
            movement_id TEXT PRIMARY KEY,
            item_id TEXT NOT NULL,
            location_id TEXT NOT NULL,
            movement_type TEXT NOT NULL,
            quantity_delta INTEGER NOT NULL,
            quantity_before INTEGER NOT NULL,
            quantity_after INTEGER NOT NULL,
            reserved_before INTEGER NOT NULL,
            reserved_after INTEGER NOT NULL,
            reason TEXT NOT NULL,
            actor_ref TEXT NOT NULL,
            reference_id TEXT,
            stock_version BIGINT NOT NULL,
            idempotency_key TEXT NOT NULL UNIQUE,
            occurred_at TIMESTAMPTZ NOT NULL
        )
        ''',
        f'''
        CREATE INDEX IF NOT EXISTS stock_movements_item_version_idx
            ON "{schema}".stock_movements (item_id, location_id, stock_version)
        ''',
        f'''
        CREATE TABLE IF NOT EXISTS "{schema}".stock_reservations (
            reservation_id TEXT PRIMARY KEY,
            item_id TEXT NOT NULL,
            location_id TEXT NOT NULL,
            quantity INTEGER NOT NULL CHECK (quantity > 0),
            holder_ref TEXT NOT NULL,
            status TEXT NOT NULL,
            created_at TIMESTAMPTZ NOT NULL,
            expires_at TIMESTAMPTZ NOT NULL,
            updated_at TIMESTAMPTZ NOT NULL,
            committed_at TIMESTAMPTZ,
            released_at TIMESTAMPTZ,
            release_reason TEXT,
            reference_id TEXT
        )
        ''',
        f'''
        CREATE INDEX IF NOT EXISTS stock_reservations_expiry_idx
            ON "{schema}".stock_reservations (status, expires_at)
        ''',
        f'''
        CREATE INDEX IF NOT EXISTS stock_reservations_holder_idx
            ON "{schema}".stock_reservations (holder_ref)
        ''',
        f'''
        CREATE TABLE IF NOT EXISTS "{schema}".stock_alerts (
            alert_id TEXT PRIMARY KEY,
            item_id TEXT NOT NULL,
            location_id TEXT NOT NULL,
            alert_type TEXT NOT NULL,
            threshold_value INTEGER NOT NULL,
            current_value INTEGER NOT NULL,
            priority TEXT NOT NULL,
            status TEXT NOT NULL,
            condition_active BOOLEAN NOT NULL DEFAULT TRUE,
            snoozed_until TIMESTAMPTZ,
            resolution_notes TEXT,
            triggered_at TIMESTAMPTZ NOT NULL,
            acknowledged_at TIMESTAMPTZ,
            acknowledged_by TEXT,
            resolved_at TIMESTAMPTZ,
            resolved_by TEXT,
            created_at TIMESTAMPTZ NOT NULL,
            updated_at TIMESTAMPTZ NOT NULL,
            UNIQUE (item_id, location_id, alert_type)
        )
        ''',
    ]


def _where(conditions: List[str]) -> str:
    return f"WHERE {' AND '.join(conditions)}" if conditions else ""


class StockRepository:
    """
    Repository for inventory ledger data.

    Tables:
        - inventory.stock_levels: per (item, location) quantities with version
        - inventory.stock_movements: append-only audit trail
        - inventory.stock_reservations: time-boxed holds
        - inventory.stock_alerts: one alert per (item, location, type)
    """

    def __init__(
        self,
        db: Optional[PostgresClientWrapper] = None,
        config: Optional[InfraConfig] = None,
    ):
        """Initialize Stock Repository with an asyncpg-backed client"""
        self.config = config or InfraConfig.from_env()
        self.db = db
        self.schema = self.config.postgres_schema

        logger.info(f"StockRepository initialized for schema {self.schema}")

    @asynccontextmanager
    async def _db_errors(self, operation: str):
        try:
            yield
        except InventoryError:
            raise
        except asyncpg.CheckViolationError as e:
            raise InvalidAdjustmentError(f"Stock level constraint violated during {operation}: {e}") from e
        except (asyncpg.PostgresError, asyncpg.InterfaceError, OSError, asyncio.TimeoutError) as e:
            logger.error(f"Database failure during {operation}: {e}")
            raise RepositoryUnavailableError(
                f"Storage unavailable during {operation}", operation=operation
            ) from e

    async def initialize(self) -> None:
        """Create the pool and the schema if missing"""
        async with self._db_errors("initialize"):
            if self.db is None:
                self.db = await get_postgres_client("inventory_service", config=self.config)
            async with self.db.transaction() as conn:
                for statement in _schema_sql(self.schema):
                    await conn.execute(statement)
        logger.info(f"Inventory schema {self.schema} ready")

    async def close(self) -> None:
        if self.db is not None:
            await self.db.close()

    async def health_check(self) -> bool:
        if self.db is None:
            return False
        status = await self.db.health_check()
        if not status["healthy"]:
            logger.warning(f"Database health check failed: {status.get('error')}")
        return status["healthy"]

    def _table(self, name: str) -> str:
        return f'"{self.schema}".{name}'

    # ==================== Stock Levels ====================

    async def get_stock_level(self, item_id: str, location_id: str) -> Optional[StockLevel]:
        """Get stock level with its current version"""
        query = (
            f"SELECT {_LEVEL_COLUMNS} FROM {self._table('stock_levels')} "
            f"WHERE item_id = $1 AND location_id = $2"
        )
        async with self._db_errors("get_stock_level"):
            row = await self.db.query_row(query, [item_id, location_id])
        return StockLevel(**row) if row else None

    async def create_stock_level(self, level: StockLevel) -> StockLevel:
        """Insert a new stock level"""
        query = f'''
            INSERT INTO {self._table('stock_levels')} ({_LEVEL_COLUMNS})
            VALUES ($1, $2, $3, $4, $5, $6, $7, $8, $9)
            RETURNING {_LEVEL_COLUMNS}
        '''
        params = [
            level.item_id, level.location_id, level.on_hand, level.reserved,
            level.reorder_point, level.maximum_stock, level.version,
            level.created_at, level.updated_at,
        ]
        async with self._db_errors("create_stock_level"):
            try:
                row = await self.db.query_row(query, params)
            except asyncpg.UniqueViolationError as e:
                raise DuplicateStockLevelError(
                    f"Stock level for {level.item_id}@{level.location_id} already exists",
                    item_id=level.item_id,
                    location_id=level.location_id,
                ) from e
        return StockLevel(**row)

    async def compare_and_swap(self, level: StockLevel, expected_version: int) -> StockLevel:
        """Write level iff the stored version equals expected_version"""
        query = f'''
            UPDATE {self._table('stock_levels')}
            SET on_hand = $3, reserved = $4, reorder_point = $5, maximum_stock = $6,
                version = $7, updated_at = $8
            WHERE item_id = $1 AND location_id = $2 AND version = $9
            RETURNING {_LEVEL_COLUMNS}
        '''
        params = [
            level.item_id, level.location_id, level.on_hand, level.reserved,
            level.reorder_point, level.maximum_stock, expected_version + 1,
            level.updated_at, expected_version,
        ]
        async with self._db_errors("compare_and_swap"):
            row = await self.db.query_row(query, params)
        if row is None:
            raise VersionConflictError(
                f"Version {expected_version} of {level.item_id}@{level.location_id} is stale",
                item_id=level.item_id,
                location_id=level.location_id,
                expected_version=expected_version,
            )
        return StockLevel(**row)

    async def list_stock_levels(self, filters: StockLevelFilter) -> List[StockLevel]:
        """List stock levels ordered by location then item"""
        conditions: List[str] = []
        params: List[Any] = []
        if filters.item_id:
            params.append(filters.item_id)
            conditions.append(f"item_id = ${len(params)}")
        if filters.location_id:
            params.append(filters.location_id)
            conditions.append(f"location_id = ${len(params)}")
        if filters.low_stock_only:
            params.append(filters.low_stock_threshold)
            conditions.append(f"(on_hand - reserved) <= COALESCE(${len(params)}::INTEGER, reorder_point)")

        params.extend([filters.limit, filters.offset])
        query = f'''
            SELECT {_LEVEL_COLUMNS} FROM {self._table('stock_levels')}
            {_where(conditions)}
            ORDER BY location_id, item_id
            LIMIT ${len(params) - 1} OFFSET ${len(params)}
        '''
        async with self._db_errors("list_stock_levels"):
            rows = await self.db.query(query, params)
        return [StockLevel(**row) for row in rows]

    # ==================== Movements ====================

    async def append_movement(self, movement: StockMovement) -> StockMovement:
        """Append a movement; an existing idempotency_key returns the stored row"""
        insert = f'''
            INSERT INTO {self._table('stock_movements')} ({_MOVEMENT_COLUMNS})
            VALUES ($1, $2, $3, $4, $5, $6, $7, $8, $9, $10, $11, $12, $13, $14, $15)
            ON CONFLICT (idempotency_key) DO NOTHING
            RETURNING {_MOVEMENT_COLUMNS}
        '''
        params = [
            movement.movement_id, movement.item_id, movement.location_id,
            movement.movement_type.value, movement.quantity_delta,
            movement.quantity_before, movement.quantity_after,
            movement.reserved_before, movement.reserved_after, movement.reason,
            movement.actor_ref, movement.reference_id, movement.stock_version,
            movement.idempotency_key, movement.occurred_at,
        ]
        async with self._db_errors("append_movement"):
            row = await self.db.query_row(insert, params)
            if row is None:
                row = await self.db.query_row(
                    f"SELECT {_MOVEMENT_COLUMNS} FROM {self._table('stock_movements')} "
                    f"WHERE idempotency_key = $1",
                    [movement.idempotency_key],
                )
                logger.debug(f"Movement {movement.idempotency_key} already recorded")
        return StockMovement(**row)

    async def get_movement_by_key(self, idempotency_key: str) -> Optional[StockMovement]:
        """Get the movement recorded under an idempotency key"""
        query = (
            f"SELECT {_MOVEMENT_COLUMNS} FROM {self._table('stock_movements')} "
            f"WHERE idempotency_key = $1"
        )
        async with self._db_errors("get_movement_by_key"):
            row = await self.db.query_row(query, [idempotency_key])
        return StockMovement(**row) if row else None

    async def list_movements(self, filters: MovementFilter) -> List[StockMovement]:
        """List movements, newest first"""
        conditions, params = self._common_conditions(
            filters.item_id, filters.location_id, filters.start_time, filters.end_time, "occurred_at"
        )
        if filters.movement_type:
            params.append(filters.movement_type.value)
            conditions.append(f"movement_type = ${len(params)}")
        if filters.reference_id:
            params.append(filters.reference_id)
            conditions.append(f"reference_id = ${len(params)}")

        params.extend([filters.limit, filters.offset])
        query = f'''
            SELECT {_MOVEMENT_COLUMNS} FROM {self._table('stock_movements')}
            {_where(conditions)}
            ORDER BY occurred_at DESC, stock_version DESC
            LIMIT ${len(params) - 1} OFFSET ${len(params)}
        '''
        async with self._db_errors("list_movements"):
            rows = await self.db.query(query, params)
        return [StockMovement(**row) for row in rows]

    # ==================== Reservations ====================

    async def create_reservation(self, reservation: StockReservation) -> StockReservation:
        """Store a new reservation"""
        query = f'''
            INSERT INTO {self._table('stock_reservations')} ({_RESERVATION_COLUMNS})
            VALUES ($1, $2, $3, $4, $5, $6, $7, $8, $9, $10, $11, $12, $13)
            RETURNING {_RESERVATION_COLUMNS}
        '''
        params = [
            reservation.reservation_id, reservation.item_id, reservation.location_id,
            reservation.quantity, reservation.holder_ref, reservation.status.value,
            reservation.created_at, reservation.expires_at, reservation.updated_at,
            reservation.committed_at, reservation.released_at,
            reservation.release_reason, reservation.reference_id,
        ]
        async with self._db_errors("create_reservation"):
            row = await self.db.query_row(query, params)
        return StockReservation(**row)

    async def get_reservation(self, reservation_id: str) -> Optional[StockReservation]:
        """Get reservation by ID"""
        query = (
            f"SELECT {_RESERVATION_COLUMNS} FROM {self._table('stock_reservations')} "
            f"WHERE reservation_id = $1"
        )
        async with self._db_errors("get_reservation"):
            row = await self.db.query_row(query, [reservation_id])
        return StockReservation(**row) if row else None

    async def transition_reservation(
        self,
        reservation_id: str,
        from_status: ReservationStatus,
        updates: Dict[str, Any],
    ) -> Optional[StockReservation]:
        """Apply updates iff the stored status equals from_status"""
        unknown = set(updates) - _RESERVATION_UPDATABLE
        if unknown:
            raise ValueError(f"Cannot update reservation columns: {sorted(unknown)}")

        params: List[Any] = [reservation_id, from_status.value]
        assignments = []
        for column, value in updates.items():
            params.append(value.value if isinstance(value, ReservationStatus) else value)
            assignments.append(f"{column} = ${len(params)}")

        query = f'''
            UPDATE {self._table('stock_reservations')}
            SET {', '.join(assignments)}
            WHERE reservation_id = $1 AND status = $2
            RETURNING {_RESERVATION_COLUMNS}
        '''
        async with self._db_errors("transition_reservation"):
            row = await self.db.query_row(query, params)
        return StockReservation(**row) if row else None

    async def update_reservation_expiry(
        self, reservation_id: str, expires_at: datetime
    ) -> Optional[StockReservation]:
        """Move expires_at while the reservation is active"""
        return await self.transition_reservation(
            reservation_id,
            ReservationStatus.ACTIVE,
            {"expires_at": expires_at, "updated_at": datetime.now(expires_at.tzinfo)},
        )

    async def list_reservations(self, filters: ReservationFilter) -> List[StockReservation]:
        """List reservations, newest first"""
        conditions, params = self._common_conditions(
            filters.item_id, filters.location_id, filters.start_time, filters.end_time, "created_at"
        )
        if filters.holder_ref:
            params.append(filters.holder_ref)
            conditions.append(f"holder_ref = ${len(params)}")
        if filters.status:
            params.append(filters.status.value)
            conditions.append(f"status = ${len(params)}")

        params.extend([filters.limit, filters.offset])
        query = f'''
            SELECT {_RESERVATION_COLUMNS} FROM {self._table('stock_reservations')}
            {_where(conditions)}
            ORDER BY created_at DESC
            LIMIT ${len(params) - 1} OFFSET ${len(params)}
        '''
        async with self._db_errors("list_reservations"):
            rows = await self.db.query(query, params)
        return [StockReservation(**row) for row in rows]

    async def list_expired_reservations(self, now: datetime, limit: int) -> List[StockReservation]:
        """Active reservations with expires_at < now, oldest first"""
        query = f'''
            SELECT {_RESERVATION_COLUMNS} FROM {self._table('stock_reservations')}
            WHERE status = $1 AND expires_at < $2
            ORDER BY expires_at ASC
            LIMIT $3
        '''
        async with self._db_errors("list_expired_reservations"):
            rows = await self.db.query(query, [ReservationStatus.ACTIVE.value, now, limit])
        return [StockReservation(**row) for row in rows]

    # ==================== Alerts ====================

    async def get_alert(self, alert_id: str) -> Optional[StockAlert]:
        """Get alert by ID"""
        query = f"SELECT {_ALERT_COLUMNS} FROM {self._table('stock_alerts')} WHERE alert_id = $1"
        async with self._db_errors("get_alert"):
            row = await self.db.query_row(query, [alert_id])
        return StockAlert(**row) if row else None

    async def get_alert_by_key(
        self, item_id: str, location_id: str, alert_type: AlertType
    ) -> Optional[StockAlert]:
        """Get the alert record for (item, location, type)"""
        query = (
            f"SELECT {_ALERT_COLUMNS} FROM {self._table('stock_alerts')} "
            f"WHERE item_id = $1 AND location_id = $2 AND alert_type = $3"
        )
        async with self._db_errors("get_alert_by_key"):
            row = await self.db.query_row(query, [item_id, location_id, alert_type.value])
        return StockAlert(**row) if row else None

    async def upsert_alert(self, alert: StockAlert) -> StockAlert:
        """Insert or replace the alert for its (item, location, type)"""
        query = f'''
            INSERT INTO {self._table('stock_alerts')} ({_ALERT_COLUMNS})
            VALUES ($1, $2, $3, $4, $5, $6, $7, $8, $9, $10, $11, $12, $13, $14, $15, $16, $17, $18)
            ON CONFLICT (item_id, location_id, alert_type) DO UPDATE SET
                threshold_value = EXCLUDED.threshold_value,
                current_value = EXCLUDED.current_value,
                priority = EXCLUDED.priority,
                status = EXCLUDED.status,
                condition_active = EXCLUDED.condition_active,
                snoozed_until = EXCLUDED.snoozed_until,
                resolution_notes = EXCLUDED.resolution_notes,
                triggered_at = EXCLUDED.triggered_at,
                acknowledged_at = EXCLUDED.acknowledged_at,
                acknowledged_by = EXCLUDED.acknowledged_by,
                resolved_at = EXCLUDED.resolved_at,
                resolved_by = EXCLUDED.resolved_by,
                updated_at = EXCLUDED.updated_at
            RETURNING {_ALERT_COLUMNS}
        '''
        params = [
            alert.alert_id, alert.item_id, alert.location_id, alert.alert_type.value,
            alert.threshold_value, alert.current_value, alert.priority.value,
            alert.status.value, alert.condition_active, alert.snoozed_until,
            alert.resolution_notes, alert.triggered_at, alert.acknowledged_at,
            alert.acknowledged_by, alert.resolved_at, alert.resolved_by,
            alert.created_at, alert.updated_at,
        ]
        async with self._db_errors("upsert_alert"):
            row = await self.db.query_row(query, params)
        return StockAlert(**row)

    async def list_alerts(self, filters: AlertFilter) -> List[StockAlert]:
        """List alerts, newest first"""
        conditions, params = self._common_conditions(
            filters.item_id, filters.location_id, filters.start_time, filters.end_time, "triggered_at"
        )
        if filters.alert_type:
            params.append(filters.alert_type.value)
            conditions.append(f"alert_type = ${len(params)}")
        if filters.status:
            params.append(filters.status.value)
            conditions.append(f"status = ${len(params)}")

        params.extend([filters.limit, filters.offset])
        query = f'''
            SELECT {_ALERT_COLUMNS} FROM {self._table('stock_alerts')}
            {_where(conditions)}
            ORDER BY triggered_at DESC
            LIMIT ${len(params) - 1} OFFSET ${len(params)}
        '''
        async with self._db_errors("list_alerts"):
            rows = await self.db.query(query, params)
        return [StockAlert(**row) for row in rows]

    # ==================== Helpers ====================

    @staticmethod
    def _common_conditions(
        item_id: Optional[str],
        location_id: Optional[str],
        start_time: Optional[datetime],
        end_time: Optional[datetime],
        time_column: str,
    ) -> Tuple[List[str], List[Any]]:
        conditions: List[str] = []
        params: List[Any] = []
        if item_id:
            params.append(item_id)
            conditions.append(f"item_id = ${len(params)}")
        if location_id:
            params.append(location_id)
            conditions.append(f"location_id = ${len(params)}")
        if start_time:
            params.append(start_time)
            conditions.append(f"{time_column} >= ${len(params)}")
        if end_time:
            params.append(end_time)
            conditions.append(f"{time_column} <= ${len(params)}")
        return conditions, params
