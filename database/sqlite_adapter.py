"""
SQLite database adapter implementation for the subscription ticket bot.
"""
import aiosqlite
import json
import logging
from contextlib import asynccontextmanager
from datetime import date, datetime, timedelta
from enum import Enum
from typing import List, Optional, Dict, Any, Iterable, Tuple
from pathlib import Path

from database.adapter import (
    DatabaseAdapter,
    DatabaseError,
    ConnectionError,
    DuplicateTicketError,
    DuplicateSubscriptionError
)
from models.catalog import Panel, Plan, PaymentMethod, PlanPricing
from models.subscription import (
    AuditEntry,
    DueReminder,
    Payment,
    PaymentStatus,
    Reminder,
    Subscription,
    SubscriptionStatus
)
from models.ticket import Ticket, TicketStatus, BUSINESS_FIELDS
from models.timestamps import ensure_utc, from_storage, parse_date, to_storage, utcnow


logger = logging.getLogger(__name__)


SCHEMA = [
    """
    CREATE TABLE IF NOT EXISTS panels (
        panel_id INTEGER PRIMARY KEY AUTOINCREMENT,
        guild_id INTEGER NOT NULL,
        channel_id INTEGER NOT NULL,
        category_id INTEGER NULL,
        staff_role_id INTEGER NULL,
        log_channel_id INTEGER NULL,
        max_tickets_per_user INTEGER NOT NULL DEFAULT 1,
        cooldown_seconds INTEGER NOT NULL DEFAULT 0,
        enabled INTEGER NOT NULL DEFAULT 1,
        title TEXT NOT NULL,
        description TEXT NOT NULL,
        button_label TEXT NOT NULL,
        message_id INTEGER NULL,
        created_at TIMESTAMP NULL
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS plans (
        plan_id INTEGER PRIMARY KEY AUTOINCREMENT,
        guild_id INTEGER NOT NULL,
        name TEXT NOT NULL,
        duration_days INTEGER NOT NULL,
        price REAL NOT NULL,
        currency TEXT NOT NULL DEFAULT 'INR',
        discount_percent INTEGER NOT NULL DEFAULT 0,
        enabled INTEGER NOT NULL DEFAULT 1,
        recommended INTEGER NOT NULL DEFAULT 0,
        display_order INTEGER NOT NULL DEFAULT 0
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS payment_methods (
        method_id INTEGER PRIMARY KEY AUTOINCREMENT,
        guild_id INTEGER NOT NULL,
        name TEXT NOT NULL,
        label TEXT NOT NULL,
        instructions TEXT NULL,
        emoji TEXT NULL,
        payment_link TEXT NULL,
        recommended INTEGER NOT NULL DEFAULT 0,
        enabled INTEGER NOT NULL DEFAULT 1,
        display_order INTEGER NOT NULL DEFAULT 0
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS plan_pricing (
        plan_id INTEGER NOT NULL,
        method_id INTEGER NOT NULL,
        price REAL NOT NULL,
        currency TEXT NOT NULL DEFAULT 'INR',
        PRIMARY KEY (plan_id, method_id)
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS tickets (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        ticket_id TEXT UNIQUE NOT NULL,
        guild_id INTEGER NOT NULL,
        channel_id INTEGER UNIQUE NOT NULL,
        user_id INTEGER NOT NULL,
        panel_id INTEGER NULL,
        status TEXT NOT NULL DEFAULT 'open',
        plan_id INTEGER NULL,
        payment_method_id INTEGER NULL,
        claimed_by INTEGER NULL,
        claimed_at TIMESTAMP NULL,
        payment_confirmed INTEGER NOT NULL DEFAULT 0,
        payment_confirmed_by INTEGER NULL,
        payment_confirmed_at TIMESTAMP NULL,
        email TEXT NULL,
        closed_by INTEGER NULL,
        closed_at TIMESTAMP NULL,
        created_at TIMESTAMP NOT NULL
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS subscriptions (
        subscription_id INTEGER PRIMARY KEY AUTOINCREMENT,
        guild_id INTEGER NOT NULL,
        user_id INTEGER NOT NULL,
        ticket_id TEXT UNIQUE NULL,
        plan_id INTEGER NULL,
        email TEXT NULL,
        plan_name TEXT NOT NULL,
        price REAL NOT NULL,
        currency TEXT NOT NULL,
        payment_method TEXT NULL,
        start_date TIMESTAMP NOT NULL,
        end_date TIMESTAMP NOT NULL,
        status TEXT NOT NULL DEFAULT 'active',
        created_at TIMESTAMP NULL
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS reminders (
        reminder_id INTEGER PRIMARY KEY AUTOINCREMENT,
        subscription_id INTEGER NOT NULL,
        user_id INTEGER NOT NULL,
        guild_id INTEGER NOT NULL,
        reminder_date TEXT NOT NULL,
        days_before INTEGER NOT NULL,
        sent INTEGER NOT NULL DEFAULT 0,
        sent_at TIMESTAMP NULL,
        error TEXT NULL,
        UNIQUE (subscription_id, reminder_date)
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS payments (
        payment_id INTEGER PRIMARY KEY AUTOINCREMENT,
        guild_id INTEGER NOT NULL,
        ticket_id TEXT NOT NULL,
        user_id INTEGER NOT NULL,
        amount REAL NOT NULL,
        currency TEXT NOT NULL,
        payment_method TEXT NULL,
        status TEXT NOT NULL DEFAULT 'pending',
        subscription_id INTEGER NULL,
        confirmed_by INTEGER NULL,
        confirmed_at TIMESTAMP NULL,
        created_at TIMESTAMP NULL
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS logs (
        log_id INTEGER PRIMARY KEY AUTOINCREMENT,
        guild_id INTEGER NOT NULL,
        action TEXT NOT NULL,
        actor_id INTEGER NULL,
        target_id INTEGER NULL,
        details TEXT NOT NULL DEFAULT '{}',
        created_at TIMESTAMP NOT NULL
    )
    """,
    "CREATE INDEX IF NOT EXISTS idx_panels_guild ON panels(guild_id)",
    "CREATE INDEX IF NOT EXISTS idx_plans_guild ON plans(guild_id, enabled)",
    "CREATE INDEX IF NOT EXISTS idx_methods_guild ON payment_methods(guild_id, enabled)",
    "CREATE INDEX IF NOT EXISTS idx_tickets_user ON tickets(guild_id, user_id, panel_id, status)",
    "CREATE INDEX IF NOT EXISTS idx_subscriptions_guild ON subscriptions(guild_id, status)",
    "CREATE INDEX IF NOT EXISTS idx_subscriptions_end ON subscriptions(status, end_date)",
    "CREATE INDEX IF NOT EXISTS idx_reminders_pending ON reminders(sent, reminder_date)",
    "CREATE INDEX IF NOT EXISTS idx_payments_ticket ON payments(ticket_id)",
    "CREATE INDEX IF NOT EXISTS idx_logs_guild ON logs(guild_id, created_at)",
]


# Columns a patch may touch, per table
PANEL_COLUMNS = frozenset({
    'channel_id', 'category_id', 'staff_role_id', 'log_channel_id', 'max_tickets_per_user',
    'cooldown_seconds', 'enabled', 'title', 'description', 'button_label', 'message_id'
})
TICKET_COLUMNS = frozenset(BUSINESS_FIELDS | {'status', 'closed_by', 'closed_at'})
SUBSCRIPTION_COLUMNS = frozenset({
    'email', 'plan_name', 'price', 'currency', 'payment_method', 'start_date', 'end_date', 'status'
})


def _to_db(value: Any) -> Any:
    """Convert a model value to its SQLite representation."""
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, bool):
        return int(value)
    if isinstance(value, datetime):
        return to_storage(value)
    if isinstance(value, date):
        return value.isoformat()
    if isinstance(value, dict):
        return json.dumps(value, default=str)
    return value


def _set_clause(updates: Dict[str, Any], allowed: Iterable[str]) -> Tuple[str, List[Any]]:
    """Build ``col = ?, ...`` for a patch, refusing unknown columns."""
    unknown = set(updates) - set(allowed)
    if unknown:
        raise DatabaseError(f"Unknown fields in update: {sorted(unknown)}")
    clauses = [f"{field} = ?" for field in updates]
    values = [_to_db(value) for value in updates.values()]
    return ", ".join(clauses), values


class SQLiteAdapter(DatabaseAdapter):
    """
    SQLite implementation of the DatabaseAdapter interface.

    Opens a short-lived connection per operation. Guarded transitions are
    single ``UPDATE ... WHERE <guard>`` statements, so they stay atomic when
    the workflow and the reminder scheduler write concurrently.
    """

    def __init__(self, connection_string: str, **kwargs):
        """
        Initialize SQLite adapter.

        Args:
            connection_string: Path to SQLite database file
            **kwargs: Additional configuration (timeout)
        """
        super().__init__(connection_string, **kwargs)
        self.db_path = connection_string
        self.timeout = kwargs.get('timeout', 30.0)
        self._schema_initialized = False

    async def connect(self) -> None:
        """
        Verify the database is reachable and create the schema.

        Raises:
            ConnectionError: If connection cannot be established
        """
        try:
            Path(self.db_path).parent.mkdir(parents=True, exist_ok=True)

            async with aiosqlite.connect(self.db_path, timeout=self.timeout) as conn:
                await conn.execute("SELECT 1")

            if not self._schema_initialized:
                await self._initialize_schema()
                self._schema_initialized = True

            logger.info(f"Connected to SQLite database: {self.db_path}")

        except Exception as e:
            logger.error(f"Failed to connect to SQLite database: {e}")
            raise ConnectionError(f"Failed to connect to SQLite database: {e}", operation='connect')

    async def disconnect(self) -> None:
        # Connections are per-operation; nothing stays open
        logger.info("Disconnected from SQLite database")

    async def is_connected(self) -> bool:
        try:
            async with aiosqlite.connect(self.db_path, timeout=self.timeout) as conn:
                await conn.execute("SELECT 1")
                return True
        except Exception:
            return False

    @asynccontextmanager
    async def _get_connection(self):
        """Open a connection for one operation; it is closed on exit."""
        async with aiosqlite.connect(self.db_path, timeout=self.timeout) as conn:
            conn.row_factory = aiosqlite.Row
            yield conn

    async def _initialize_schema(self) -> None:
        """Initialize database schema with tables and indexes."""
        try:
            async with self._get_connection() as conn:
                for statement in SCHEMA:
                    await conn.execute(statement)
                await conn.commit()
                logger.info("SQLite schema initialized successfully")

        except Exception as e:
            logger.error(f"Failed to initialize SQLite schema: {e}")
            raise DatabaseError(f"Failed to initialize schema: {e}", operation='initialize_schema')

    async def _fetch_one(self, query: str, params: Iterable[Any], operation: str):
        try:
            async with self._get_connection() as conn:
                cursor = await conn.execute(query, tuple(params))
                return await cursor.fetchone()
        except Exception as e:
            logger.error(f"Failed to {operation.replace('_', ' ')}: {e}")
            raise DatabaseError(f"Failed to {operation.replace('_', ' ')}: {e}", operation=operation)

    async def _fetch_all(self, query: str, params: Iterable[Any], operation: str):
        try:
            async with self._get_connection() as conn:
                cursor = await conn.execute(query, tuple(params))
                return await cursor.fetchall()
        except Exception as e:
            logger.error(f"Failed to {operation.replace('_', ' ')}: {e}")
            raise DatabaseError(f"Failed to {operation.replace('_', ' ')}: {e}", operation=operation)

    async def _execute(self, query: str, params: Iterable[Any], operation: str,
                       raise_integrity: bool = False) -> aiosqlite.Cursor:
        """Run one write statement and commit it."""
        try:
            async with self._get_connection() as conn:
                cursor = await conn.execute(query, tuple(params))
                await conn.commit()
                return cursor
        except aiosqlite.IntegrityError:
            if raise_integrity:
                raise
            logger.error(f"Integrity violation in {operation}: {query.split()[0]}")
            raise DatabaseError(f"Integrity violation in {operation}", operation=operation)
        except Exception as e:
            logger.error(f"Failed to {operation.replace('_', ' ')}: {e}")
            raise DatabaseError(f"Failed to {operation.replace('_', ' ')}: {e}", operation=operation)

    # Row mapping

    @staticmethod
    def _panel_from_row(row) -> Panel:
        return Panel(
            panel_id=row['panel_id'],
            guild_id=row['guild_id'],
            channel_id=row['channel_id'],
            category_id=row['category_id'],
            staff_role_id=row['staff_role_id'],
            log_channel_id=row['log_channel_id'],
            max_tickets_per_user=row['max_tickets_per_user'],
            cooldown_seconds=row['cooldown_seconds'],
            enabled=bool(row['enabled']),
            title=row['title'],
            description=row['description'],
            button_label=row['button_label'],
            message_id=row['message_id'],
            created_at=from_storage(row['created_at'])
        )

    @staticmethod
    def _plan_from_row(row) -> Plan:
        return Plan(
            plan_id=row['plan_id'],
            guild_id=row['guild_id'],
            name=row['name'],
            duration_days=row['duration_days'],
            price=row['price'],
            currency=row['currency'],
            discount_percent=row['discount_percent'],
            enabled=bool(row['enabled']),
            recommended=bool(row['recommended']),
            display_order=row['display_order']
        )

    @staticmethod
    def _method_from_row(row) -> PaymentMethod:
        return PaymentMethod(
            method_id=row['method_id'],
            guild_id=row['guild_id'],
            name=row['name'],
            label=row['label'],
            instructions=row['instructions'],
            emoji=row['emoji'],
            payment_link=row['payment_link'],
            recommended=bool(row['recommended']),
            enabled=bool(row['enabled']),
            display_order=row['display_order']
        )

    @staticmethod
    def _pricing_from_row(row) -> PlanPricing:
        return PlanPricing(
            plan_id=row['plan_id'],
            method_id=row['method_id'],
            price=row['price'],
            currency=row['currency']
        )

    @staticmethod
    def _ticket_from_row(row) -> Ticket:
        return Ticket.from_dict(dict(row))

    @staticmethod
    def _subscription_from_row(row) -> Subscription:
        return Subscription(
            subscription_id=row['subscription_id'],
            guild_id=row['guild_id'],
            user_id=row['user_id'],
            ticket_id=row['ticket_id'],
            plan_id=row['plan_id'],
            email=row['email'],
            plan_name=row['plan_name'],
            price=row['price'],
            currency=row['currency'],
            payment_method=row['payment_method'],
            start_date=from_storage(row['start_date']),
            end_date=from_storage(row['end_date']),
            status=SubscriptionStatus(row['status']),
            created_at=from_storage(row['created_at'])
        )

    @staticmethod
    def _reminder_from_row(row) -> Reminder:
        return Reminder(
            reminder_id=row['reminder_id'],
            subscription_id=row['subscription_id'],
            user_id=row['user_id'],
            guild_id=row['guild_id'],
            reminder_date=parse_date(row['reminder_date']),
            days_before=row['days_before'],
            sent=bool(row['sent']),
            sent_at=from_storage(row['sent_at']),
            error=row['error']
        )

    @staticmethod
    def _payment_from_row(row) -> Payment:
        return Payment(
            payment_id=row['payment_id'],
            guild_id=row['guild_id'],
            ticket_id=row['ticket_id'],
            user_id=row['user_id'],
            amount=row['amount'],
            currency=row['currency'],
            payment_method=row['payment_method'],
            status=PaymentStatus(row['status']),
            subscription_id=row['subscription_id'],
            confirmed_by=row['confirmed_by'],
            confirmed_at=from_storage(row['confirmed_at']),
            created_at=from_storage(row['created_at'])
        )

    # Catalog

    async def create_panel(self, panel: Panel) -> int:
        cursor = await self._execute("""
            INSERT INTO panels (
                guild_id, channel_id, category_id, staff_role_id, log_channel_id,
                max_tickets_per_user, cooldown_seconds, enabled, title, description,
                button_label, message_id, created_at
            ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
        """, (
            panel.guild_id, panel.channel_id, panel.category_id, panel.staff_role_id,
            panel.log_channel_id, panel.max_tickets_per_user, panel.cooldown_seconds,
            int(panel.enabled), panel.title, panel.description, panel.button_label,
            panel.message_id, to_storage(panel.created_at)
        ), 'create_panel')
        logger.info(f"Created panel {cursor.lastrowid} in guild {panel.guild_id}")
        return cursor.lastrowid

    async def get_panel(self, panel_id: int) -> Optional[Panel]:
        row = await self._fetch_one("SELECT * FROM panels WHERE panel_id = ?", (panel_id,), 'get_panel')
        return self._panel_from_row(row) if row else None

    async def get_panels(self, guild_id: int) -> List[Panel]:
        rows = await self._fetch_all(
            "SELECT * FROM panels WHERE guild_id = ? ORDER BY panel_id", (guild_id,), 'get_panels'
        )
        return [self._panel_from_row(row) for row in rows]

    async def update_panel(self, panel_id: int, updates: Dict[str, Any]) -> bool:
        if not updates:
            return False
        clause, values = _set_clause(updates, PANEL_COLUMNS)
        cursor = await self._execute(
            f"UPDATE panels SET {clause} WHERE panel_id = ?", values + [panel_id], 'update_panel'
        )
        return cursor.rowcount > 0

    async def create_plan(self, plan: Plan) -> int:
        cursor = await self._execute("""
            INSERT INTO plans (
                guild_id, name, duration_days, price, currency, discount_percent,
                enabled, recommended, display_order
            ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
        """, (
            plan.guild_id, plan.name, plan.duration_days, plan.price, plan.currency,
            plan.discount_percent, int(plan.enabled), int(plan.recommended), plan.display_order
        ), 'create_plan')
        logger.info(f"Created plan '{plan.name}' ({cursor.lastrowid}) in guild {plan.guild_id}")
        return cursor.lastrowid

    async def get_plan(self, plan_id: int) -> Optional[Plan]:
        row = await self._fetch_one("SELECT * FROM plans WHERE plan_id = ?", (plan_id,), 'get_plan')
        return self._plan_from_row(row) if row else None

    async def get_plans(self, guild_id: int, enabled_only: bool = True) -> List[Plan]:
        query = "SELECT * FROM plans WHERE guild_id = ?"
        if enabled_only:
            query += " AND enabled = 1"
        query += " ORDER BY display_order, duration_days"
        rows = await self._fetch_all(query, (guild_id,), 'get_plans')
        return [self._plan_from_row(row) for row in rows]

    async def create_payment_method(self, method: PaymentMethod) -> int:
        cursor = await self._execute("""
            INSERT INTO payment_methods (
                guild_id, name, label, instructions, emoji, payment_link,
                recommended, enabled, display_order
            ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
        """, (
            method.guild_id, method.name, method.label, method.instructions, method.emoji,
            method.payment_link, int(method.recommended), int(method.enabled), method.display_order
        ), 'create_payment_method')
        logger.info(f"Created payment method '{method.label}' ({cursor.lastrowid}) in guild {method.guild_id}")
        return cursor.lastrowid

    async def get_payment_method(self, method_id: int) -> Optional[PaymentMethod]:
        row = await self._fetch_one(
            "SELECT * FROM payment_methods WHERE method_id = ?", (method_id,), 'get_payment_method'
        )
        return self._method_from_row(row) if row else None

    async def get_payment_methods(self, guild_id: int, enabled_only: bool = True) -> List[PaymentMethod]:
        query = "SELECT * FROM payment_methods WHERE guild_id = ?"
        if enabled_only:
            query += " AND enabled = 1"
        query += " ORDER BY display_order, method_id"
        rows = await self._fetch_all(query, (guild_id,), 'get_payment_methods')
        return [self._method_from_row(row) for row in rows]

    async def set_plan_pricing(self, pricing: PlanPricing) -> None:
        await self._execute("""
            INSERT INTO plan_pricing (plan_id, method_id, price, currency)
            VALUES (?, ?, ?, ?)
            ON CONFLICT (plan_id, method_id)
            DO UPDATE SET price = excluded.price, currency = excluded.currency
        """, (pricing.plan_id, pricing.method_id, pricing.price, pricing.currency), 'set_plan_pricing')
        logger.info(f"Set price override for plan {pricing.plan_id} / method {pricing.method_id}")

    async def get_plan_pricing(self, plan_id: int, method_id: int) -> Optional[PlanPricing]:
        row = await self._fetch_one(
            "SELECT * FROM plan_pricing WHERE plan_id = ? AND method_id = ?",
            (plan_id, method_id), 'get_plan_pricing'
        )
        return self._pricing_from_row(row) if row else None

    async def get_pricing_for_plan(self, plan_id: int) -> List[PlanPricing]:
        rows = await self._fetch_all(
            "SELECT * FROM plan_pricing WHERE plan_id = ?", (plan_id,), 'get_pricing_for_plan'
        )
        return [self._pricing_from_row(row) for row in rows]

    # Tickets

    async def create_ticket(self, ticket: Ticket) -> str:
        """
        Create a new ticket in the database.

        Args:
            ticket: Ticket object to create

        Returns:
            str: The ticket ID of the created ticket

        Raises:
            DuplicateTicketError: If the ticket id or channel is already used
            DatabaseError: If creation fails
        """
        try:
            await self._execute("""
                INSERT INTO tickets (
                    ticket_id, guild_id, channel_id, user_id, panel_id, status,
                    plan_id, payment_method_id, claimed_by, claimed_at,
                    payment_confirmed, payment_confirmed_by, payment_confirmed_at,
                    email, closed_by, closed_at, created_at
                ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            """, (
                ticket.ticket_id,
                ticket.guild_id,
                ticket.channel_id,
                ticket.user_id,
                ticket.panel_id,
                ticket.status.value,
                ticket.plan_id,
                ticket.payment_method_id,
                ticket.claimed_by,
                to_storage(ticket.claimed_at),
                int(ticket.payment_confirmed),
                ticket.payment_confirmed_by,
                to_storage(ticket.payment_confirmed_at),
                ticket.email,
                ticket.closed_by,
                to_storage(ticket.closed_at),
                to_storage(ticket.created_at)
            ), 'create_ticket', raise_integrity=True)

            logger.info(f"Created ticket {ticket.ticket_id} in SQLite database")
            return ticket.ticket_id

        except aiosqlite.IntegrityError as e:
            if "UNIQUE constraint failed" in str(e):
                raise DuplicateTicketError(
                    f"Ticket {ticket.ticket_id} or channel {ticket.channel_id} already exists",
                    operation='create_ticket'
                )
            raise DatabaseError(f"Failed to create ticket: {e}", operation='create_ticket')

    async def get_ticket(self, ticket_id: str) -> Optional[Ticket]:
        row = await self._fetch_one("SELECT * FROM tickets WHERE ticket_id = ?", (ticket_id,), 'get_ticket')
        return self._ticket_from_row(row) if row else None

    async def get_ticket_by_channel(self, channel_id: int) -> Optional[Ticket]:
        row = await self._fetch_one(
            "SELECT * FROM tickets WHERE channel_id = ?", (channel_id,), 'get_ticket_by_channel'
        )
        return self._ticket_from_row(row) if row else None

    async def get_open_tickets_for_user(self, guild_id: int, user_id: int,
                                        panel_id: Optional[int] = None) -> List[Ticket]:
        query = "SELECT * FROM tickets WHERE guild_id = ? AND user_id = ? AND status = 'open'"
        params: List[Any] = [guild_id, user_id]
        if panel_id is not None:
            query += " AND panel_id = ?"
            params.append(panel_id)
        query += " ORDER BY created_at DESC"

        rows = await self._fetch_all(query, params, 'get_open_tickets_for_user')
        return [self._ticket_from_row(row) for row in rows]

    async def get_latest_ticket_for_user(self, guild_id: int, user_id: int,
                                         panel_id: int) -> Optional[Ticket]:
        row = await self._fetch_one("""
            SELECT * FROM tickets
            WHERE guild_id = ? AND user_id = ? AND panel_id = ?
            ORDER BY created_at DESC LIMIT 1
        """, (guild_id, user_id, panel_id), 'get_latest_ticket_for_user')
        return self._ticket_from_row(row) if row else None

    async def update_ticket(self, ticket_id: str, updates: Dict[str, Any]) -> bool:
        """
        Patch ticket fields.

        Args:
            ticket_id: Unique ticket identifier
            updates: Dictionary of field updates

        Returns:
            bool: True if the patch was applied

        Raises:
            DatabaseError: If update fails or names an unknown field
        """
        if not updates:
            return False

        clause, values = _set_clause(updates, TICKET_COLUMNS)
        query = f"UPDATE tickets SET {clause} WHERE ticket_id = ?"
        if BUSINESS_FIELDS.intersection(updates):
            query += " AND status = 'open'"

        cursor = await self._execute(query, values + [ticket_id], 'update_ticket')
        updated = cursor.rowcount > 0
        if updated:
            logger.info(f"Updated ticket {ticket_id}: {sorted(updates)}")
        return updated

    async def confirm_ticket_payment(self, ticket_id: str, staff_id: int,
                                     confirmed_at: datetime) -> bool:
        cursor = await self._execute("""
            UPDATE tickets
            SET payment_confirmed = 1, payment_confirmed_by = ?, payment_confirmed_at = ?
            WHERE ticket_id = ? AND status = 'open' AND payment_confirmed = 0
        """, (staff_id, to_storage(confirmed_at), ticket_id), 'confirm_ticket_payment')
        return cursor.rowcount > 0

    async def claim_ticket(self, ticket_id: str, staff_id: int, claimed_at: datetime) -> bool:
        cursor = await self._execute("""
            UPDATE tickets SET claimed_by = ?, claimed_at = ?
            WHERE ticket_id = ? AND status = 'open' AND claimed_by IS NULL
        """, (staff_id, to_storage(claimed_at), ticket_id), 'claim_ticket')
        return cursor.rowcount > 0

    async def close_ticket(self, ticket_id: str, closed_by: int, closed_at: datetime) -> bool:
        cursor = await self._execute("""
            UPDATE tickets SET status = ?, closed_by = ?, closed_at = ?
            WHERE ticket_id = ? AND status = ?
        """, (
            TicketStatus.CLOSED.value, closed_by, to_storage(closed_at),
            ticket_id, TicketStatus.OPEN.value
        ), 'close_ticket')
        closed = cursor.rowcount > 0
        if closed:
            logger.info(f"Closed ticket {ticket_id}")
        return closed

    async def delete_ticket(self, ticket_id: str) -> bool:
        cursor = await self._execute("DELETE FROM tickets WHERE ticket_id = ?", (ticket_id,), 'delete_ticket')
        deleted = cursor.rowcount > 0
        if deleted:
            logger.info(f"Deleted ticket {ticket_id} from SQLite database")
        return deleted

    async def count_tickets_by_guild(self, guild_id: int) -> Dict[str, int]:
        row = await self._fetch_one("""
            SELECT
                COUNT(*) AS total,
                COALESCE(SUM(CASE WHEN status = 'open' THEN 1 ELSE 0 END), 0) AS open,
                COALESCE(SUM(CASE WHEN status = 'closed' THEN 1 ELSE 0 END), 0) AS closed
            FROM tickets WHERE guild_id = ?
        """, (guild_id,), 'count_tickets_by_guild')
        return {'total': row['total'], 'open': row['open'], 'closed': row['closed']}

    # Subscriptions

    async def create_subscription(self, subscription: Subscription) -> int:
        try:
            cursor = await self._execute("""
                INSERT INTO subscriptions (
                    guild_id, user_id, ticket_id, plan_id, email, plan_name, price,
                    currency, payment_method, start_date, end_date, status, created_at
                ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            """, (
                subscription.guild_id,
                subscription.user_id,
                subscription.ticket_id,
                subscription.plan_id,
                subscription.email,
                subscription.plan_name,
                subscription.price,
                subscription.currency,
                subscription.payment_method,
                to_storage(subscription.start_date),
                to_storage(subscription.end_date),
                subscription.status.value,
                to_storage(subscription.created_at)
            ), 'create_subscription', raise_integrity=True)

            logger.info(f"Created subscription {cursor.lastrowid} for user {subscription.user_id}")
            return cursor.lastrowid

        except aiosqlite.IntegrityError as e:
            if "UNIQUE constraint failed" in str(e):
                raise DuplicateSubscriptionError(
                    f"Ticket {subscription.ticket_id} already has a subscription",
                    operation='create_subscription'
                )
            raise DatabaseError(f"Failed to create subscription: {e}", operation='create_subscription')

    async def get_subscription(self, subscription_id: int) -> Optional[Subscription]:
        row = await self._fetch_one(
            "SELECT * FROM subscriptions WHERE subscription_id = ?", (subscription_id,), 'get_subscription'
        )
        return self._subscription_from_row(row) if row else None

    async def get_subscription_by_ticket(self, ticket_id: str) -> Optional[Subscription]:
        row = await self._fetch_one(
            "SELECT * FROM subscriptions WHERE ticket_id = ?", (ticket_id,), 'get_subscription_by_ticket'
        )
        return self._subscription_from_row(row) if row else None

    async def get_subscriptions_by_guild(self, guild_id: int,
                                         status: Optional[SubscriptionStatus] = None,
                                         limit: Optional[int] = None) -> List[Subscription]:
        query = "SELECT * FROM subscriptions WHERE guild_id = ?"
        params: List[Any] = [guild_id]
        if status is not None:
            query += " AND status = ?"
            params.append(status.value)
        query += " ORDER BY created_at DESC, subscription_id DESC"
        if limit:
            query += " LIMIT ?"
            params.append(limit)

        rows = await self._fetch_all(query, params, 'get_subscriptions_by_guild')
        return [self._subscription_from_row(row) for row in rows]

    async def get_subscriptions_by_user(self, guild_id: int, user_id: int) -> List[Subscription]:
        rows = await self._fetch_all("""
            SELECT * FROM subscriptions WHERE guild_id = ? AND user_id = ?
            ORDER BY end_date DESC
        """, (guild_id, user_id), 'get_subscriptions_by_user')
        return [self._subscription_from_row(row) for row in rows]

    async def get_expiring_subscriptions(self, guild_id: int, days: int,
                                         now: datetime) -> List[Subscription]:
        rows = await self._fetch_all("""
            SELECT * FROM subscriptions
            WHERE guild_id = ? AND status = 'active' AND end_date > ? AND end_date <= ?
            ORDER BY end_date ASC
        """, (
            guild_id, to_storage(now), to_storage(now + timedelta(days=days))
        ), 'get_expiring_subscriptions')
        return [self._subscription_from_row(row) for row in rows]

    async def get_lapsed_subscriptions(self, now: datetime) -> List[Subscription]:
        rows = await self._fetch_all("""
            SELECT * FROM subscriptions WHERE status = 'active' AND end_date <= ?
            ORDER BY end_date ASC
        """, (to_storage(now),), 'get_lapsed_subscriptions')
        return [self._subscription_from_row(row) for row in rows]

    async def update_subscription(self, subscription_id: int, updates: Dict[str, Any]) -> bool:
        if not updates:
            return False
        clause, values = _set_clause(updates, SUBSCRIPTION_COLUMNS)
        cursor = await self._execute(
            f"UPDATE subscriptions SET {clause} WHERE subscription_id = ?",
            values + [subscription_id], 'update_subscription'
        )
        return cursor.rowcount > 0

    async def expire_subscription(self, subscription_id: int) -> bool:
        cursor = await self._execute("""
            UPDATE subscriptions SET status = 'expired'
            WHERE subscription_id = ? AND status = 'active'
        """, (subscription_id,), 'expire_subscription')
        return cursor.rowcount > 0

    async def get_subscription_stats(self, guild_id: int, now: datetime,
                                     window_days: int = 7) -> Dict[str, Any]:
        counts = await self._fetch_one("""
            SELECT
                COUNT(*) AS total,
                COALESCE(SUM(CASE WHEN status = 'active' THEN 1 ELSE 0 END), 0) AS active,
                COALESCE(SUM(CASE WHEN status = 'expired' THEN 1 ELSE 0 END), 0) AS expired,
                COALESCE(SUM(CASE WHEN status = 'cancelled' THEN 1 ELSE 0 END), 0) AS cancelled,
                COALESCE(SUM(CASE WHEN status = 'active' AND end_date > ? AND end_date <= ?
                             THEN 1 ELSE 0 END), 0) AS expiring_soon
            FROM subscriptions WHERE guild_id = ?
        """, (
            to_storage(now), to_storage(now + timedelta(days=window_days)), guild_id
        ), 'get_subscription_stats')

        revenue_rows = await self._fetch_all("""
            SELECT currency, SUM(price) AS amount FROM subscriptions
            WHERE guild_id = ? GROUP BY currency
        """, (guild_id,), 'get_subscription_stats')

        return {
            'total': counts['total'],
            'active': counts['active'],
            'expired': counts['expired'],
            'cancelled': counts['cancelled'],
            'expiring_soon': counts['expiring_soon'],
            'revenue': {row['currency']: row['amount'] for row in revenue_rows}
        }

    async def get_plan_stats(self, guild_id: int) -> List[Dict[str, Any]]:
        rows = await self._fetch_all("""
            SELECT plan_name, currency, COUNT(*) AS count, SUM(price) AS revenue
            FROM subscriptions WHERE guild_id = ?
            GROUP BY plan_name, currency
            ORDER BY count DESC, plan_name
        """, (guild_id,), 'get_plan_stats')
        return [
            {
                'plan_name': row['plan_name'],
                'currency': row['currency'],
                'count': row['count'],
                'revenue': row['revenue']
            }
            for row in rows
        ]

    # Reminders

    async def create_reminders(self, reminders: List[Reminder]) -> int:
        if not reminders:
            return 0

        inserted = 0
        try:
            async with self._get_connection() as conn:
                for reminder in reminders:
                    cursor = await conn.execute("""
                        INSERT OR IGNORE INTO reminders (
                            subscription_id, user_id, guild_id, reminder_date, days_before,
                            sent, sent_at, error
                        ) VALUES (?, ?, ?, ?, ?, ?, ?, ?)
                    """, (
                        reminder.subscription_id,
                        reminder.user_id,
                        reminder.guild_id,
                        reminder.reminder_date.isoformat(),
                        reminder.days_before,
                        int(reminder.sent),
                        to_storage(reminder.sent_at),
                        reminder.error
                    ))
                    inserted += cursor.rowcount
                await conn.commit()

        except Exception as e:
            logger.error(f"Failed to create reminders: {e}")
            raise DatabaseError(f"Failed to create reminders: {e}", operation='create_reminders')

        logger.info(f"Inserted {inserted} of {len(reminders)} reminders")
        return inserted

    async def get_pending_reminders(self, as_of: datetime) -> List[DueReminder]:
        rows = await self._fetch_all("""
            SELECT r.*, s.plan_name AS plan_name, s.end_date AS end_date
            FROM reminders r
            JOIN subscriptions s ON s.subscription_id = r.subscription_id
            WHERE r.sent = 0 AND r.error IS NULL
              AND r.reminder_date <= ?
              AND s.status = 'active'
            ORDER BY r.reminder_date ASC, r.reminder_id ASC
        """, (ensure_utc(as_of).date().isoformat(),), 'get_pending_reminders')
        return [
            DueReminder(
                reminder=self._reminder_from_row(row),
                plan_name=row['plan_name'],
                end_date=from_storage(row['end_date'])
            )
            for row in rows
        ]

    async def get_reminders_by_subscription(self, subscription_id: int) -> List[Reminder]:
        rows = await self._fetch_all("""
            SELECT * FROM reminders WHERE subscription_id = ?
            ORDER BY reminder_date ASC
        """, (subscription_id,), 'get_reminders_by_subscription')
        return [self._reminder_from_row(row) for row in rows]

    async def get_reminder_history(self, guild_id: int, limit: int = 25) -> List[Reminder]:
        rows = await self._fetch_all("""
            SELECT * FROM reminders
            WHERE guild_id = ? AND (sent = 1 OR error IS NOT NULL)
            ORDER BY reminder_date DESC, reminder_id DESC
            LIMIT ?
        """, (guild_id, limit), 'get_reminder_history')
        return [self._reminder_from_row(row) for row in rows]

    async def mark_reminder_sent(self, reminder_id: int, sent_at: datetime) -> bool:
        cursor = await self._execute("""
            UPDATE reminders SET sent = 1, sent_at = ?
            WHERE reminder_id = ? AND sent = 0
        """, (to_storage(sent_at), reminder_id), 'mark_reminder_sent')
        return cursor.rowcount > 0

    async def mark_reminder_error(self, reminder_id: int, error: str) -> bool:
        cursor = await self._execute("""
            UPDATE reminders SET error = ?
            WHERE reminder_id = ? AND sent = 0
        """, (error, reminder_id), 'mark_reminder_error')
        return cursor.rowcount > 0

    async def delete_unsent_reminders(self, subscription_id: int) -> int:
        cursor = await self._execute("""
            DELETE FROM reminders
            WHERE subscription_id = ? AND sent = 0 AND error IS NULL
        """, (subscription_id,), 'delete_unsent_reminders')
        return cursor.rowcount

    # Payments

    async def create_payment(self, payment: Payment) -> int:
        cursor = await self._execute("""
            INSERT INTO payments (
                guild_id, ticket_id, user_id, amount, currency, payment_method,
                status, subscription_id, confirmed_by, confirmed_at, created_at
            ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
        """, (
            payment.guild_id,
            payment.ticket_id,
            payment.user_id,
            payment.amount,
            payment.currency,
            payment.payment_method,
            payment.status.value,
            payment.subscription_id,
            payment.confirmed_by,
            to_storage(payment.confirmed_at),
            to_storage(payment.created_at)
        ), 'create_payment')
        logger.info(f"Recorded payment claim {cursor.lastrowid} for ticket {payment.ticket_id}")
        return cursor.lastrowid

    async def get_latest_payment(self, ticket_id: str) -> Optional[Payment]:
        row = await self._fetch_one("""
            SELECT * FROM payments WHERE ticket_id = ?
            ORDER BY payment_id DESC LIMIT 1
        """, (ticket_id,), 'get_latest_payment')
        return self._payment_from_row(row) if row else None

    async def confirm_payment_record(self, payment_id: int, staff_id: int,
                                     confirmed_at: datetime) -> bool:
        cursor = await self._execute("""
            UPDATE payments SET status = 'confirmed', confirmed_by = ?, confirmed_at = ?
            WHERE payment_id = ? AND status = 'pending'
        """, (staff_id, to_storage(confirmed_at), payment_id), 'confirm_payment_record')
        return cursor.rowcount > 0

    async def deny_payment_record(self, payment_id: int) -> bool:
        cursor = await self._execute("""
            UPDATE payments SET status = 'denied'
            WHERE payment_id = ? AND status = 'pending'
        """, (payment_id,), 'deny_payment_record')
        return cursor.rowcount > 0

    async def attach_subscription_to_payment(self, payment_id: int, subscription_id: int) -> bool:
        cursor = await self._execute(
            "UPDATE payments SET subscription_id = ? WHERE payment_id = ?",
            (subscription_id, payment_id), 'attach_subscription_to_payment'
        )
        return cursor.rowcount > 0

    # Logs

    async def create_log(self, entry: AuditEntry) -> int:
        cursor = await self._execute("""
            INSERT INTO logs (guild_id, action, actor_id, target_id, details, created_at)
            VALUES (?, ?, ?, ?, ?, ?)
        """, (
            entry.guild_id,
            entry.action,
            entry.actor_id,
            entry.target_id,
            json.dumps(entry.details, default=str),
            to_storage(entry.created_at or utcnow())
        ), 'create_log')
        return cursor.lastrowid

    async def get_logs(self, guild_id: int, limit: int = 50) -> List[AuditEntry]:
        rows = await self._fetch_all("""
            SELECT * FROM logs WHERE guild_id = ?
            ORDER BY log_id DESC LIMIT ?
        """, (guild_id, limit), 'get_logs')
        return [
            AuditEntry(
                log_id=row['log_id'],
                guild_id=row['guild_id'],
                action=row['action'],
                actor_id=row['actor_id'],
                target_id=row['target_id'],
                details=json.loads(row['details']) if row['details'] else {},
                created_at=from_storage(row['created_at'])
            )
            for row in rows
        ]
