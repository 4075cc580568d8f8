"""
Shared fixtures: a temporary SQLite database, configuration, a recording
messaging fake and the fully wired services.
"""
from types import SimpleNamespace
from typing import Dict, List, Optional, Sequence, Set, Tuple

import pytest

from config.config_manager import ConfigManager, GuildConfig
from core.actions import Actor
from core.audit import AuditTrail
from core.catalog import CatalogStore
from core.messaging import DeliveryResult, MessagingService, Notice, TranscriptMessage
from core.reminder_scheduler import ReminderScheduler
from core.subscription_manager import SubscriptionManager
from core.ticket_workflow import TicketWorkflowEngine
from database.sqlite_adapter import SQLiteAdapter
from models.catalog import Panel


GUILD_ID = 111111
USER_ID = 222222
OTHER_USER_ID = 222333
STAFF_ROLE_ID = 333333
STAFF_ID = 444444
OTHER_STAFF_ID = 444555
ADMIN_ID = 555555
PANEL_CHANNEL_ID = 900000
LOG_CHANNEL_ID = 900001


def member(user_id: int = USER_ID) -> Actor:
    return Actor(user_id=user_id, guild_id=GUILD_ID)


def staff(user_id: int = STAFF_ID) -> Actor:
    return Actor(user_id=user_id, guild_id=GUILD_ID, role_ids=frozenset({STAFF_ROLE_ID}))


def admin(user_id: int = ADMIN_ID) -> Actor:
    return Actor(user_id=user_id, guild_id=GUILD_ID, is_admin=True)


class FakeMessagingService(MessagingService):
    """Records every call; failures are switched on per test."""

    def __init__(self):
        self.next_channel_id = 700000
        self.channels: List[dict] = []
        self.channel_notices: List[Tuple[int, Notice]] = []
        self.direct_notices: List[Tuple[int, Notice]] = []
        self.deleted_channels: List[int] = []
        self.fail_channel_creation = False
        self.fail_channel_notices = False
        self.fail_delete = False
        self.dm_blocked: Set[int] = set()
        self.missing_users: Set[int] = set()
        self.lookup_failures: Set[int] = set()
        self.lookup_crashes: Set[int] = set()
        self.history: Dict[int, List[TranscriptMessage]] = {}
        self.fail_history = False

    async def create_private_channel(self, guild_id: int, name: str,
                                     category_id: Optional[int],
                                     member_ids: Sequence[int],
                                     role_ids: Sequence[int],
                                     topic: Optional[str] = None) -> DeliveryResult:
        if self.fail_channel_creation:
            return DeliveryResult.failure("Bot lacks permission to create channels")

        self.next_channel_id += 1
        self.channels.append({
            'channel_id': self.next_channel_id,
            'guild_id': guild_id,
            'name': name,
            'category_id': category_id,
            'member_ids': list(member_ids),
            'role_ids': list(role_ids),
            'topic': topic
        })
        return DeliveryResult.success(self.next_channel_id)

    async def send_channel_notice(self, channel_id: int, notice: Notice) -> DeliveryResult:
        if self.fail_channel_notices:
            return DeliveryResult.failure(f"Cannot send messages in channel {channel_id}")
        self.channel_notices.append((channel_id, notice))
        return DeliveryResult.success(len(self.channel_notices))

    async def send_direct_notice(self, user_id: int, notice: Notice) -> DeliveryResult:
        if user_id in self.dm_blocked:
            return DeliveryResult.failure(f"User {user_id} does not accept direct messages")
        self.direct_notices.append((user_id, notice))
        return DeliveryResult.success(len(self.direct_notices))

    async def fetch_user(self, user_id: int) -> DeliveryResult:
        if user_id in self.lookup_crashes:
            raise RuntimeError(f"lookup exploded for {user_id}")
        if user_id in self.lookup_failures:
            return DeliveryResult.failure(f"Failed to look up user {user_id}")
        if user_id in self.missing_users:
            return DeliveryResult.success(None)
        return DeliveryResult.success(SimpleNamespace(id=user_id))

    async def delete_channel(self, channel_id: int, reason: Optional[str] = None) -> DeliveryResult:
        if self.fail_delete:
            return DeliveryResult.failure(f"Bot lacks permission to delete channel {channel_id}")
        self.deleted_channels.append(channel_id)
        return DeliveryResult.success()

    async def fetch_channel_history(self, channel_id: int) -> DeliveryResult:
        if self.fail_history:
            return DeliveryResult.failure(f"Cannot read history of channel {channel_id}")
        return DeliveryResult.success(list(self.history.get(channel_id, [])))

    def notices_in(self, channel_id: int) -> List[Notice]:
        return [notice for target, notice in self.channel_notices if target == channel_id]

    def titles_in(self, channel_id: int) -> List[str]:
        return [notice.title for notice in self.notices_in(channel_id)]


@pytest.fixture
def db_path(tmp_path):
    return str(tmp_path / "tickets.db")


@pytest.fixture
async def database(db_path):
    adapter = SQLiteAdapter(db_path)
    await adapter.connect()
    yield adapter
    await adapter.disconnect()


@pytest.fixture
def config(tmp_path):
    manager = ConfigManager(str(tmp_path / "config.json"))
    manager.set_global_config('close_delay_seconds', 0)
    manager.set_global_config('reminder_startup_delay_seconds', 0)
    manager.set_guild_config(GuildConfig(guild_id=GUILD_ID, staff_roles=[STAFF_ROLE_ID]))
    return manager


@pytest.fixture
def messaging():
    return FakeMessagingService()


@pytest.fixture
def audit(database):
    return AuditTrail(database)


@pytest.fixture
def catalog(database):
    return CatalogStore(database)


@pytest.fixture
def subscriptions(database, config, audit, catalog):
    return SubscriptionManager(database, config, audit, catalog)


@pytest.fixture
async def workflow(database, catalog, messaging, subscriptions, config, audit):
    engine = TicketWorkflowEngine(database, catalog, messaging, subscriptions, config, audit)
    yield engine
    await engine.shutdown()


@pytest.fixture
def scheduler(database, messaging, config, audit):
    return ReminderScheduler(database, messaging, config, audit)


@pytest.fixture
async def shop(catalog):
    """A guild with one panel, two plans and two payment methods."""
    panel = await catalog.add_panel(Panel(
        panel_id=None,
        guild_id=GUILD_ID,
        channel_id=PANEL_CHANNEL_ID,
        staff_role_id=STAFF_ROLE_ID,
        log_channel_id=LOG_CHANNEL_ID
    ))
    month = await catalog.add_plan(GUILD_ID, '1 Month', 30, 199)
    quarter = await catalog.add_plan(GUILD_ID, '3 Months', 90, 499, recommended=True)
    upi = await catalog.add_payment_method(
        GUILD_ID, 'upi', 'UPI', instructions='Send payment to shop@upi', recommended=True
    )
    paypal = await catalog.add_payment_method(
        GUILD_ID, 'paypal', 'PayPal', payment_link='https://paypal.example/shop'
    )
    await catalog.set_price_override(month.plan_id, paypal.method_id, 3, 'USD')
    return SimpleNamespace(panel=panel, month=month, quarter=quarter, upi=upi, paypal=paypal)
