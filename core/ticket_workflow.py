"""
Ticket Workflow Engine for the subscription ticket bot.

This module drives a ticket through the purchase chain: open, select plan,
select payment method, claim paid, staff confirmation, email collection and
close, plus the orthogonal staff claim. Every transition checks its guard,
writes a field-scoped patch, posts a notice to the ticket channel and
appends an audit entry.
"""

import asyncio
import logging
import secrets
import string
from contextlib import asynccontextmanager
from dataclasses import dataclass, field, replace
from datetime import datetime
from typing import Dict, List, Optional, Tuple

from config.config_manager import ConfigManager
from core.actions import (
    EMAIL_BUTTON,
    Actor,
    ClaimPaid,
    ClaimTicket,
    CloseTicket,
    ConfirmPayment,
    DenyPayment,
    OpenTicket,
    SelectPaymentMethod,
    SelectPlan,
    SubmitEmail,
    WorkflowAction,
    custom_id
)
from core.audit import AuditTrail
from core.catalog import CatalogStore
from core.messaging import (
    ActionStyle,
    MessagingService,
    Notice,
    NoticeAction,
    NoticeColor,
    NoticeFile,
    format_date
)
from core.subscription_manager import SubscriptionManager
from core.transcript import transcript_file
from database.adapter import DatabaseAdapter
from errors.exceptions import (
    DatabaseError,
    ExternalUnavailableError,
    NotFoundError,
    PreconditionFailed,
    RejectionReason,
    TicketBotError,
    TicketNotFoundError,
    ValidationError
)
from models.catalog import Panel, PaymentMethod, Plan
from models.subscription import Payment, PaymentStatus, Subscription
from models.ticket import Ticket, TicketStatus
from models.timestamps import ensure_utc, utcnow

logger = logging.getLogger(__name__)


TICKET_ID_LENGTH = 8
TICKET_ID_ATTEMPTS = 5

# Discord allows 25 buttons per message; keep room for close/claim
MAX_OPTION_BUTTONS = 20


@dataclass
class WorkflowResult:
    """
    Outcome of a successful transition.

    Attributes:
        ticket: Ticket after the transition
        message: Short confirmation for the acting user
        subscription: Subscription produced by the email step, if any
    """
    ticket: Optional[Ticket]
    message: str
    subscription: Optional[Subscription] = None


@dataclass
class _MemberLock:
    lock: asyncio.Lock = field(default_factory=asyncio.Lock)
    users: int = 0


def _mention(user_id: int) -> str:
    return f"<@{user_id}>"


class TicketWorkflowEngine:
    """
    State machine for subscription purchase tickets.

    Guards are evaluated against freshly read state on every call. Writes
    that can race (payment confirmation, staff claim, close) go through the
    adapter's compare-and-swap methods; the loser is rejected instead of
    overwriting the winner.
    """

    def __init__(self, database: DatabaseAdapter, catalog: CatalogStore,
                 messaging: MessagingService, subscriptions: SubscriptionManager,
                 config: ConfigManager, audit: AuditTrail):
        """
        Initialize TicketWorkflowEngine.

        Args:
            database: Persistent store
            catalog: Plan, method and price lookups
            messaging: Chat platform collaborator
            subscriptions: Subscription lifecycle manager
            config: Global and per-guild settings
            audit: Audit trail for transitions
        """
        self.database = database
        self.catalog = catalog
        self.messaging = messaging
        self.subscriptions = subscriptions
        self.config = config
        self.audit = audit
        self._open_locks: Dict[Tuple[int, int], _MemberLock] = {}
        self._pending_deletions: Dict[str, asyncio.Task] = {}
        self._handlers = {
            OpenTicket: self.open_ticket,
            SelectPlan: self.select_plan,
            SelectPaymentMethod: self.select_payment_method,
            ClaimPaid: self.claim_paid,
            ConfirmPayment: self.confirm_payment,
            DenyPayment: self.deny_payment,
            SubmitEmail: self.submit_email,
            CloseTicket: self.close_ticket,
            ClaimTicket: self.claim_ticket,
        }

    async def dispatch(self, action: WorkflowAction) -> WorkflowResult:
        """
        Validate an action and run its transition.

        Raises:
            ValidationError: If the action payload is malformed
            PreconditionFailed: If the transition's guard does not hold
            NotFoundError: If the ticket, panel, plan or method is missing
        """
        handler = self._handlers.get(type(action))
        if handler is None:
            raise ValidationError(f"Unsupported workflow action: {type(action).__name__}")
        action.validate()
        return await handler(action)

    # Helpers

    def _generate_ticket_id(self) -> str:
        """
        Generate a ticket ID.

        Returns:
            str: 8 characters from upper-case letters and digits
        """
        alphabet = string.ascii_uppercase + string.digits
        return ''.join(secrets.choice(alphabet) for _ in range(TICKET_ID_LENGTH))

    async def _unique_ticket_id(self) -> str:
        for _ in range(TICKET_ID_ATTEMPTS):
            ticket_id = self._generate_ticket_id()
            if await self.database.get_ticket(ticket_id) is None:
                return ticket_id
        raise DatabaseError("Failed to generate unique ticket ID", operation='create_ticket')

    @asynccontextmanager
    async def _member_lock(self, guild_id: int, user_id: int):
        """Serialize ticket opening per member; the entry is dropped once nobody holds or waits on it."""
        key = (guild_id, user_id)
        entry = self._open_locks.get(key)
        if entry is None:
            entry = self._open_locks[key] = _MemberLock()
        entry.users += 1
        try:
            async with entry.lock:
                yield
        finally:
            entry.users -= 1
            if entry.users == 0:
                del self._open_locks[key]

    async def _get_ticket(self, ticket_id: str) -> Ticket:
        ticket = await self.database.get_ticket(ticket_id)
        if ticket is None:
            raise TicketNotFoundError(ticket_id)
        return ticket

    async def _get_open_ticket(self, ticket_id: str) -> Ticket:
        ticket = await self._get_ticket(ticket_id)
        if not ticket.is_open:
            raise PreconditionFailed(RejectionReason.TICKET_CLOSED, f"Ticket {ticket_id} is closed")
        return ticket

    async def _find_panel(self, ticket: Ticket) -> Optional[Panel]:
        if ticket.panel_id is None:
            return None
        return await self.database.get_panel(ticket.panel_id)

    def _require_owner(self, ticket: Ticket, actor: Actor) -> None:
        if actor.user_id != ticket.user_id:
            raise PreconditionFailed(
                RejectionReason.NOT_OWNER,
                f"User {actor.user_id} does not own ticket {ticket.ticket_id}"
            )

    def is_staff(self, actor: Actor, panel: Optional[Panel] = None) -> bool:
        """
        Check whether a member counts as staff for a ticket.

        Administrators always do; otherwise the member needs one of the
        guild's staff roles or the panel's staff role.
        """
        if actor.is_admin:
            return True

        guild_config = self.config.get_guild_config(actor.guild_id)
        if any(role_id in actor.role_ids for role_id in guild_config.staff_roles):
            return True

        return panel is not None and panel.staff_role_id is not None and panel.staff_role_id in actor.role_ids

    async def _require_staff(self, ticket: Ticket, actor: Actor) -> None:
        panel = await self._find_panel(ticket)
        if not self.is_staff(actor, panel):
            raise PreconditionFailed(
                RejectionReason.NOT_STAFF,
                f"User {actor.user_id} is not staff for ticket {ticket.ticket_id}"
            )

    def _require_unconfirmed(self, ticket: Ticket) -> None:
        if ticket.payment_confirmed:
            raise PreconditionFailed(
                RejectionReason.ALREADY_CONFIRMED,
                f"Payment for ticket {ticket.ticket_id} is already confirmed"
            )

    async def _require_no_pending_claim(self, ticket: Ticket) -> None:
        """The plan and method are locked while staff review a payment claim."""
        payment = await self.database.get_latest_payment(ticket.ticket_id)
        if payment is not None and payment.status == PaymentStatus.PENDING:
            raise PreconditionFailed(
                RejectionReason.WRONG_STAGE,
                f"Ticket {ticket.ticket_id} has payment {payment.payment_id} awaiting review",
                user_message="Your payment is being reviewed; the plan and payment method can no longer be changed."
            )

    async def _patch_open_ticket(self, ticket: Ticket, updates: dict) -> None:
        """Apply a business-field patch; a concurrent close wins."""
        if not await self.database.update_ticket(ticket.ticket_id, updates):
            raise PreconditionFailed(
                RejectionReason.TICKET_CLOSED,
                f"Ticket {ticket.ticket_id} was closed before the update"
            )
        for key, value in updates.items():
            setattr(ticket, key, value)

    async def _post(self, ticket: Ticket, notice: Notice) -> bool:
        result = await self.messaging.send_channel_notice(ticket.channel_id, notice)
        if not result.ok:
            logger.warning(f"Failed to post notice '{notice.title}' in ticket {ticket.ticket_id}: {result.error}")
        return result.ok

    async def _post_log(self, ticket: Ticket, notice: Notice) -> None:
        """Mirror a notice to the panel's (or guild's) log channel, if any."""
        panel = await self._find_panel(ticket)
        channel_id = panel.log_channel_id if panel and panel.log_channel_id else None
        if channel_id is None:
            channel_id = self.config.get_guild_config(ticket.guild_id).log_channel
        if channel_id is None:
            return

        result = await self.messaging.send_channel_notice(channel_id, notice)
        if not result.ok:
            logger.warning(f"Failed to post log for ticket {ticket.ticket_id}: {result.error}")

    def _close_action(self, ticket: Ticket) -> NoticeAction:
        return NoticeAction(
            label="Close Ticket",
            custom_id=custom_id(CloseTicket.operation, ticket.ticket_id),
            style=ActionStyle.DANGER,
            emoji="🔒"
        )

    # Notices

    async def _plan_catalog_notice(self, ticket: Ticket, plans: List[Plan]) -> Notice:
        notice = Notice(
            title="Choose Your Subscription Plan",
            description="Select a plan below to get started.",
            color=NoticeColor.PRIMARY,
            content=_mention(ticket.user_id),
            footer=f"Ticket {ticket.ticket_id}"
        )

        if not plans:
            notice.description = "No plans are available right now. A staff member will assist you shortly."

        for plan in plans[:MAX_OPTION_BUTTONS]:
            price = await self.catalog.resolve_price(plan)
            value = f"{price.format()} for {plan.duration_days} days"
            if plan.discount_percent:
                value += f" ({plan.discount_percent}% OFF)"
            name = f"⭐ {plan.name}" if plan.recommended else plan.name
            notice.add_field(name, value, inline=True)
            notice.actions.append(NoticeAction(
                label=f"{plan.name} - {price.format()}",
                custom_id=custom_id(SelectPlan.operation, ticket.ticket_id, plan.plan_id),
                style=ActionStyle.PRIMARY if plan.recommended else ActionStyle.SECONDARY
            ))

        notice.actions.append(NoticeAction(
            label="Claim",
            custom_id=custom_id(ClaimTicket.operation, ticket.ticket_id),
            style=ActionStyle.SUCCESS,
            emoji="🙋"
        ))
        notice.actions.append(self._close_action(ticket))
        return notice

    async def _method_notice(self, ticket: Ticket, plan: Plan,
                             methods: List[PaymentMethod]) -> Notice:
        notice = Notice(
            title="Select Payment Method",
            description=(
                f"**Plan:** {plan.name}\n"
                f"**Duration:** {plan.duration_days} days\n\n"
                f"Choose how you'd like to pay:"
            ),
            color=NoticeColor.PRIMARY
        )

        if not methods:
            notice.description += "\nNo payment methods are available right now. A staff member will assist you."

        quotes = await self.catalog.quote_payment_methods(plan, methods[:MAX_OPTION_BUTTONS])
        for method, price in quotes:
            label = f"{method.emoji} {method.label}" if method.emoji else method.label
            value = price.format()
            if method.recommended:
                value += " (Recommended)"
            notice.add_field(label, value, inline=True)
            notice.actions.append(NoticeAction(
                label=f"{method.label} - {price.format()}",
                custom_id=custom_id(SelectPaymentMethod.operation, ticket.ticket_id, method.method_id),
                style=ActionStyle.PRIMARY if method.recommended else ActionStyle.SECONDARY,
                emoji=method.emoji
            ))
        return notice

    # Transitions

    async def open_ticket(self, action: OpenTicket) -> WorkflowResult:
        """
        Open a ticket from a panel.

        Creates the private channel first and the ticket row second; if the
        row cannot be stored the channel is deleted again, so no ticket is
        left without a channel and no channel without a ticket.

        Raises:
            NotFoundError: If the panel does not exist in the actor's guild
            PreconditionFailed: PANEL_DISABLED, LIMIT_REACHED or COOLDOWN_ACTIVE
            ExternalUnavailableError: If the channel could not be created
        """
        actor = action.actor
        panel = await self.catalog.get_panel(action.panel_id)
        if panel.guild_id != actor.guild_id:
            raise NotFoundError('panel', action.panel_id)
        if not panel.enabled:
            raise PreconditionFailed(RejectionReason.PANEL_DISABLED, f"Panel {panel.panel_id} is disabled")

        async with self._member_lock(actor.guild_id, actor.user_id):
            open_tickets = await self.database.get_open_tickets_for_user(
                actor.guild_id, actor.user_id, panel_id=panel.panel_id
            )
            if len(open_tickets) >= panel.max_tickets_per_user:
                raise PreconditionFailed(
                    RejectionReason.LIMIT_REACHED,
                    f"User {actor.user_id} has {len(open_tickets)} open tickets on panel {panel.panel_id}"
                )

            now = utcnow()
            if panel.cooldown_seconds > 0:
                latest = await self.database.get_latest_ticket_for_user(
                    actor.guild_id, actor.user_id, panel.panel_id
                )
                if latest is not None:
                    elapsed = (now - ensure_utc(latest.created_at)).total_seconds()
                    if elapsed < panel.cooldown_seconds:
                        raise PreconditionFailed(
                            RejectionReason.COOLDOWN_ACTIVE,
                            f"User {actor.user_id} opened a ticket {elapsed:.0f}s ago"
                        )

            ticket_id = await self._unique_ticket_id()
            guild_config = self.config.get_guild_config(actor.guild_id)

            role_ids = list(guild_config.staff_roles)
            if panel.staff_role_id and panel.staff_role_id not in role_ids:
                role_ids.append(panel.staff_role_id)

            channel = await self.messaging.create_private_channel(
                guild_id=actor.guild_id,
                name=f"ticket-{ticket_id.lower()}",
                category_id=panel.category_id or guild_config.ticket_category,
                member_ids=[actor.user_id],
                role_ids=role_ids,
                topic=f"Subscription ticket {ticket_id} for user {actor.user_id}"
            )
            if not channel.ok:
                raise ExternalUnavailableError(
                    f"Failed to create channel for ticket {ticket_id}: {channel.error}",
                    operation='create_private_channel',
                    user_message="Could not create your ticket channel. Please try again later."
                )

            ticket = Ticket(
                ticket_id=ticket_id,
                guild_id=actor.guild_id,
                channel_id=channel.value,
                user_id=actor.user_id,
                panel_id=panel.panel_id,
                status=TicketStatus.OPEN,
                created_at=now
            )

            try:
                await self.database.create_ticket(ticket)
            except DatabaseError:
                cleanup = await self.messaging.delete_channel(
                    channel.value, reason=f"Ticket {ticket_id} could not be stored"
                )
                if not cleanup.ok:
                    logger.error(f"Orphan channel {channel.value} left for ticket {ticket_id}: {cleanup.error}")
                raise

        plans = await self.catalog.list_plans(actor.guild_id)
        await self._post(ticket, await self._plan_catalog_notice(ticket, plans))

        await self.audit.record(
            actor.guild_id, 'ticket_opened',
            actor_id=actor.user_id,
            ticket_id=ticket_id,
            panel_id=panel.panel_id,
            channel_id=channel.value
        )
        await self._post_log(ticket, Notice(
            title="🎫 Ticket Opened",
            description=f"{_mention(actor.user_id)} opened ticket `{ticket_id}` in <#{channel.value}>.",
            color=NoticeColor.SUCCESS
        ))

        logger.info(f"Opened ticket {ticket_id} for user {actor.user_id} in guild {actor.guild_id}")
        return WorkflowResult(ticket, f"Ticket created: <#{channel.value}>")

    async def select_plan(self, action: SelectPlan) -> WorkflowResult:
        ticket = await self._get_open_ticket(action.ticket_id)
        self._require_owner(ticket, action.actor)
        self._require_unconfirmed(ticket)
        await self._require_no_pending_claim(ticket)

        plan = await self.catalog.get_plan(action.plan_id, guild_id=ticket.guild_id)
        if not plan.enabled:
            raise NotFoundError('plan', action.plan_id)

        await self._patch_open_ticket(ticket, {'plan_id': plan.plan_id})

        methods = await self.catalog.list_payment_methods(ticket.guild_id)
        await self._post(ticket, await self._method_notice(ticket, plan, methods))

        await self.audit.record(
            ticket.guild_id, 'plan_selected',
            actor_id=action.actor.user_id,
            ticket_id=ticket.ticket_id,
            plan_id=plan.plan_id,
            plan=plan.name
        )
        return WorkflowResult(ticket, f"Selected plan: {plan.name}")

    async def select_payment_method(self, action: SelectPaymentMethod) -> WorkflowResult:
        ticket = await self._get_open_ticket(action.ticket_id)
        self._require_owner(ticket, action.actor)
        self._require_unconfirmed(ticket)
        await self._require_no_pending_claim(ticket)
        if ticket.plan_id is None:
            raise PreconditionFailed(
                RejectionReason.WRONG_STAGE,
                f"Ticket {ticket.ticket_id} has no plan selected"
            )

        method = await self.catalog.get_payment_method(action.method_id, guild_id=ticket.guild_id)
        if not method.enabled:
            raise NotFoundError('payment method', action.method_id)
        plan = await self.catalog.get_plan(ticket.plan_id)
        price = await self.catalog.resolve_price(plan, method)

        await self._patch_open_ticket(ticket, {'payment_method_id': method.method_id})

        notice = Notice(
            title=f"Payment via {method.label}",
            description=method.instructions or "Complete your payment, then click the button below.",
            color=NoticeColor.PRIMARY
        )
        notice.add_field("Plan", plan.name)
        notice.add_field("Amount", price.format())
        if method.payment_link:
            notice.add_field("Payment Link", method.payment_link, inline=False)
            notice.actions.append(NoticeAction(label="Pay Now", url=method.payment_link))
        notice.actions.append(NoticeAction(
            label="I Have Completed Payment",
            custom_id=custom_id(ClaimPaid.operation, ticket.ticket_id),
            style=ActionStyle.SUCCESS,
            emoji="✅"
        ))
        await self._post(ticket, notice)

        await self.audit.record(
            ticket.guild_id, 'payment_method_selected',
            actor_id=action.actor.user_id,
            ticket_id=ticket.ticket_id,
            method_id=method.method_id,
            method=method.label,
            amount=price.amount,
            currency=price.currency
        )
        return WorkflowResult(ticket, f"Selected payment method: {method.label}")

    async def claim_paid(self, action: ClaimPaid) -> WorkflowResult:
        """
        Record the member's claim that they paid and ask staff to verify.

        No ticket field changes; a pending payment row is created instead.
        """
        ticket = await self._get_open_ticket(action.ticket_id)
        self._require_owner(ticket, action.actor)
        self._require_unconfirmed(ticket)
        if ticket.plan_id is None or ticket.payment_method_id is None:
            raise PreconditionFailed(
                RejectionReason.WRONG_STAGE,
                f"Ticket {ticket.ticket_id} has no plan or payment method"
            )

        plan = await self.catalog.get_plan(ticket.plan_id)
        method = await self.catalog.get_payment_method(ticket.payment_method_id)
        price = await self.catalog.resolve_price(plan, method)

        payment = Payment(
            payment_id=None,
            guild_id=ticket.guild_id,
            ticket_id=ticket.ticket_id,
            user_id=ticket.user_id,
            amount=price.amount,
            currency=price.currency,
            payment_method=method.label,
            status=PaymentStatus.PENDING,
            created_at=utcnow()
        )
        payment.payment_id = await self.database.create_payment(payment)

        panel = await self._find_panel(ticket)
        notice = Notice(
            title="💰 Payment Submitted",
            description=f"{_mention(ticket.user_id)} reports the payment is complete.\nStaff, please verify and confirm.",
            color=NoticeColor.WARNING,
            content=f"<@&{panel.staff_role_id}>" if panel and panel.staff_role_id else None
        )
        notice.add_field("Plan", plan.name)
        notice.add_field("Amount", price.format())
        notice.add_field("Method", method.label)
        notice.actions.append(NoticeAction(
            label="Confirm Payment",
            custom_id=custom_id(ConfirmPayment.operation, ticket.ticket_id),
            style=ActionStyle.SUCCESS,
            emoji="✅"
        ))
        notice.actions.append(NoticeAction(
            label="Deny Payment",
            custom_id=custom_id(DenyPayment.operation, ticket.ticket_id),
            style=ActionStyle.DANGER,
            emoji="❌"
        ))
        await self._post(ticket, notice)

        await self.audit.record(
            ticket.guild_id, 'payment_claimed',
            actor_id=action.actor.user_id,
            ticket_id=ticket.ticket_id,
            payment_id=payment.payment_id,
            amount=price.amount,
            currency=price.currency,
            method=method.label
        )
        return WorkflowResult(ticket, "Payment submitted. A staff member will verify it shortly.")

    async def _require_pending_payment(self, ticket: Ticket) -> Payment:
        payment = await self.database.get_latest_payment(ticket.ticket_id)
        if payment is not None and payment.status == PaymentStatus.CONFIRMED:
            # Confirmed between our ticket read and this lookup
            raise PreconditionFailed(
                RejectionReason.ALREADY_CONFIRMED,
                f"Payment for ticket {ticket.ticket_id} was confirmed concurrently"
            )
        if payment is None or payment.status != PaymentStatus.PENDING:
            raise PreconditionFailed(
                RejectionReason.WRONG_STAGE,
                f"Ticket {ticket.ticket_id} has no pending payment claim"
            )
        return payment

    async def confirm_payment(self, action: ConfirmPayment) -> WorkflowResult:
        """
        Staff attests the member's payment.

        Raises:
            PreconditionFailed: NOT_STAFF, WRONG_STAGE (no pending claim) or
                ALREADY_CONFIRMED, including when another staff member
                confirmed first
        """
        ticket = await self._get_open_ticket(action.ticket_id)
        await self._require_staff(ticket, action.actor)
        self._require_unconfirmed(ticket)
        payment = await self._require_pending_payment(ticket)

        now = utcnow()
        staff_id = action.actor.user_id
        if not await self.database.confirm_ticket_payment(ticket.ticket_id, staff_id, now):
            current = await self._get_ticket(ticket.ticket_id)
            if not current.is_open:
                raise PreconditionFailed(RejectionReason.TICKET_CLOSED, f"Ticket {ticket.ticket_id} is closed")
            raise PreconditionFailed(
                RejectionReason.ALREADY_CONFIRMED,
                f"Payment for ticket {ticket.ticket_id} was confirmed concurrently"
            )

        if not await self.database.confirm_payment_record(payment.payment_id, staff_id, now):
            logger.warning(f"Payment {payment.payment_id} was no longer pending when ticket {ticket.ticket_id} was confirmed")
        ticket.payment_confirmed = True
        ticket.payment_confirmed_by = staff_id
        ticket.payment_confirmed_at = now

        notice = Notice(
            title="✅ Payment Confirmed",
            description=(
                f"Your payment has been verified by {_mention(staff_id)}.\n"
                f"Please enter the email address for your subscription."
            ),
            color=NoticeColor.SUCCESS,
            content=_mention(ticket.user_id)
        )
        notice.actions.append(NoticeAction(
            label="Enter Subscription Email",
            custom_id=custom_id(EMAIL_BUTTON, ticket.ticket_id),
            style=ActionStyle.PRIMARY,
            emoji="📧"
        ))
        await self._post(ticket, notice)

        await self.audit.record(
            ticket.guild_id, 'payment_confirmed',
            actor_id=staff_id,
            target_id=ticket.user_id,
            ticket_id=ticket.ticket_id,
            payment_id=payment.payment_id,
            amount=payment.amount,
            currency=payment.currency
        )
        await self._post_log(ticket, Notice(
            title="✅ Payment Confirmed",
            description=f"{_mention(staff_id)} confirmed payment on ticket `{ticket.ticket_id}` "
                        f"({payment.currency} {payment.amount:g}).",
            color=NoticeColor.SUCCESS
        ))

        logger.info(f"Payment {payment.payment_id} for ticket {ticket.ticket_id} confirmed by {staff_id}")
        return WorkflowResult(ticket, "Payment confirmed.")

    async def deny_payment(self, action: DenyPayment) -> WorkflowResult:
        """
        Staff rejects the claim.

        No ticket field changes. The payment record is marked denied, which
        unlocks the plan and method; the member may claim again.
        """
        ticket = await self._get_open_ticket(action.ticket_id)
        await self._require_staff(ticket, action.actor)
        self._require_unconfirmed(ticket)
        payment = await self._require_pending_payment(ticket)

        if not await self.database.deny_payment_record(payment.payment_id):
            # Reviewed by someone else between our read and this write
            await self._require_pending_payment(ticket)
            raise PreconditionFailed(
                RejectionReason.WRONG_STAGE,
                f"Payment {payment.payment_id} on ticket {ticket.ticket_id} was already reviewed"
            )

        notice = Notice(
            title="❌ Payment Denied",
            description=(
                f"{_mention(ticket.user_id)}, your payment could not be verified. "
                f"Please check it and click the button again once it has gone through."
            ),
            color=NoticeColor.DANGER,
            content=_mention(ticket.user_id)
        )
        if action.reason:
            notice.add_field("Reason", action.reason, inline=False)
        notice.actions.append(NoticeAction(
            label="I Have Completed Payment",
            custom_id=custom_id(ClaimPaid.operation, ticket.ticket_id),
            style=ActionStyle.SUCCESS,
            emoji="✅"
        ))
        await self._post(ticket, notice)

        await self.audit.record(
            ticket.guild_id, 'payment_denied',
            actor_id=action.actor.user_id,
            target_id=ticket.user_id,
            ticket_id=ticket.ticket_id,
            payment_id=payment.payment_id,
            reason=action.reason
        )
        return WorkflowResult(ticket, "Payment denied.")

    async def submit_email(self, action: SubmitEmail) -> WorkflowResult:
        """
        Collect the subscription email and create the subscription.

        Re-submitting after the subscription exists returns it unchanged.
        """
        ticket = await self._get_ticket(action.ticket_id)
        self._require_owner(ticket, action.actor)

        existing = await self.database.get_subscription_by_ticket(ticket.ticket_id)
        if existing is not None:
            return WorkflowResult(ticket, "Your subscription is already active.", existing)

        if not ticket.is_open:
            raise PreconditionFailed(RejectionReason.TICKET_CLOSED, f"Ticket {ticket.ticket_id} is closed")
        if not ticket.payment_confirmed:
            raise PreconditionFailed(
                RejectionReason.WRONG_STAGE,
                f"Ticket {ticket.ticket_id} has no confirmed payment"
            )

        # The ticket keeps no email unless the subscription row exists
        email = action.normalized_email
        subscription = await self.subscriptions.materialize(replace(ticket, email=email))

        if not await self.database.update_ticket(ticket.ticket_id, {'email': email}):
            logger.warning(f"Ticket {ticket.ticket_id} closed before its email was stored; "
                           f"subscription {subscription.subscription_id} stands")
        ticket.email = email

        notice = Notice(
            title="🎉 Subscription Activated!",
            description=f"{_mention(ticket.user_id)}, your subscription is now active. Thank you!",
            color=NoticeColor.SUCCESS
        )
        notice.add_field("Plan", subscription.plan_name)
        notice.add_field("Email", email)
        notice.add_field("Expires", format_date(subscription.end_date))
        notice.add_field("Subscription ID", str(subscription.subscription_id))
        notice.actions.append(self._close_action(ticket))
        await self._post(ticket, notice)

        await self.audit.record(
            ticket.guild_id, 'email_submitted',
            actor_id=action.actor.user_id,
            ticket_id=ticket.ticket_id,
            subscription_id=subscription.subscription_id
        )
        await self._post_log(ticket, Notice(
            title="🎉 Subscription Activated",
            description=f"{_mention(ticket.user_id)} subscribed to **{subscription.plan_name}** "
                        f"until {format_date(subscription.end_date)}.",
            color=NoticeColor.SUCCESS
        ))
        return WorkflowResult(ticket, "Subscription activated!", subscription)

    async def close_ticket(self, action: CloseTicket) -> WorkflowResult:
        """
        Close a ticket and schedule its channel for deletion.

        The channel is read back first: the transcript goes to the log
        channel and, unless the guild turned it off, to the opener by DM.
        Transcript delivery never blocks the close.

        Raises:
            PreconditionFailed: NOT_OWNER if the actor is neither the opener
                nor staff, TICKET_CLOSED if it is already closed
        """
        ticket = await self._get_open_ticket(action.ticket_id)
        actor = action.actor
        if actor.user_id != ticket.user_id:
            panel = await self._find_panel(ticket)
            if not self.is_staff(actor, panel):
                raise PreconditionFailed(
                    RejectionReason.NOT_OWNER,
                    f"User {actor.user_id} cannot close ticket {ticket.ticket_id}"
                )

        now = utcnow()
        if not await self.database.close_ticket(ticket.ticket_id, actor.user_id, now):
            raise PreconditionFailed(RejectionReason.TICKET_CLOSED, f"Ticket {ticket.ticket_id} is already closed")

        ticket.status = TicketStatus.CLOSED
        ticket.closed_by = actor.user_id
        ticket.closed_at = now

        delay = self.config.close_delay_seconds
        notice = Notice(
            title="🔒 Ticket Closed",
            description=f"This ticket was closed by {_mention(actor.user_id)}. "
                        f"The channel will be deleted in {delay:g} seconds.",
            color=NoticeColor.DANGER
        )
        if action.reason:
            notice.add_field("Reason", action.reason, inline=False)
        await self._post(ticket, notice)

        transcript = await self._transcript(ticket, now)

        await self.audit.record(
            ticket.guild_id, 'ticket_closed',
            actor_id=actor.user_id,
            target_id=ticket.user_id,
            ticket_id=ticket.ticket_id,
            reason=action.reason,
            transcript=transcript is not None
        )

        log_notice = Notice(
            title="🔒 Ticket Closed",
            description=f"Ticket `{ticket.ticket_id}` opened by {_mention(ticket.user_id)} "
                        f"was closed by {_mention(actor.user_id)}.",
            color=NoticeColor.DANGER
        )
        if transcript is not None:
            log_notice.files.append(transcript)
            await self._send_transcript_to_opener(ticket, transcript)
        await self._post_log(ticket, log_notice)

        self._schedule_deletion(ticket, delay)
        logger.info(f"Closed ticket {ticket.ticket_id} by user {actor.user_id}")
        return WorkflowResult(ticket, "Ticket closed.")

    async def claim_ticket(self, action: ClaimTicket) -> WorkflowResult:
        ticket = await self._get_open_ticket(action.ticket_id)
        await self._require_staff(ticket, action.actor)
        if ticket.claimed_by is not None:
            raise PreconditionFailed(
                RejectionReason.ALREADY_CLAIMED,
                f"Ticket {ticket.ticket_id} is claimed by {ticket.claimed_by}"
            )

        now = utcnow()
        staff_id = action.actor.user_id
        if not await self.database.claim_ticket(ticket.ticket_id, staff_id, now):
            current = await self._get_ticket(ticket.ticket_id)
            if not current.is_open:
                raise PreconditionFailed(RejectionReason.TICKET_CLOSED, f"Ticket {ticket.ticket_id} is closed")
            raise PreconditionFailed(
                RejectionReason.ALREADY_CLAIMED,
                f"Ticket {ticket.ticket_id} was claimed concurrently"
            )

        ticket.claimed_by = staff_id
        ticket.claimed_at = now

        await self._post(ticket, Notice(
            title="🙋 Ticket Claimed",
            description=f"{_mention(staff_id)} will be handling this ticket.",
            color=NoticeColor.INFO
        ))
        await self.audit.record(
            ticket.guild_id, 'ticket_claimed',
            actor_id=staff_id,
            target_id=ticket.user_id,
            ticket_id=ticket.ticket_id
        )
        return WorkflowResult(ticket, "You claimed this ticket.")

    # Transcripts

    async def _transcript(self, ticket: Ticket, now: datetime) -> Optional[NoticeFile]:
        """Read the channel back before it is deleted; None when it cannot be read."""
        history = await self.messaging.fetch_channel_history(ticket.channel_id)
        if not history.ok:
            logger.warning(f"No transcript for ticket {ticket.ticket_id}: {history.error}")
            return None
        return transcript_file(ticket, history.value, now)

    async def _send_transcript_to_opener(self, ticket: Ticket, transcript: NoticeFile) -> None:
        if not self.config.get_guild_config(ticket.guild_id).transcript_dm:
            return

        result = await self.messaging.send_direct_notice(ticket.user_id, Notice(
            title="📜 Ticket Transcript",
            description=f"Here's the transcript from your ticket `{ticket.ticket_id}`.",
            color=NoticeColor.INFO,
            files=[transcript]
        ))
        if not result.ok:
            logger.warning(f"Failed to send transcript of ticket {ticket.ticket_id} to user {ticket.user_id}: {result.error}")

    # Channel deletion after close

    def _schedule_deletion(self, ticket: Ticket, delay: float) -> None:
        task = asyncio.create_task(self._delete_after(ticket, delay))
        self._pending_deletions[ticket.ticket_id] = task
        task.add_done_callback(lambda _: self._pending_deletions.pop(ticket.ticket_id, None))

    async def _delete_after(self, ticket: Ticket, delay: float) -> None:
        await asyncio.sleep(delay)

        result = await self.messaging.delete_channel(ticket.channel_id, reason=f"Ticket {ticket.ticket_id} closed")
        if not result.ok:
            logger.warning(f"Failed to delete channel for ticket {ticket.ticket_id}: {result.error}")
            return

        if self.config.delete_closed_tickets:
            try:
                await self.database.delete_ticket(ticket.ticket_id)
            except TicketBotError as e:
                logger.error(f"Failed to delete record of closed ticket {ticket.ticket_id}: {e}")

    @property
    def pending_deletions(self) -> int:
        return len(self._pending_deletions)

    async def wait_for_deletions(self) -> None:
        """Wait until every scheduled channel deletion has run."""
        if self._pending_deletions:
            await asyncio.gather(*list(self._pending_deletions.values()), return_exceptions=True)

    async def shutdown(self) -> None:
        """Cancel scheduled deletions; their channels stay until removed by hand."""
        tasks = list(self._pending_deletions.values())
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        self._pending_deletions.clear()
