"""
Workflow input structs and component id routing.

Each ticket transition has its own frozen dataclass, tagged by
``operation`` and validated before any repository write. Button and modal
custom ids have the form ``ticket:<op>:<target>[:<arg>]``.
"""

import re
from dataclasses import dataclass, field
from typing import ClassVar, FrozenSet, Optional

from errors.exceptions import ValidationError


EMAIL_PATTERN = re.compile(r'^[^\s@]+@[^\s@]+\.[^\s@]+$')
EMAIL_MIN_LENGTH = 5
EMAIL_MAX_LENGTH = 100

CUSTOM_ID_PREFIX = 'ticket'


@dataclass(frozen=True)
class Actor:
    """
    The member performing an action.

    Attributes:
        user_id: Acting user
        guild_id: Guild the action happens in
        is_admin: Holds administrator or manage-server permission
        role_ids: Roles the member holds
    """
    user_id: int
    guild_id: int
    is_admin: bool = False
    role_ids: FrozenSet[int] = field(default_factory=frozenset)


def _require_positive(name: str, value) -> None:
    if not isinstance(value, int) or isinstance(value, bool) or value <= 0:
        raise ValidationError(f"Invalid {name}: {value!r}", field=name, value=value)


def _require_ticket_id(value) -> None:
    if not isinstance(value, str) or not value.strip():
        raise ValidationError(f"Invalid ticket_id: {value!r}", field='ticket_id', value=value)


def normalize_email(raw: str) -> str:
    """
    Trim and validate a subscription email.

    Raises:
        ValidationError: If the address is malformed or of the wrong length
    """
    email = (raw or '').strip()
    if not EMAIL_MIN_LENGTH <= len(email) <= EMAIL_MAX_LENGTH or not EMAIL_PATTERN.match(email):
        raise ValidationError(
            f"Invalid email address: {email!r}",
            field='email',
            value=email,
            user_message="Please enter a valid email address."
        )
    return email


@dataclass(frozen=True)
class WorkflowAction:
    operation: ClassVar[str] = ''

    actor: Actor

    def validate(self) -> None:
        _require_positive('user_id', self.actor.user_id)
        _require_positive('guild_id', self.actor.guild_id)


@dataclass(frozen=True)
class TicketAction(WorkflowAction):
    """An action on an existing ticket."""
    ticket_id: str = ''

    def validate(self) -> None:
        super().validate()
        _require_ticket_id(self.ticket_id)


@dataclass(frozen=True)
class OpenTicket(WorkflowAction):
    operation: ClassVar[str] = 'open'

    panel_id: int = 0

    def validate(self) -> None:
        super().validate()
        _require_positive('panel_id', self.panel_id)


@dataclass(frozen=True)
class SelectPlan(TicketAction):
    operation: ClassVar[str] = 'plan'

    plan_id: int = 0

    def validate(self) -> None:
        super().validate()
        _require_positive('plan_id', self.plan_id)


@dataclass(frozen=True)
class SelectPaymentMethod(TicketAction):
    operation: ClassVar[str] = 'pay'

    method_id: int = 0

    def validate(self) -> None:
        super().validate()
        _require_positive('method_id', self.method_id)


@dataclass(frozen=True)
class ClaimPaid(TicketAction):
    operation: ClassVar[str] = 'paid'


@dataclass(frozen=True)
class ConfirmPayment(TicketAction):
    operation: ClassVar[str] = 'confirm'


@dataclass(frozen=True)
class DenyPayment(TicketAction):
    operation: ClassVar[str] = 'deny_pay'

    reason: Optional[str] = None


@dataclass(frozen=True)
class SubmitEmail(TicketAction):
    operation: ClassVar[str] = 'email_modal'

    email: str = ''

    def validate(self) -> None:
        super().validate()
        normalize_email(self.email)

    @property
    def normalized_email(self) -> str:
        return normalize_email(self.email)


@dataclass(frozen=True)
class CloseTicket(TicketAction):
    operation: ClassVar[str] = 'close'

    reason: Optional[str] = None


@dataclass(frozen=True)
class ClaimTicket(TicketAction):
    operation: ClassVar[str] = 'claim'


# Shows the email form; not a transition
EMAIL_BUTTON = 'email_btn'

TICKET_ACTIONS = {
    cls.operation: cls
    for cls in (SelectPlan, SelectPaymentMethod, ClaimPaid, ConfirmPayment,
                DenyPayment, SubmitEmail, CloseTicket, ClaimTicket)
}


def custom_id(operation: str, target, arg=None) -> str:
    """Build a component custom id, e.g. ``ticket:plan:AB12CD34:3``."""
    parts = [CUSTOM_ID_PREFIX, operation, str(target)]
    if arg is not None:
        parts.append(str(arg))
    return ':'.join(parts)


@dataclass(frozen=True)
class ComponentRoute:
    """A decoded component custom id."""
    operation: str
    target: str
    arg: Optional[str] = None

    @property
    def is_email_prompt(self) -> bool:
        return self.operation == EMAIL_BUTTON

    def to_action(self, actor: Actor, email: Optional[str] = None) -> WorkflowAction:
        """
        Build the workflow action for this route.

        Args:
            actor: Member who clicked or submitted
            email: Submitted email, for the email form route

        Raises:
            ValidationError: If the route carries malformed ids
        """
        try:
            if self.operation == OpenTicket.operation:
                return OpenTicket(actor=actor, panel_id=int(self.target))
            if self.operation == SelectPlan.operation:
                return SelectPlan(actor=actor, ticket_id=self.target, plan_id=int(self.arg))
            if self.operation == SelectPaymentMethod.operation:
                return SelectPaymentMethod(actor=actor, ticket_id=self.target, method_id=int(self.arg))
        except (TypeError, ValueError):
            raise ValidationError(f"Malformed component id for {self.operation}: {self.target}:{self.arg}")

        if self.operation == SubmitEmail.operation:
            return SubmitEmail(actor=actor, ticket_id=self.target, email=email or '')

        action_cls = TICKET_ACTIONS.get(self.operation)
        if action_cls is None:
            raise ValidationError(f"Unknown ticket operation: {self.operation}", field='operation')
        return action_cls(actor=actor, ticket_id=self.target)


def parse_custom_id(value: str) -> Optional[ComponentRoute]:
    """
    Decode a ``ticket:*`` custom id.

    Returns:
        Optional[ComponentRoute]: None for ids that do not belong to the
            ticket workflow
    """
    if not value:
        return None

    parts = value.split(':')
    if len(parts) < 3 or parts[0] != CUSTOM_ID_PREFIX or not parts[2]:
        return None

    operation = parts[1]
    known = operation in TICKET_ACTIONS or operation in (OpenTicket.operation, EMAIL_BUTTON)
    if not known:
        return None

    return ComponentRoute(
        operation=operation,
        target=parts[2],
        arg=parts[3] if len(parts) > 3 else None
    )
