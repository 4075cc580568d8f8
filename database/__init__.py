# Database package for database adapters and connection management

from errors.exceptions import DatabaseError
from .adapter import (
    DatabaseAdapter,
    ConnectionError,
    DuplicateTicketError,
    DuplicateSubscriptionError
)

__all__ = [
    'DatabaseAdapter',
    'DatabaseError',
    'ConnectionError',
    'DuplicateTicketError',
    'DuplicateSubscriptionError'
]
