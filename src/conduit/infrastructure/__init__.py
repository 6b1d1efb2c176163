"""Database access, request dispatch and transaction management."""

from conduit.infrastructure.database import (
    ConduitBase,
    Database,
    DatabaseContext,
    DatabaseTransaction,
    IsolationLevel,
    create_conduit_engine,
)
from conduit.infrastructure.mediator import HandlerRegistry, Mediator, request_handler
from conduit.infrastructure.transaction_behavior import TransactionPipelineBehavior

__all__ = [
    "ConduitBase",
    "Database",
    "DatabaseContext",
    "DatabaseTransaction",
    "HandlerRegistry",
    "IsolationLevel",
    "Mediator",
    "TransactionPipelineBehavior",
    "create_conduit_engine",
    "request_handler",
]
