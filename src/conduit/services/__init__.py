"""Background services started by the API host."""

from conduit.services.database_initialization import (
    DatabaseInitializationService,
    InitializationOutcome,
)

__all__ = ["DatabaseInitializationService", "InitializationOutcome"]
