"""
FastAPI dependency injection — shared singletons and per-request factories.

Usage in routers::

    from conduit.api.deps import RequestMediator

    @router.post("/articles")
    async def create(body: CreateArticleBody, mediator: RequestMediator):
        return await mediator.send(CreateArticle(**body.model_dump()))

The settings and ``Database`` live on ``app.state`` (one per process).
Each request gets its own ``DatabaseContext``, closed when the response is
done, and its own ``Mediator`` whose transaction behavior is bound to that
context.
"""

from __future__ import annotations

from collections.abc import AsyncGenerator
from typing import Annotated

from fastapi import Depends, Request

from conduit.core.settings import ConduitSettings
from conduit.infrastructure.database import Database, DatabaseContext
from conduit.infrastructure.mediator import Mediator, get_registry
from conduit.infrastructure.transaction_behavior import TransactionPipelineBehavior


def get_app_settings(request: Request) -> ConduitSettings:
    return request.app.state.settings


def get_database(request: Request) -> Database:
    return request.app.state.database


async def get_db_context(
    database: Annotated[Database, Depends(get_database)],
) -> AsyncGenerator[DatabaseContext, None]:
    """Yield a scoped database context for the request lifespan."""
    context = database.context()
    try:
        yield context
    finally:
        await context.close()


def get_mediator(
    db: Annotated[DatabaseContext, Depends(get_db_context)],
) -> Mediator:
    """Mediator for this request: every ``send()`` runs inside a transaction on *db*."""
    return Mediator(get_registry(), [TransactionPipelineBehavior(db)], db=db)


# ── Convenience type aliases ─────────────────────────────────────────────

Settings = Annotated[ConduitSettings, Depends(get_app_settings)]
DbContext = Annotated[DatabaseContext, Depends(get_db_context)]
RequestMediator = Annotated[Mediator, Depends(get_mediator)]
