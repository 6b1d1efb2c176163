"""Request dispatch pipeline.

A request is a plain object; its class selects the handler.  Before the
handler runs, the request passes through the mediator's pipeline
behaviors, outermost first.  Each behavior receives the request and a
``next_`` continuation that invokes the rest of the pipeline.

Handlers are registered per request type, either on an explicit
``HandlerRegistry`` or on the module-level default with the
``@request_handler`` decorator::

    @request_handler(CreateArticle)
    async def create_article(request: CreateArticle, mediator: Mediator) -> Article:
        mediator.db.session.add(...)

Exceptions raised by handlers or behaviors propagate out of ``send()``
unchanged.

Tags:
    conduit, mediator, pipeline, dispatch, handlers

Doc-Types:
    api-reference
"""

from __future__ import annotations

from collections.abc import Awaitable, Callable, Sequence
from functools import partial
from typing import TYPE_CHECKING, Any, Protocol

from conduit.core.errors import HandlerNotFoundError
from conduit.core.logging import get_logger

if TYPE_CHECKING:
    from conduit.infrastructure.database import DatabaseContext

log = get_logger(__name__)

NextHandler = Callable[[], Awaitable[Any]]
RequestHandler = Callable[[Any, "Mediator"], Awaitable[Any]]


class PipelineBehavior(Protocol):
    """A stage wrapped around every handler invocation."""

    async def handle(self, request: Any, next_: NextHandler) -> Any: ...


class HandlerRegistry:
    """Maps request types to their handlers."""

    def __init__(self) -> None:
        self._handlers: dict[type, RequestHandler] = {}

    def register(self, request_type: type, handler: RequestHandler) -> None:
        if request_type in self._handlers:
            raise ValueError(f"Handler for '{request_type.__name__}' is already registered")
        self._handlers[request_type] = handler
        log.debug(
            "handler_registered",
            request_type=request_type.__name__,
            handler=getattr(handler, "__qualname__", repr(handler)),
        )

    def get(self, request_type: type) -> RequestHandler:
        """Handler for *request_type*, falling back to its base classes."""
        for cls in request_type.__mro__:
            if cls in self._handlers:
                return self._handlers[cls]
        raise HandlerNotFoundError(request_type)

    def __contains__(self, request_type: type) -> bool:
        return any(cls in self._handlers for cls in request_type.__mro__)

    def clear(self) -> None:
        """Clear registry (for testing)."""
        self._handlers.clear()


# Global handler registry
_registry = HandlerRegistry()


def get_registry() -> HandlerRegistry:
    return _registry


def request_handler(request_type: type) -> Callable[[RequestHandler], RequestHandler]:
    """Decorator to register a handler on the default registry."""

    def decorator(handler: RequestHandler) -> RequestHandler:
        _registry.register(request_type, handler)
        return handler

    return decorator


class Mediator:
    """Dispatches requests through pipeline behaviors to their handler.

    A mediator is built per request scope: ``db`` is that scope's
    ``DatabaseContext`` and the behaviors are bound to it.
    """

    def __init__(
        self,
        registry: HandlerRegistry | None = None,
        behaviors: Sequence[PipelineBehavior] = (),
        *,
        db: DatabaseContext | None = None,
    ) -> None:
        self._registry = registry if registry is not None else _registry
        self._behaviors = list(behaviors)
        self.db = db

    @property
    def behaviors(self) -> list[PipelineBehavior]:
        return list(self._behaviors)

    def register(self, request_type: type, handler: RequestHandler) -> None:
        self._registry.register(request_type, handler)

    def add_behavior(self, behavior: PipelineBehavior) -> None:
        """Append *behavior* as the new innermost stage."""
        self._behaviors.append(behavior)

    async def send(self, request: Any) -> Any:
        handler = self._registry.get(type(request))

        async def invoke_handler() -> Any:
            return await handler(request, self)

        next_: NextHandler = invoke_handler
        for behavior in reversed(self._behaviors):
            next_ = partial(behavior.handle, request, next_)

        log.debug("mediator.send", request_type=type(request).__name__)
        return await next_()
