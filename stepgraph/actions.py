"""Action executor interface and a type-keyed handler registry."""

from __future__ import annotations

import inspect
import logging
from typing import Any, Awaitable, Callable, Dict, List, Protocol, Union

from .contracts import Action, Context
from .errors import ActionNotFoundError

logger = logging.getLogger(__name__)

ActionHandler = Callable[[Action, Context], Union[Any, Awaitable[Any]]]


class ActionExecutor(Protocol):
    """Runs a single ``Action`` and returns its output."""

    async def execute(self, action: Action, context: Context) -> Any:
        """Execute ``action``; raise to signal failure."""


class ActionRegistry(ActionExecutor):
    """Dispatch actions to handlers registered per ``action.type``.

    Handlers receive the action and the live execution context and may be
    plain functions or coroutines.
    """

    def __init__(self) -> None:
        self._handlers: Dict[str, ActionHandler] = {}

    def register(self, action_type: str, handler: ActionHandler) -> None:
        if action_type in self._handlers:
            logger.warning(f"Replacing handler for action type '{action_type}'")
        self._handlers[action_type] = handler

    def action(self, action_type: str) -> Callable[[ActionHandler], ActionHandler]:
        """Decorator form of ``register``."""

        def decorator(handler: ActionHandler) -> ActionHandler:
            self.register(action_type, handler)
            return handler

        return decorator

    def unregister(self, action_type: str) -> None:
        self._handlers.pop(action_type, None)

    def types(self) -> List[str]:
        return sorted(self._handlers)

    def __contains__(self, action_type: object) -> bool:
        return action_type in self._handlers

    async def execute(self, action: Action, context: Context) -> Any:
        handler = self._handlers.get(action.type)
        if handler is None:
            raise ActionNotFoundError(f"No handler registered for action type '{action.type}'")
        result = handler(action, context)
        if inspect.isawaitable(result):
            result = await result
        return result


def _noop(action: Action, context: Context) -> Any:
    return action.config.get("result")


def _set_variable(action: Action, context: Context) -> Dict[str, Any]:
    if "name" in action.config:
        values = {action.config["name"]: action.config.get("value")}
    else:
        values = dict(action.config.get("values", {}))
    context.variables.update(values)
    return values


def _log(action: Action, context: Context) -> str:
    message = str(action.config.get("message", ""))
    level = getattr(logging, str(action.config.get("level", "info")).upper(), logging.INFO)
    logger.log(level, f"[{context.execution_id}] {message}")
    return message


def register_builtin_actions(registry: ActionRegistry) -> ActionRegistry:
    """Install the ``noop``, ``set_variable`` and ``log`` handlers."""
    registry.register("noop", _noop)
    registry.register("set_variable", _set_variable)
    registry.register("log", _log)
    return registry
