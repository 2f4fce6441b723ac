"""Interaction sources and the rule for which actions qualify.

Only actions on interactive targets open a correlation window.  Clicks
on plain text, containers and other advisory targets are ignored rather
than queued.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from typing import Protocol

from silentwatch.models.events import ActionEvent, ActionKind, TargetDescriptor

logger = logging.getLogger(__name__)

ActionListener = Callable[[ActionEvent], None]

_ACTIONABLE_TAGS = frozenset({"BUTTON", "A", "SUMMARY"})
_ACTIONABLE_INPUT_TYPES = frozenset({"submit", "button", "image", "reset"})
_ACTIONABLE_ROLES = frozenset({"button", "link", "menuitem", "tab", "checkbox", "switch"})


def is_actionable(target: TargetDescriptor) -> bool:
    """Return True if *target* is an interactive control."""
    if target.tag in _ACTIONABLE_TAGS:
        return True
    if target.tag == "INPUT" and (target.input_type or "").lower() in _ACTIONABLE_INPUT_TYPES:
        return True
    return (target.role or "").lower() in _ACTIONABLE_ROLES


def qualifies(event: ActionEvent) -> bool:
    """Return True if *event* should open a correlation window.

    Form submissions and custom actions always qualify; clicks qualify
    only on actionable targets.
    """
    if event.kind is ActionKind.CLICK:
        return is_actionable(event.target)
    return True


class InteractionSource(Protocol):
    """Capability delivering user actions to the engine."""

    def subscribe(self, listener: ActionListener) -> Callable[[], None]:
        """Register *listener*; the returned callable unsubscribes it."""
        ...


class InteractionBus:
    """In-process :class:`InteractionSource` the host dispatches actions into.

    Listener failures are logged and never reach the dispatching code.
    """

    def __init__(self) -> None:
        self._listeners: list[ActionListener] = []

    def subscribe(self, listener: ActionListener) -> Callable[[], None]:
        self._listeners.append(listener)

        def _unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return _unsubscribe

    def dispatch(self, event: ActionEvent) -> None:
        for listener in list(self._listeners):
            try:
                listener(event)
            except Exception:
                logger.debug("Interaction listener failed", exc_info=True)

    def click(self, target: TargetDescriptor) -> None:
        self.dispatch(ActionEvent(kind=ActionKind.CLICK, target=target))

    def submit(self, target: TargetDescriptor) -> None:
        self.dispatch(ActionEvent(kind=ActionKind.FORM_SUBMIT, target=target))
