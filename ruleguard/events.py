"""Change notification for collaborators that render RuleGuard data."""

import logging
from typing import Callable

logger = logging.getLogger(__name__)

Listener = Callable[[frozenset[str]], None]


class ChangeNotifier:
    """Emits the names of collections touched by a core operation.

    The signal carries no payload; listeners re-read whatever they display.
    """

    def __init__(self):
        self._listeners: list[Listener] = []

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        """Register a listener.

        Args:
            listener: Called with the set of changed collection names.

        Returns:
            A function that removes the listener.
        """
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def notify(self, *collections: str) -> None:
        """Signal that the given collections changed."""
        if not collections:
            return
        changed = frozenset(collections)
        logger.debug("Data changed: %s", ", ".join(sorted(changed)))
        for listener in list(self._listeners):
            listener(changed)
