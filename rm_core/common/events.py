# rm_core/common/events.py
import logging
from collections import defaultdict
from typing import Any, Callable, Dict, List

logger = logging.getLogger(__name__)

Handler = Callable[[Dict[str, Any]], None]

_registry: Dict[str, List[Handler]] = defaultdict(list)


def subscribe(event_name: str):
    """
    Decorator to register an event handler.
    Usage:
        @subscribe("referral.created")
        def handler(payload): ...
    """
    def _decorator(fn: Handler) -> Handler:
        if fn not in _registry[event_name]:
            _registry[event_name].append(fn)
        return fn
    return _decorator


def publish(event_name: str, payload: Dict[str, Any]) -> None:
    """
    Deliver an event to in-process subscribers, synchronously, inside the
    caller's transaction. Payloads are ID-based so apps don't import each other.

    Handlers own their failure handling: a handler that raises aborts the
    publishing transaction.
    """
    handlers = _registry.get(event_name, [])
    logger.debug("publish %s -> %d handler(s)", event_name, len(handlers))
    for handler in handlers:
        handler(payload)


def subscribers(event_name: str) -> List[Handler]:
    return list(_registry.get(event_name, []))
