"""
Lightweight Event System for Extensibility

Provides a simple event emitter so other parts of the service (reporting,
dashboards, recruitment workflows) can react to finished evaluations
without the pipeline knowing about them.
"""
import logging
from typing import Callable, Dict, List

logger = logging.getLogger(__name__)

# Event registry: event_name -> list of handlers
_event_handlers: Dict[str, List[Callable]] = {}


def subscribe(event_name: str, handler: Callable):
    """
    Subscribe a handler function to an event.

    Example:
        def on_evaluated(assessment_id: str, athlete_id: str, **_):
            ...
        subscribe(EVENT_ASSESSMENT_EVALUATED, on_evaluated)
    """
    _event_handlers.setdefault(event_name, []).append(handler)
    logger.debug(f"Subscribed handler to event: {event_name}")


def unsubscribe(event_name: str, handler: Callable):
    """Remove a previously subscribed handler (no-op if absent)."""
    handlers = _event_handlers.get(event_name, [])
    if handler in handlers:
        handlers.remove(handler)


def emit(event_name: str, **kwargs):
    """
    Emit an event, calling all subscribed handlers.

    Handler errors are logged and never propagate to the emitter.
    """
    for handler in list(_event_handlers.get(event_name, [])):
        try:
            handler(**kwargs)
        except Exception as e:
            logger.error(f"Error in event handler for {event_name}: {e}", exc_info=True)


# Event names
EVENT_ASSESSMENT_EVALUATED = 'assessment.evaluated'
EVENT_ASSESSMENT_FAILED = 'assessment.failed'
