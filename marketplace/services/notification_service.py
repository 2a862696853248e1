from collections import defaultdict
import logging

logger = logging.getLogger(__name__)

ORDER_PLACED = 'order.placed'
ORDER_CONFIRMED = 'order.confirmed'
ORDER_STATUS_CHANGED = 'order.status_changed'
ORDER_ITEM_STATUS_CHANGED = 'order_item.status_changed'
ORDER_ITEM_SHIPPED = 'order_item.shipped'
ORDER_REFUNDED = 'order.refunded'
PAYOUT_CREATED = 'payout.created'

_handlers = defaultdict(list)


def subscribe(event: str, handler) -> None:
    _handlers[event].append(handler)


def unsubscribe(event: str, handler) -> None:
    if handler in _handlers[event]:
        _handlers[event].remove(handler)


def clear() -> None:
    _handlers.clear()


def emit(event: str, payload: dict) -> int:
    """Hand an event to every subscriber and return how many succeeded.

    Called after the state change is committed. A failing handler is logged
    and skipped; it never undoes the change that produced the event.
    """
    delivered = 0
    for handler in list(_handlers.get(event, ())):
        try:
            handler(event, payload)
            delivered += 1
        except Exception as e:
            logger.error(
                f"Notification handler failed for {event}: {e}",
                exc_info=True)
    logger.debug("Event %s delivered to %s handler(s)", event, delivered)
    return delivered
