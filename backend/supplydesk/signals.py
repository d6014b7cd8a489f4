# Overview: Post-commit order notifications for the notification collaborator.

from __future__ import annotations

from blinker import Namespace
from flask import current_app

_signals = Namespace()

# sender: the Flask app; kwargs: order (committed Order), actor
order_created = _signals.signal("order-created")

# kwargs: order, actor, from_status, to_status, reason
order_status_changed = _signals.signal("order-status-changed")


def send_after_commit(signal, **kwargs) -> None:
    """
    Notify receivers once the transaction is durable.

    Delivery is fire-and-forget: a failing receiver is logged and never
    reaches the caller, whose change is already committed.
    """
    app = current_app._get_current_object()
    for receiver in signal.receivers_for(app):
        try:
            receiver(app, **kwargs)
        except Exception:
            current_app.logger.exception(
                "Receiver %r for %s failed", receiver, signal.name
            )
