# Overview: Shared helpers for API blueprints.

from flask import current_app

from ..validation import EngineError, StorageError


def error_response(e: EngineError):
    """Serialize an engine error with its HTTP status. Storage details stay in the log."""
    if isinstance(e, StorageError):
        current_app.logger.error("Storage failure: %s", e)
        return {"error": "Storage unavailable", "code": e.code}, e.status_code
    return e.to_dict(), e.status_code
