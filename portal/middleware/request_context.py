"""
Request context — the explicit bundle handed to service calls.

Blueprints call ``current_context()`` once per request and pass the result
to the service layer; services never read ``flask.g`` for the caller's
identity and log through ``ctx.log`` (which stamps request_id / user_id on
every record).
"""

import logging

from flask import g

from portal.core.exceptions import AuthenticationError
from portal.services.policy import RequestContext

_request_logger = logging.getLogger("portal.request")


class RequestLogAdapter(logging.LoggerAdapter):
    """LoggerAdapter that merges per-call ``extra`` with the request fields."""

    def process(self, msg, kwargs):
        kwargs["extra"] = {**self.extra, **(kwargs.get("extra") or {})}
        return msg, kwargs


def current_context() -> RequestContext:
    """Build the RequestContext for the authenticated caller."""
    identity = getattr(g, "identity", None)
    if identity is None:
        raise AuthenticationError(getattr(g, "auth_error", None) or "Authentication required")
    log = RequestLogAdapter(_request_logger, {
        "request_id": getattr(g, "request_id", None),
        "user_id": identity.user_id,
    })
    return RequestContext(identity=identity, log=log)
