"""
Rate limiting configuration.

Applies per-blueprint rate limits using Flask-Limiter.
The Limiter instance is created in app/__init__.py with no default limits;
this module applies granular limits per route category.

Usage:
    from app.middleware.rate_limiter import init_rate_limits
    init_rate_limits(app, limiter)
"""

import logging

from flask import g, request as flask_request

logger = logging.getLogger(__name__)


def _actor_or_ip_key():
    """Limit per caller when known, else per remote IP."""
    actor = getattr(g, "actor", None)
    if actor is not None:
        return f"actor:{actor.email}"
    return flask_request.remote_addr or "unknown"


def _is_read_request():
    return flask_request.method in ("GET", "HEAD", "OPTIONS")


def init_rate_limits(app, limiter):
    """
    Apply rate limits to API blueprints.

    Limits (per caller):
        - Workflow actions:  WORKFLOW_RATE_LIMIT (default 60/minute), POST/PUT only
        - Inbox reads:       200/minute
        - Health check:      exempt

    Rate limiting is disabled in testing mode.
    """
    if app.config.get("TESTING"):
        app.logger.info("Rate limiter disabled (TESTING=True)")
        return

    write_limit = app.config.get("WORKFLOW_RATE_LIMIT", "60/minute")
    for bp_name in ("phd_request", "phd_proposal", "feature_flag"):
        bp = app.blueprints.get(bp_name)
        if bp:
            limiter.limit(write_limit, key_func=_actor_or_ip_key, exempt_when=_is_read_request)(bp)

    bp = app.blueprints.get("notification_bp")
    if bp:
        limiter.limit("200/minute", key_func=_actor_or_ip_key)(bp)

    bp = app.blueprints.get("health_bp")
    if bp:
        limiter.exempt(bp)

    app.logger.info("Rate limiter configured - workflow writes: %s, inbox: 200/min", write_limit)
