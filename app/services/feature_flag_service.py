"""
Feature Flag Service: global workflow toggles.

The persisted flag wins; when no row exists yet the value falls back to
the app config (``PHD_DIRECT_FLOW``).
"""

import logging

from flask import current_app

from app.models import db
from app.models.feature_flag import DIRECT_FLOW_FLAG, FeatureFlag

logger = logging.getLogger(__name__)

_FLAG_DEFAULTS = {
    DIRECT_FLOW_FLAG: {
        "display_name": "PhD direct flow",
        "description": "DRC convener approval completes a PhD request without the HOD review.",
        "config_key": "PHD_DIRECT_FLOW",
    },
}


def get_flag_by_key(key):
    """Return a single flag by key."""
    return FeatureFlag.query.filter_by(key=key).first()


def is_enabled(key):
    """Persisted value of a flag, or its config default."""
    flag = get_flag_by_key(key)
    if flag is not None:
        return bool(flag.enabled)
    defaults = _FLAG_DEFAULTS.get(key)
    if defaults is None:
        return False
    return bool(current_app.config.get(defaults["config_key"], False))


def set_flag(key, enabled, updated_by=None):
    """Create or update a global flag and commit."""
    defaults = _FLAG_DEFAULTS.get(key, {})
    flag = get_flag_by_key(key)
    if flag is None:
        flag = FeatureFlag(
            key=key,
            display_name=defaults.get("display_name", key),
            description=defaults.get("description", ""),
        )
        db.session.add(flag)
    flag.enabled = bool(enabled)
    flag.updated_by = updated_by
    db.session.commit()
    logger.info("Feature flag %s set to %s by %s", key, flag.enabled, updated_by)
    return flag


def is_direct_flow_enabled():
    return is_enabled(DIRECT_FLOW_FLAG)
