"""
Builds bulk user payloads from Intercom settings.

Intercom accepts a fixed set of top-level user and company fields; anything else
must be sent under ``custom_attributes``. Protocol-only keys (app_id, user_hash)
are dropped before submission.
"""

import logging
from typing import Dict, Any, Iterable, Optional

logger = logging.getLogger(__name__)

CUSTOM_ATTRIBUTES = 'custom_attributes'
COMPANY = 'company'
PROTOCOL_KEYS = ('app_id', 'user_hash')


class PayloadError(ValueError):
    """Raised when member settings cannot be turned into a payload."""
    pass


def classify_fields(fields: Dict[str, Any], known_fields: Iterable[str],
                    keep: Iterable[str] = ()) -> Dict[str, Any]:
    """
    Move every unknown top-level key under custom_attributes.

    ``custom_attributes`` and any key in ``keep`` stay top-level. The input map is
    not modified.

    Args:
        fields: Field map
        known_fields: Field names Intercom accepts at top level
        keep: Extra keys that are never moved, such as the nested company map

    Returns:
        New field map containing known keys, plus custom_attributes when needed

    Raises:
        PayloadError: If custom_attributes is present but is not a mapping
    """
    known = set(known_fields)
    kept = set(keep)
    result = {}

    existing = fields.get(CUSTOM_ATTRIBUTES) or {}
    if not isinstance(existing, dict):
        raise PayloadError(
            f"custom_attributes must be a mapping, got {type(existing).__name__}"
        )
    custom = dict(existing)

    for key, value in fields.items():
        if key == CUSTOM_ATTRIBUTES:
            continue
        if key in known or key in kept:
            result[key] = value
        else:
            custom[key] = value

    if custom:
        result[CUSTOM_ATTRIBUTES] = custom
    return result


def build_user_payload(settings: Dict[str, Any], user_fields: Iterable[str],
                       company_fields: Iterable[str]) -> Dict[str, Any]:
    """
    Turn a member's Intercom settings into a bulk user payload.

    Raises:
        PayloadError: If company or a custom_attributes map is not a mapping
    """
    settings = {k: v for k, v in settings.items() if k not in PROTOCOL_KEYS}

    payload = classify_fields(settings, user_fields, keep=(COMPANY,))

    if COMPANY in payload:
        company = payload[COMPANY]
        if not isinstance(company, dict):
            raise PayloadError(
                f"company must be a mapping of company fields, got {type(company).__name__}"
            )
        payload[COMPANY] = classify_fields(company, company_fields)

    return payload


class PayloadBuilder:
    """Builds payloads for members using their script-tag settings."""

    def __init__(self, script_tags, user_fields: Iterable[str], company_fields: Iterable[str]):
        self.script_tags = script_tags
        self.user_fields = list(user_fields)
        self.company_fields = list(company_fields)

    def build(self, member: Optional[Dict[str, Any]]) -> Dict[str, Any]:
        settings = self.script_tags.get_intercom_settings(member)
        return build_user_payload(settings, self.user_fields, self.company_fields)
