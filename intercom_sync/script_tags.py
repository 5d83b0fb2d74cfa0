"""
Intercom settings for a member, and the browser snippet that carries them.

The settings map built here is what the Intercom messenger receives as
``window.intercomSettings``; the bulk sync reuses it so that synced users get
the same fields as users who log in.
"""

import hmac
import json
import hashlib
import logging
from datetime import datetime, timezone
from typing import Dict, Any, Callable, List, Optional

from intercom_sync.config import get_setting, APP_ID_SETTING, SECRET_KEY_SETTING

logger = logging.getLogger(__name__)

LOADER_SCRIPT = (
    "(function(){var w=window;var ic=w.Intercom;if(typeof ic===\"function\"){"
    "ic('reattach_activator');ic('update',w.intercomSettings);}else{var d=document;"
    "var i=function(){i.c(arguments);};i.q=[];i.c=function(args){i.q.push(args);};"
    "w.Intercom=i;var l=function(){var s=d.createElement('script');s.type='text/javascript';"
    "s.async=true;s.src='https://widget.intercom.io/widget/' + w.intercomSettings.app_id;"
    "var x=d.getElementsByTagName('script')[0];x.parentNode.insertBefore(s,x);};"
    "if(document.readyState==='complete'){l();}else if(w.attachEvent){w.attachEvent('onload',l);}"
    "else{w.addEventListener('load',l,false);}}})();"
)


def generate_user_hash(secret: str, identifier: str) -> str:
    """Identity verification hash: hex HMAC-SHA256 of the identifier."""
    return hmac.new(secret.encode('utf-8'), str(identifier).encode('utf-8'), hashlib.sha256).hexdigest()


def to_timestamp(value: Any) -> Optional[int]:
    """Convert a datetime, epoch number or date string into epoch seconds."""
    if value is None or value == '':
        return None
    if isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return int(value)
    if isinstance(value, datetime):
        if value.tzinfo is None:
            value = value.replace(tzinfo=timezone.utc)
        return int(value.timestamp())
    if isinstance(value, str):
        for fmt in ('%Y%m%d%H%M%SZ', '%Y%m%d%H%M%S.%fZ'):
            try:
                return to_timestamp(datetime.strptime(value, fmt))
            except ValueError:
                pass
        try:
            return to_timestamp(datetime.fromisoformat(value))
        except ValueError:
            logger.debug(f"Unrecognised date value: {value}")
    return None


class IntercomScriptTags:
    """
    Builds Intercom settings for members.

    Settings contain the app id, the member's identity (email, user_id), name,
    sign-up time, the identity verification hash when INTERCOM_SECRET_KEY is set,
    any configured extra member attributes, and the member's company.
    """

    def __init__(self, config: Optional[Dict[str, Any]] = None, app_id: Optional[str] = None,
                 secret_key: Optional[str] = None):
        self.config = config or {}
        self.anonymous_access = self.config.get('anonymous_access', False)
        # member key -> settings key
        self.member_attributes = self.config.get('member_attributes') or {}
        self.app_id = app_id
        self.secret_key = secret_key
        self._extensions: List[Callable[[Dict[str, Any], Optional[Dict[str, Any]]], None]] = []

    def add_extension(self, extension: Callable[[Dict[str, Any], Optional[Dict[str, Any]]], None]) -> None:
        """Register a callable(settings, member) that may update settings in place."""
        self._extensions.append(extension)

    def get_app_id(self) -> Optional[str]:
        return self.app_id or get_setting(APP_ID_SETTING)

    def get_secret_key(self) -> Optional[str]:
        return self.secret_key or get_setting(SECRET_KEY_SETTING)

    def get_intercom_settings(self, member: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        """
        Build the settings map for a member.

        Args:
            member: Member dictionary, or None for an anonymous visitor

        Returns:
            Settings dictionary; without a member only app_id is set
        """
        settings = {}
        app_id = self.get_app_id()
        if app_id:
            settings['app_id'] = app_id

        if member:
            if member.get('email'):
                settings['email'] = member['email']
            if member.get('id') is not None and member.get('id') != '':
                settings['user_id'] = str(member['id'])

            name = member.get('name') or ' '.join(
                part for part in (member.get('first_name'), member.get('surname')) if part
            )
            if name:
                settings['name'] = name

            created_at = to_timestamp(member.get('created'))
            if created_at is not None:
                settings['created_at'] = created_at

            for member_key, settings_key in self.member_attributes.items():
                if member.get(member_key) is not None:
                    settings[settings_key] = member[member_key]

            if member.get('company') is not None:
                settings['company'] = member['company']

            secret = self.get_secret_key()
            identifier = settings.get('user_id') or settings.get('email')
            if secret and identifier:
                settings['user_hash'] = generate_user_hash(secret, identifier)

        for extension in self._extensions:
            extension(settings, member)

        return settings

    def render_snippet(self, member: Optional[Dict[str, Any]] = None) -> str:
        """
        Render the messenger snippet for a page.

        Returns an empty string when there is no app id, or no member and
        anonymous access is disabled.
        """
        if not member and not self.anonymous_access:
            return ''

        settings = self.get_intercom_settings(member)
        if not settings.get('app_id'):
            logger.warning("Intercom app id not set, skipping script tags")
            return ''

        settings_json = json.dumps(settings, default=str).replace('</', '<\\/')
        return (
            f"<script>window.intercomSettings = {settings_json};</script>\n"
            f"<script>{LOADER_SCRIPT}</script>"
        )
