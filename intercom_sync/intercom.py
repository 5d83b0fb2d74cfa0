"""
Entry point for interaction with Intercom.

The Intercom class resolves credentials, owns the API client, selects the users
to synchronize, submits bulk user jobs and tracks events for members.
"""

import time
import logging
import threading
from typing import Dict, Any, Callable, Iterable, Optional

from intercom_sync.config import (
    ConfigurationError,
    get_setting,
    parse_user_list_reference,
    ACCESS_TOKEN_SETTING,
    APP_ID_SETTING,
    DEFAULT_USER_FIELDS,
    DEFAULT_COMPANY_FIELDS,
)
from intercom_sync.client import IntercomClient
from intercom_sync.bulk_job import IntercomBulkJob
from intercom_sync.payload import PayloadBuilder
from intercom_sync.script_tags import IntercomScriptTags
from intercom_sync.user_sources import UserSourceRegistry, StaticDirectory

logger = logging.getLogger(__name__)


class TrackingError(RuntimeError):
    """Raised when an event cannot be attributed to a user."""
    pass


class Intercom:
    """
    Entry point for interaction with Intercom.

    Credentials are read from INTERCOM_PERSONAL_ACCESS_TOKEN and INTERCOM_APP_ID
    (environment first, then defined constants) and may be overridden through the
    access_token and app_id properties before the client is first used.
    """

    def __init__(self, config: Optional[Dict[str, Any]] = None,
                 directory=None,
                 registry: Optional[UserSourceRegistry] = None,
                 script_tags: Optional[IntercomScriptTags] = None,
                 client_factory: Optional[Callable[[str, Dict[str, Any]], Any]] = None):
        """
        Initialize the Intercom entry point.

        Args:
            config: The ``intercom`` configuration section
            directory: Member directory providing all_members(); used when user_list is unset
            registry: Named user sources for the user_list setting
            script_tags: Settings provider; a default IntercomScriptTags is created if omitted
            client_factory: Callable(access_token, config) returning an API client
        """
        self.config = config or {}
        self.directory = directory if directory is not None else StaticDirectory()
        self.registry = registry or UserSourceRegistry()
        self.client_factory = client_factory or IntercomClient

        self._access_token = get_setting(ACCESS_TOKEN_SETTING)
        self._app_id = get_setting(APP_ID_SETTING)
        self._client = None
        self._client_lock = threading.Lock()

        self.script_tags = script_tags or IntercomScriptTags()
        if getattr(self.script_tags, 'app_id', None) is None:
            self.script_tags.app_id = self._app_id

    @property
    def access_token(self) -> str:
        if not self._access_token:
            raise ConfigurationError(
                f"Intercom Personal Access Token not set! Define {ACCESS_TOKEN_SETTING} "
                f"or set access_token on the Intercom instance"
            )
        return self._access_token

    @access_token.setter
    def access_token(self, token: str):
        self._access_token = token

    @property
    def app_id(self) -> str:
        if not self._app_id:
            raise ConfigurationError(
                f"Intercom App ID not set! Define {APP_ID_SETTING} or set app_id on the Intercom instance"
            )
        return self._app_id

    @app_id.setter
    def app_id(self, app_id: str):
        self._app_id = app_id
        self.script_tags.app_id = app_id

    @property
    def user_fields(self):
        fields = self.config.get('user_fields')
        return DEFAULT_USER_FIELDS if fields is None else fields

    @property
    def company_fields(self):
        fields = self.config.get('company_fields')
        return DEFAULT_COMPANY_FIELDS if fields is None else fields

    def get_client(self):
        """Return the API client, creating it on first use."""
        if self._client is None:
            with self._client_lock:
                if self._client is None:
                    self._client = self.client_factory(self.access_token, self.config)
                    logger.debug("Created Intercom API client")
        return self._client

    def close(self) -> None:
        """Close the API client connection if a client was created."""
        if self._client is not None and hasattr(self._client, 'close_connection'):
            self._client.close_connection()

    def get_user_list(self) -> Iterable[Dict[str, Any]]:
        """
        Return the members to synchronize.

        Uses the source named by the user_list setting (``%$ServiceName``) if set,
        otherwise every member of the directory.

        Raises:
            ConfigurationError: If user_list is malformed or names an unknown source
        """
        user_list = self.config.get('user_list')
        if user_list:
            name = parse_user_list_reference(user_list)
            logger.debug(f"Using user source '{name}'")
            return self.registry.resolve(name)

        return self.directory.all_members()

    def bulk_load_users(self, members: Iterable[Dict[str, Any]]) -> IntercomBulkJob:
        """
        Bulk load a set of members using the same settings as if they had logged in.

        Args:
            members: Iterable of member dictionaries

        Returns:
            Handle for the submitted bulk job
        """
        builder = PayloadBuilder(self.script_tags, self.user_fields, self.company_fields)

        items = [
            {
                'data_type': 'user',
                'method': 'post',
                'data': builder.build(member),
            }
            for member in members
        ]

        if not items:
            logger.warning("Submitting bulk user job with no members")

        result = self.get_client().bulk.users({'items': items})
        job = self.get_bulk_job(result['id'])

        logger.info(f"Submitted bulk user job {job.id} with {len(items)} users")
        return job

    def get_bulk_job(self, job_id: str) -> IntercomBulkJob:
        """Return a handle for the given bulk job."""
        return IntercomBulkJob(self.get_client(), job_id)

    def track_event(self, event_name: str, event_data: Optional[Dict[str, Any]] = None,
                    member: Optional[Dict[str, Any]] = None) -> None:
        """
        Track an event for a member.

        Args:
            event_name: Event name, passed straight to Intercom
            event_data: Event metadata, passed straight to Intercom
            member: The acting member; see session.track_event_for_current_user for
                tracking against the member of the current request

        Raises:
            TrackingError: If the member has neither an email nor a user id
        """
        payload = {
            'event_name': event_name,
            'created_at': int(time.time()),
        }

        settings = self.script_tags.get_intercom_settings(member)

        if not settings.get('email') and not settings.get('user_id'):
            raise TrackingError("Can't track event when no user logged in")

        if settings.get('email'):
            payload['email'] = settings['email']
        if settings.get('user_id'):
            payload['user_id'] = settings['user_id']

        if event_data:
            payload['metadata'] = event_data

        self.get_client().events.create(payload)
        logger.debug(f"Tracked event '{event_name}'")
