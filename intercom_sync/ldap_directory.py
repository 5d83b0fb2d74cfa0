"""
LDAP-backed member directory.

This module connects to an LDAP server and lazily enumerates directory members
as plain member dictionaries, for use as the default user source of a bulk sync.
"""

import logging
import ssl
from typing import Dict, Any, Iterator, Optional
from ldap3 import Server, Connection, SUBTREE, ALL, Tls
from ldap3.core.exceptions import LDAPException

logger = logging.getLogger(__name__)


class DirectoryConnectionError(Exception):
    """Raised when the directory server cannot be reached or bound."""
    pass


class DirectoryQueryError(Exception):
    """Raised when a directory search fails."""
    pass


class LDAPDirectory:
    """
    Member directory backed by an LDAP server.

    Members are read with a paged search and yielded one at a time, so large
    directories are never loaded into memory at once.
    """

    # LDAP attribute -> member key
    ATTRIBUTE_MAPPING = {
        'entryUUID': 'id',
        'objectGUID': 'id',
        'mail': 'email',
        'givenName': 'first_name',
        'sn': 'surname',
        'cn': 'common_name',
        'uid': 'username',
        'sAMAccountName': 'username',
        'createTimestamp': 'created',
        'whenCreated': 'created',
    }

    def __init__(self, config: Dict[str, Any]):
        """
        Initialize LDAP directory with configuration.

        Args:
            config: Directory configuration dictionary
        """
        self.config = config
        self.server_url = config['server_url']
        self.bind_dn = config['bind_dn']
        self.bind_password = config['bind_password']
        self.user_base_dn = config.get('user_base_dn', '')
        self.user_filter = config.get('user_filter', '(objectClass=person)')
        self.attributes = config.get('attributes', list(self.ATTRIBUTE_MAPPING.keys()))
        self.page_size = config.get('page_size', 500)

        self.use_ssl = config.get('use_ssl', self.server_url.lower().startswith('ldaps://'))
        self.start_tls = config.get('start_tls', False)
        self.verify_ssl = config.get('verify_ssl', True)
        self.ca_cert_file = config.get('ca_cert_file')
        self.connection_timeout = config.get('connection_timeout', 10)

        self.server = None
        self.connection = None
        self._connected = False

    def connect(self) -> None:
        """
        Establish and bind the directory connection.

        Raises:
            DirectoryConnectionError: If the server cannot be reached or the bind fails
        """
        try:
            self.server = Server(
                self.server_url,
                use_ssl=self.use_ssl,
                tls=self._create_tls_config(),
                get_info=ALL,
                connect_timeout=self.connection_timeout
            )
            self.connection = Connection(
                self.server,
                user=self.bind_dn,
                password=self.bind_password,
                auto_bind=False
            )

            if not self.connection.open():
                raise DirectoryConnectionError(f"Failed to open connection: {self.connection.result}")

            if self.start_tls and not self.use_ssl:
                if not self.connection.start_tls():
                    raise DirectoryConnectionError(f"Failed to start TLS: {self.connection.result}")
                logger.debug("StartTLS negotiation successful")

            if not self.connection.bind():
                raise DirectoryConnectionError(f"Bind failed: {self.connection.result}")

        except LDAPException as e:
            self.connection = None
            raise DirectoryConnectionError(f"Failed to connect to {self.server_url}: {e}")

        self._connected = True
        logger.info(f"Connected and bound to LDAP server {self.server_url}")

    def _create_tls_config(self) -> Optional[Tls]:
        """Create TLS configuration for the connection, if SSL or StartTLS is in use."""
        if not (self.use_ssl or self.start_tls):
            return None

        tls_config = {'validate': ssl.CERT_REQUIRED if self.verify_ssl else ssl.CERT_NONE}
        if not self.verify_ssl:
            logger.warning("SSL certificate verification disabled")
        if self.ca_cert_file:
            tls_config['ca_certs_file'] = self.ca_cert_file

        try:
            return Tls(**tls_config)
        except Exception as e:
            raise DirectoryConnectionError(f"Failed to create TLS configuration: {e}")

    def disconnect(self):
        """Close LDAP connection."""
        if self.connection and self._connected:
            try:
                self.connection.unbind()
                logger.debug("LDAP connection closed")
            except LDAPException as e:
                logger.warning(f"Error closing LDAP connection: {e}")
            finally:
                self._connected = False
                self.connection = None

    def all_members(self) -> Iterator[Dict[str, Any]]:
        """
        Lazily iterate over every member matching the user filter.

        Connects on first use. Order is whatever the server returns.

        Raises:
            DirectoryQueryError: If the search fails
        """
        if not self._connected:
            self.connect()

        logger.info(f"Reading members from {self.user_base_dn or '(root)'} with filter {self.user_filter}")

        try:
            entries = self.connection.extend.standard.paged_search(
                search_base=self.user_base_dn,
                search_filter=self.user_filter,
                search_scope=SUBTREE,
                attributes=self.attributes,
                paged_size=self.page_size,
                generator=True
            )
            count = 0
            for entry in entries:
                if entry.get('type') != 'searchResEntry':
                    continue
                member = self._entry_to_member(entry)
                if member:
                    count += 1
                    yield member
            logger.info(f"Read {count} members from directory")
        except LDAPException as e:
            raise DirectoryQueryError(f"LDAP query failed: {e}")

    def _entry_to_member(self, entry: Dict[str, Any]) -> Optional[Dict[str, Any]]:
        """Convert a raw search result entry into a member dictionary."""
        attributes = entry.get('attributes', {})
        member = {'dn': entry.get('dn')}

        for ldap_attr, member_key in self.ATTRIBUTE_MAPPING.items():
            value = attributes.get(ldap_attr)
            if isinstance(value, list):
                value = value[0] if value else None
            if value and member_key not in member:
                member[member_key] = value

        # Unmapped attributes keep their LDAP name
        for ldap_attr, value in attributes.items():
            if ldap_attr in self.ATTRIBUTE_MAPPING:
                continue
            if isinstance(value, list):
                value = value[0] if len(value) == 1 else (value or None)
            if value:
                member[ldap_attr] = value

        if not member.get('email') and not member.get('id'):
            logger.warning(f"Directory entry has no email or id, skipping: {member['dn']}")
            return None

        member.setdefault('id', member['dn'])
        return member

    def __iter__(self):
        return self.all_members()

    def __enter__(self):
        """Context manager entry."""
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        """Context manager exit."""
        self.disconnect()
