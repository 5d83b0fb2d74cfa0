#!/usr/bin/env python3
"""
Unit tests for the LDAP member directory.

The ldap3 Server and Connection classes are mocked; no directory server is needed.
"""

import os
import sys
import unittest
from unittest.mock import Mock, patch
from ldap3.core.exceptions import LDAPSocketOpenError, LDAPException

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from intercom_sync.ldap_directory import LDAPDirectory, DirectoryConnectionError, DirectoryQueryError


def make_entry(dn, **attributes):
    return {'type': 'searchResEntry', 'dn': dn, 'attributes': attributes}


class TestLDAPDirectory(unittest.TestCase):
    """Test cases for LDAPDirectory."""

    def setUp(self):
        self.config = {
            'server_url': 'ldap://ldap.example.com:389',
            'bind_dn': 'cn=sync,dc=example,dc=com',
            'bind_password': 'password123',
            'user_base_dn': 'ou=people,dc=example,dc=com',
            'page_size': 100,
        }

    def test_initialization(self):
        directory = LDAPDirectory(self.config)
        self.assertFalse(directory.use_ssl)
        self.assertEqual(directory.user_filter, '(objectClass=person)')
        self.assertIsNone(directory._create_tls_config())

    def test_ldaps_detected(self):
        self.config['server_url'] = 'ldaps://ldap.example.com:636'
        directory = LDAPDirectory(self.config)
        self.assertTrue(directory.use_ssl)
        self.assertIsNotNone(directory._create_tls_config())

    @patch('intercom_sync.ldap_directory.Connection')
    @patch('intercom_sync.ldap_directory.Server')
    def test_connect_success(self, mock_server, mock_connection):
        connection = mock_connection.return_value
        connection.open.return_value = True
        connection.bind.return_value = True

        directory = LDAPDirectory(self.config)
        directory.connect()

        self.assertTrue(directory._connected)
        connection.bind.assert_called_once()

    @patch('intercom_sync.ldap_directory.Connection')
    @patch('intercom_sync.ldap_directory.Server')
    def test_bind_failure(self, mock_server, mock_connection):
        connection = mock_connection.return_value
        connection.open.return_value = True
        connection.bind.return_value = False
        connection.result = {'description': 'invalidCredentials'}

        with self.assertRaises(DirectoryConnectionError) as ctx:
            LDAPDirectory(self.config).connect()
        self.assertIn('Bind failed', str(ctx.exception))

    @patch('intercom_sync.ldap_directory.Connection')
    @patch('intercom_sync.ldap_directory.Server')
    def test_socket_error(self, mock_server, mock_connection):
        mock_connection.return_value.open.side_effect = LDAPSocketOpenError('unreachable')

        with self.assertRaises(DirectoryConnectionError):
            LDAPDirectory(self.config).connect()

    def _connected_directory(self, entries):
        directory = LDAPDirectory(self.config)
        directory.connection = Mock()
        directory.connection.extend.standard.paged_search.return_value = iter(entries)
        directory._connected = True
        return directory

    def test_all_members_maps_attributes(self):
        directory = self._connected_directory([
            make_entry('uid=jdoe,ou=people,dc=example,dc=com',
                       entryUUID='1111', mail=['jdoe@example.com'], givenName='John', sn='Doe',
                       uid=['jdoe'], departmentNumber=['ops']),
            {'type': 'searchResRef', 'uri': ['ldap://other']},
        ])

        members = list(directory.all_members())

        self.assertEqual(members, [{
            'dn': 'uid=jdoe,ou=people,dc=example,dc=com',
            'id': '1111',
            'email': 'jdoe@example.com',
            'first_name': 'John',
            'surname': 'Doe',
            'username': 'jdoe',
            'departmentNumber': 'ops',
        }])
        kwargs = directory.connection.extend.standard.paged_search.call_args[1]
        self.assertEqual(kwargs['search_base'], 'ou=people,dc=example,dc=com')
        self.assertEqual(kwargs['paged_size'], 100)
        self.assertTrue(kwargs['generator'])

    def test_dn_used_as_id_fallback(self):
        directory = self._connected_directory([
            make_entry('uid=a,dc=example,dc=com', mail='a@example.com'),
        ])

        members = list(directory.all_members())

        self.assertEqual(members[0]['id'], 'uid=a,dc=example,dc=com')

    def test_entries_without_identity_skipped(self):
        directory = self._connected_directory([
            make_entry('cn=printer,dc=example,dc=com', cn='printer'),
        ])
        directory.ATTRIBUTE_MAPPING = {'mail': 'email', 'cn': 'common_name'}

        self.assertEqual(list(directory.all_members()), [])

    def test_members_read_lazily(self):
        directory = self._connected_directory([])

        members = directory.all_members()

        directory.connection.extend.standard.paged_search.assert_not_called()
        list(members)
        directory.connection.extend.standard.paged_search.assert_called_once()

    def test_search_failure(self):
        directory = self._connected_directory([])
        directory.connection.extend.standard.paged_search.side_effect = LDAPException('size limit')

        with self.assertRaises(DirectoryQueryError):
            list(directory.all_members())

    def test_disconnect(self):
        directory = self._connected_directory([])
        connection = directory.connection

        with directory:
            pass

        connection.unbind.assert_called_once()
        self.assertIsNone(directory.connection)


if __name__ == '__main__':
    unittest.main()
