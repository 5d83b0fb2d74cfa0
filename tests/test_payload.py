#!/usr/bin/env python3
"""
Unit tests for payload building.

Checks field classification into custom_attributes for users and companies, and
removal of protocol-only keys.
"""

import os
import sys
import unittest
from unittest.mock import Mock

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from intercom_sync.payload import classify_fields, build_user_payload, PayloadBuilder, PayloadError


class TestClassifyFields(unittest.TestCase):
    """Test cases for classify_fields."""

    def test_unknown_keys_move_to_custom_attributes(self):
        fields = {'email': 'a@x.com', 'plan': 'pro', 'seats': 4}

        result = classify_fields(fields, ['email'])

        self.assertEqual(result, {'email': 'a@x.com', 'custom_attributes': {'plan': 'pro', 'seats': 4}})

    def test_top_level_keys_are_known(self):
        fields = {'email': 'a@x.com', 'name': 'A', 'role': 'admin', 'team': 'ops', 'level': 3}
        known = ['email', 'name']

        result = classify_fields(fields, known)

        for key in result:
            if key != 'custom_attributes':
                self.assertIn(key, known)
        for key, value in fields.items():
            if key not in known:
                self.assertEqual(result['custom_attributes'][key], value)

    def test_no_custom_attributes_when_all_known(self):
        result = classify_fields({'email': 'a@x.com'}, ['email'])
        self.assertEqual(result, {'email': 'a@x.com'})

    def test_idempotent(self):
        known = ['email']
        once = classify_fields({'email': 'a@x.com', 'plan': 'pro'}, known)

        self.assertEqual(classify_fields(once, known), once)

    def test_existing_custom_attributes_are_merged(self):
        fields = {'email': 'a@x.com', 'custom_attributes': {'tier': 'gold'}, 'plan': 'pro'}

        result = classify_fields(fields, ['email'])

        self.assertEqual(result['custom_attributes'], {'tier': 'gold', 'plan': 'pro'})

    def test_input_not_modified(self):
        fields = {'email': 'a@x.com', 'plan': 'pro'}
        classify_fields(fields, ['email'])
        self.assertEqual(fields, {'email': 'a@x.com', 'plan': 'pro'})

    def test_values_unchanged(self):
        nested = {'a': [1, 2]}
        result = classify_fields({'extra': nested}, [])
        self.assertIs(result['custom_attributes']['extra'], nested)

    def test_keep_keys_stay_top_level(self):
        fields = {'email': 'a@x.com', 'company': {'name': 'Acme'}}

        self.assertEqual(classify_fields(fields, ['email'], keep=('company',)), fields)
        self.assertEqual(classify_fields(fields, ['email']),
                         {'email': 'a@x.com', 'custom_attributes': {'company': {'name': 'Acme'}}})

    def test_non_mapping_custom_attributes_rejected(self):
        with self.assertRaises(PayloadError):
            classify_fields({'email': 'a@x.com', 'custom_attributes': 'gold'}, ['email'])


class TestBuildUserPayload(unittest.TestCase):
    """Test cases for build_user_payload."""

    def test_user_and_company_scenario(self):
        settings = {'email': 'a@x.com', 'plan': 'pro', 'company': {'name': 'Acme', 'tier': 'gold'}}

        payload = build_user_payload(settings, ['email'], ['name'])

        self.assertEqual(payload, {
            'email': 'a@x.com',
            'custom_attributes': {'plan': 'pro'},
            'company': {'name': 'Acme', 'custom_attributes': {'tier': 'gold'}},
        })

    def test_protocol_keys_removed_even_if_known(self):
        settings = {'app_id': 'abc', 'user_hash': 'deadbeef', 'email': 'a@x.com'}

        payload = build_user_payload(settings, ['email', 'app_id', 'user_hash'], [])

        self.assertEqual(payload, {'email': 'a@x.com'})

    def test_protocol_keys_not_moved_to_custom_attributes(self):
        payload = build_user_payload({'app_id': 'abc', 'user_hash': 'x', 'email': 'a@x.com'}, ['email'], [])
        self.assertNotIn('custom_attributes', payload)

    def test_company_classified_with_company_fields(self):
        settings = {'email': 'a@x.com', 'company': {'company_id': 7, 'name': 'Acme', 'plan': 'gold'}}

        payload = build_user_payload(settings, ['email'], ['company_id', 'name', 'plan'])

        self.assertEqual(payload['company'], {'company_id': 7, 'name': 'Acme', 'plan': 'gold'})

    def test_non_mapping_company_rejected(self):
        with self.assertRaises(PayloadError):
            build_user_payload({'email': 'a@x.com', 'company': 'Acme'}, ['email'], ['name'])

    def test_nested_company_key_is_custom_at_company_level(self):
        settings = {'email': 'a@x.com', 'company': {'name': 'A', 'company': 'x'}}

        payload = build_user_payload(settings, ['email'], ['name'])

        self.assertEqual(payload['company'], {'name': 'A', 'custom_attributes': {'company': 'x'}})

    def test_company_level_result_is_stable(self):
        settings = {'email': 'a@x.com', 'company': {'name': 'A', 'company': 'x', 'tier': 'gold'}}

        once = build_user_payload(settings, ['email'], ['name'])

        self.assertEqual(build_user_payload(once, ['email'], ['name']), once)

    def test_non_mapping_company_custom_attributes_rejected(self):
        settings = {'email': 'a@x.com', 'company': {'name': 'A', 'custom_attributes': ['gold']}}
        with self.assertRaises(PayloadError):
            build_user_payload(settings, ['email'], ['name'])

    def test_settings_not_modified(self):
        settings = {'app_id': 'abc', 'email': 'a@x.com', 'company': {'tier': 'gold'}}
        build_user_payload(settings, ['email'], [])
        self.assertEqual(settings, {'app_id': 'abc', 'email': 'a@x.com', 'company': {'tier': 'gold'}})


class TestPayloadBuilder(unittest.TestCase):
    """Test cases for PayloadBuilder."""

    def test_build_uses_script_tag_settings(self):
        script_tags = Mock()
        script_tags.get_intercom_settings.return_value = {
            'app_id': 'abc', 'email': 'a@x.com', 'department': 'ops'
        }
        member = {'email': 'a@x.com'}

        payload = PayloadBuilder(script_tags, ['email'], []).build(member)

        script_tags.get_intercom_settings.assert_called_once_with(member)
        self.assertEqual(payload, {'email': 'a@x.com', 'custom_attributes': {'department': 'ops'}})


if __name__ == '__main__':
    unittest.main()
