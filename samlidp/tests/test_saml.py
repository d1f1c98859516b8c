import unittest

import pytest
from freezegun import freeze_time

from samlidp.document import (
    build_document, document_from_string, document_to_string, read_authn_request, remove_element_attribute,
    set_element_attribute_value, transform_document,
)
from samlidp.saml import create_error_response, create_login_request, create_response, generate_issue_instant
from samlidp.settings import (
    BINDING_HTTP_POST, BINDING_HTTP_REDIRECT, NAMEID_FORMAT_UNSPECIFIED, SAML, SAMLP, STATUS_AUTHN_FAILED,
    STATUS_SUCCESS,
)

DESTINATION = 'http://localhost:8088/realms/master/protocol/saml'
ACS_URL = 'http://sp.example.org/acs'


def _response_data():
    return {
        'response': {
            'attrs': {
                'in_response_to': 'test_12345',
                'destination': ACS_URL
            }
        },
        'issuer': {
            'text': 'http://localhost:8088'
        },
        'name_id': {
            'text': 'test'
        },
        'audience': {
            'text': 'http://sp.example.org',
        },
    }


class LoginRequestTestCase(unittest.TestCase):

    @freeze_time('2018-07-16T09:38:29.123456Z')
    def test_create_login_request(self):
        data = create_login_request('http://sp.example.org', ACS_URL, destination=DESTINATION)
        self.assertTrue(data.id.startswith('id_'))
        self.assertEqual(data.issue_instant, '2018-07-16T09:38:29Z')
        self.assertEqual(data.destination, DESTINATION)
        self.assertEqual(data.assertion_consumer_service_url, ACS_URL)
        self.assertEqual(data.protocol_binding, BINDING_HTTP_POST)
        self.assertEqual(data.issuer, 'http://sp.example.org')

    def test_unique_ids(self):
        first = create_login_request('http://sp.example.org', ACS_URL)
        second = create_login_request('http://sp.example.org', ACS_URL)
        self.assertNotEqual(first.id, second.id)

    def test_missing_assertion_consumer_service_url(self):
        with pytest.raises(ValueError):
            create_login_request('http://sp.example.org', '')

    def test_relative_destination(self):
        with pytest.raises(ValueError):
            create_login_request('http://sp.example.org', ACS_URL, destination='/realms/master')


class DocumentTestCase(unittest.TestCase):

    def setUp(self):
        self.data = create_login_request(
            'http://sp.example.org', ACS_URL, destination=DESTINATION,
            protocol_binding=BINDING_HTTP_REDIRECT)

    def test_build_document(self):
        doc = build_document(self.data)
        self.assertEqual(doc.tag, '{%s}AuthnRequest' % SAMLP)
        self.assertEqual(doc.get('ID'), self.data.id)
        self.assertEqual(doc.get('Version'), '2.0')
        self.assertEqual(doc.get('Destination'), DESTINATION)
        self.assertEqual(doc.get('AssertionConsumerServiceURL'), ACS_URL)
        self.assertEqual(doc.get('ProtocolBinding'), BINDING_HTTP_REDIRECT)
        self.assertEqual(doc.find('{%s}Issuer' % SAML).text, 'http://sp.example.org')
        policy = doc.find('{%s}NameIDPolicy' % SAMLP)
        self.assertEqual(policy.get('Format'), NAMEID_FORMAT_UNSPECIFIED)
        self.assertEqual(policy.get('AllowCreate'), 'true')

    def test_absent_destination_is_omitted(self):
        data = self.data._replace(destination=None)
        xmlstr = document_to_string(build_document(data))
        self.assertNotIn(b'Destination', xmlstr)
        self.assertIsNone(document_from_string(xmlstr).get('Destination'))

    def test_string_round_trip(self):
        doc = build_document(self.data)
        parsed = document_from_string(document_to_string(doc))
        self.assertEqual(read_authn_request(parsed), self.data)
        self.assertEqual(
            read_authn_request(document_from_string(document_to_string(doc).decode('utf-8'))),
            self.data
        )

    def test_read_other_document(self):
        doc = document_from_string('<samlp:LogoutRequest xmlns:samlp="%s"/>' % SAMLP)
        with pytest.raises(ValueError):
            read_authn_request(doc)

    def test_transform_leaves_original_intact(self):
        doc = build_document(self.data)
        transformed = transform_document(
            doc,
            lambda el: set_element_attribute_value(el, 'samlp:AuthnRequest', 'ID', '${python.version}'),
        )
        self.assertEqual(transformed.get('ID'), '${python.version}')
        self.assertEqual(doc.get('ID'), self.data.id)
        self.assertIsNot(transformed, doc)

    def test_transform_in_place(self):
        doc = build_document(self.data)

        def _drop_destination(el):
            remove_element_attribute(el, 'samlp:AuthnRequest', 'Destination')

        transformed = transform_document(doc, _drop_destination)
        self.assertIsNone(transformed.get('Destination'))
        self.assertEqual(doc.get('Destination'), DESTINATION)

    def test_transform_nested_element(self):
        doc = build_document(self.data)
        transformed = transform_document(
            doc,
            lambda el: set_element_attribute_value(
                el, '{%s}NameIDPolicy' % SAMLP, 'Format', 'urn:custom'),
        )
        self.assertEqual(transformed.find('{%s}NameIDPolicy' % SAMLP).get('Format'), 'urn:custom')


class SamlElementTestCase(unittest.TestCase):

    @freeze_time('2018-07-16T09:38:29Z')
    def test_create_response(self):
        response = create_response(
            _response_data(),
            {'status_code': STATUS_SUCCESS},
            {'name': 'Test', 'email': 'test@example.org'},
        )
        element = response.tree
        self.assertEqual(element.get('InResponseTo'), 'test_12345')
        self.assertEqual(element.get('Destination'), ACS_URL)
        self.assertEqual(element.get('IssueInstant'), '2018-07-16T09:38:29Z')
        status_code = element.find('.//{%s}StatusCode' % SAMLP)
        self.assertEqual(status_code.get('Value'), STATUS_SUCCESS)
        assertion = element.find('{%s}Assertion' % SAML)
        self.assertIsNotNone(assertion)
        self.assertEqual(assertion.find('.//{%s}NameID' % SAML).text, 'test')
        self.assertEqual(assertion.find('.//{%s}Audience' % SAML).text, 'http://sp.example.org')
        confirmation_data = assertion.find('.//{%s}SubjectConfirmationData' % SAML)
        self.assertEqual(confirmation_data.get('InResponseTo'), 'test_12345')
        self.assertEqual(confirmation_data.get('Recipient'), ACS_URL)
        self.assertEqual(confirmation_data.get('NotOnOrAfter'), '2018-07-16T09:40:29Z')
        attributes = assertion.findall('.//{%s}Attribute' % SAML)
        self.assertEqual(
            sorted(attr.get('Name') for attr in attributes), ['email', 'name'])

    def test_issuer_in_response_and_assertion(self):
        response = create_response(
            _response_data(), {'status_code': STATUS_SUCCESS}, {})
        issuers = response.tree.findall('.//{%s}Issuer' % SAML)
        self.assertEqual(len(issuers), 2)
        self.assertEqual(issuers[0].text, issuers[1].text)
        self.assertEqual(response.tree.findall('.//{%s}AttributeStatement' % SAML), [])

    def test_create_error_response(self):
        response = create_error_response(
            _response_data(),
            {
                'status_code': STATUS_AUTHN_FAILED,
                'status_message': 'Authentication cancelled by the user',
            }
        )
        element = response.tree
        self.assertIsNone(element.find('{%s}Assertion' % SAML))
        self.assertEqual(
            element.find('.//{%s}StatusCode' % SAMLP).get('Value'), STATUS_AUTHN_FAILED)
        self.assertEqual(
            element.find('.//{%s}StatusMessage' % SAMLP).text,
            'Authentication cancelled by the user'
        )


class IssueInstantTestCase(unittest.TestCase):

    @freeze_time('2026-03-01 10:15:30.123456')
    def test_generate_issue_instant(self):
        self.assertEqual(
            generate_issue_instant(),
            ('2026-03-01T10:15:30Z', '2026-03-01T10:13:30Z', '2026-03-01T10:17:30Z')
        )
