"""HTTP-POST and HTTP-Redirect bindings.

The set of bindings is closed: each variant is a plain class exposing the
same ``encode``/``decode``/``extract_message`` operations, looked up
through :data:`BINDINGS`.
"""
import base64
from collections import namedtuple
from urllib.parse import parse_qsl, urlparse

from bs4 import BeautifulSoup
from lxml.html import builder as E, tostring as html_tostring

from samlidp.crypto import (
    HTTPPostSignatureVerifier, HTTPRedirectSignatureVerifier, build_signed_data, deflate_and_base64_encode,
    sign_http_post, sign_http_redirect,
)
from samlidp.document import document_to_string
from samlidp.exceptions import RequestParserError, UnknownBindingError
from samlidp.parser import (
    HTTPPostRequestParser, HTTPRedirectRequestParser, get_http_post_request_deserializer,
    get_http_redirect_request_deserializer,
)
from samlidp.settings import (
    BINDING_HTTP_POST, BINDING_HTTP_REDIRECT, DS, RELAY_STATE, SAML_REQUEST, SAML_RESPONSE, SIG_RSA_SHA256,
)

HTTPRequest = namedtuple('HTTPRequest', ['method', 'url', 'params'])
SIGNATURE_TAG = '{%s}Signature' % (DS)


def _to_bytes(doc):
    if isinstance(doc, bytes):
        return doc
    if isinstance(doc, str):
        return doc.encode('utf-8')
    return document_to_string(doc)


def _has_relay_state(relay_state):
    return relay_state is not None and relay_state.strip() != ''


class HTTPPostBinding(object):
    name = 'POST'
    urn = BINDING_HTTP_POST

    def encode(self, doc, url, relay_state=None, sign=None, key=None, cert=None,
               message_type=SAML_REQUEST):
        """
        Build the form submission carrying ``doc``.

        The document gets an enveloped signature before being base64
        encoded when ``sign`` is set, or when ``sign`` is left unset and a
        ``key`` is given. Missing key material raises BadConfiguration.
        """
        xmlstr = _to_bytes(doc)
        if sign is None:
            sign = key is not None
        if sign:
            xmlstr = sign_http_post(xmlstr, key, cert, message=True, assertion=False)
        params = {
            message_type: base64.b64encode(xmlstr).decode('ascii'),
        }
        if _has_relay_state(relay_state):
            params[RELAY_STATE] = relay_state
        return HTTPRequest('POST', url, params)

    @staticmethod
    def render_form(http_request):
        inputs = [
            E.INPUT(type='hidden', name=name, value=value)
            for name, value in http_request.params.items()
        ]
        page = E.HTML(
            E.HEAD(E.TITLE('SAML POST binding')),
            E.BODY(
                E.FORM(
                    *inputs,
                    E.NOSCRIPT(
                        E.P('JavaScript is disabled, press Continue to proceed.'),
                        E.INPUT(type='submit', value='Continue'),
                    ),
                    method='post',
                    action=http_request.url,
                ),
                onload='document.forms[0].submit()',
            ),
        )
        return html_tostring(page, doctype='<!DOCTYPE html>', encoding='unicode')

    @staticmethod
    def decode(form, message_type=SAML_REQUEST):
        return HTTPPostRequestParser(form, message_type=message_type).parse()

    @staticmethod
    def deserializer(request_data):
        return get_http_post_request_deserializer(request_data)

    @staticmethod
    def is_signed(request_data, saml_tree):
        return saml_tree.child(SIGNATURE_TAG) is not None

    @staticmethod
    def signature_verifier(certificate, request_data):
        return HTTPPostSignatureVerifier(certificate, request_data)

    def extract_message(self, body, message_type=SAML_RESPONSE):
        """Read the message carried by an auto-submitting HTML form."""
        soup = BeautifulSoup(body, 'html.parser')
        form = {}
        for field in soup.find_all('input'):
            if field.get('name'):
                form[field['name']] = field.get('value', '')
        return self.decode(form, message_type=message_type)


class HTTPRedirectBinding(object):
    name = 'REDIRECT'
    urn = BINDING_HTTP_REDIRECT

    def encode(self, doc, url, relay_state=None, sign=None, key=None, cert=None,
               message_type=SAML_REQUEST, sig_alg=SIG_RSA_SHA256):
        """
        Build the GET request carrying ``doc`` deflated in the query string.

        Signing covers the query parameters, not the document; ``cert`` is
        accepted for symmetry with the POST binding and ignored.
        """
        xmlstr = _to_bytes(doc)
        if sign is None:
            sign = key is not None
        if sign:
            query_string = sign_http_redirect(
                xmlstr, key, relay_state, req_type=message_type, sig_alg=sig_alg)
        else:
            args = {
                message_type: deflate_and_base64_encode(xmlstr).decode('ascii'),
            }
            if _has_relay_state(relay_state):
                args[RELAY_STATE] = relay_state
            query_string = build_signed_data(args)
        separator = '&' if urlparse(url).query else '?'
        return HTTPRequest(
            'GET',
            '{}{}{}'.format(url, separator, query_string),
            dict(parse_qsl(query_string)),
        )

    @staticmethod
    def decode(query_string, message_type=SAML_REQUEST):
        return HTTPRedirectRequestParser(query_string, message_type=message_type).parse()

    @staticmethod
    def deserializer(request_data):
        return get_http_redirect_request_deserializer(request_data)

    @staticmethod
    def is_signed(request_data, saml_tree):
        return request_data.signature is not None

    @staticmethod
    def signature_verifier(certificate, request_data):
        return HTTPRedirectSignatureVerifier(certificate, request_data)

    def extract_message(self, location, message_type=SAML_RESPONSE):
        """Read the message carried by a redirect ``Location``."""
        query_string = urlparse(location).query
        if not query_string:
            raise RequestParserError('No query string in {}'.format(location))
        return self.decode(query_string, message_type=message_type)


HTTP_POST = HTTPPostBinding()
HTTP_REDIRECT = HTTPRedirectBinding()

BINDINGS = {
    HTTP_POST.name: HTTP_POST,
    HTTP_POST.urn: HTTP_POST,
    HTTP_REDIRECT.name: HTTP_REDIRECT,
    HTTP_REDIRECT.urn: HTTP_REDIRECT,
}


def get_binding(name):
    try:
        return BINDINGS[name]
    except KeyError:
        raise UnknownBindingError('Unknown binding: {}'.format(name))
