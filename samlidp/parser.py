import base64
import re
import zlib
from collections import namedtuple
from urllib.parse import parse_qsl, unquote_plus

from lxml import etree

from samlidp.exceptions import DeserializationError, RequestParserError, ValidationError
from samlidp.settings import (
    BINDING_HTTP_POST, BINDING_HTTP_REDIRECT, MULTIPLE_OCCURRENCES_TAGS, RELAY_STATE, SAML_REQUEST, SIG_ALG,
    SIGNATURE_PARAM, SIGNED_PARAMS,
)
from samlidp.utils import objectify_from_string
from samlidp.validators import AuthnRequestValidator, ValidatorGroup, XMLFormatValidator

HTTPRedirectRequest = namedtuple(
    'HTTPRedirectRequest',
    ['saml_request', 'relay_state', 'sig_alg', 'signature', 'signed_data'],
)


HTTPPostRequest = namedtuple(
    'HTTPPostRequest', ['saml_request', 'relay_state'])


def _get_deserializer(request, binding):
    validators = [
        XMLFormatValidator(),
        AuthnRequestValidator(binding),
    ]
    validator_group = ValidatorGroup(validators)
    return HTTPRequestDeserializer(request, validator_group)


def get_http_redirect_request_deserializer(request):
    return _get_deserializer(request, BINDING_HTTP_REDIRECT)


def get_http_post_request_deserializer(request):
    return _get_deserializer(request, BINDING_HTTP_POST)


class HTTPRedirectRequestParser(object):
    """
    Parse the raw query string of an HTTP-Redirect message.

    The signed data is rebuilt from the parameters exactly as they
    appeared on the wire, so reordered or re-encoded parameters no
    longer match their signature.
    """

    def __init__(self, querystring, request_class=None, message_type=SAML_REQUEST):
        if isinstance(querystring, bytes):
            querystring = querystring.decode('ascii', 'replace')
        self._querystring = querystring or ''
        self._request_class = request_class or HTTPRedirectRequest
        self._message_type = message_type
        self._raw_params = []
        self._params = {}
        self._saml_request = None
        self._relay_state = None
        self._sig_alg = None
        self._signature = None
        self._signed_data = None

    def parse(self):
        self._split_querystring()
        self._saml_request = self._parse_saml_request()
        self._relay_state = self._parse_relay_state()
        self._signature = self._parse_signature()
        self._sig_alg = self._parse_sig_alg()
        self._signed_data = self._build_signed_data()
        return self._build_request()

    def _split_querystring(self):
        seen = set()
        for chunk in self._querystring.split('&'):
            if not chunk:
                continue
            key, _, _ = chunk.partition('=')
            key = unquote_plus(key)
            if key in seen:
                self._fail("Duplicated parameter in the request: '{}'".format(key))
            seen.add(key)
            self._raw_params.append((key, chunk))
        self._params = dict(parse_qsl(self._querystring, keep_blank_values=True))

    def _extract(self, key):
        try:
            return self._params[key]
        except KeyError as e:
            self._fail("Missing data in the request: '{}'".format(e.args[0]))

    @staticmethod
    def _fail(message):
        raise RequestParserError(message)

    def _parse_saml_request(self):
        saml_request = self._extract(self._message_type)
        return self._decode_saml_request(saml_request)

    def _decode_saml_request(self, saml_request):
        try:
            return self._convert_saml_request(saml_request)
        except (ValueError, zlib.error):
            self._fail("Unable to decode the '{}' element".format(self._message_type))

    @staticmethod
    def _convert_saml_request(saml_request):
        saml_request = base64.b64decode(''.join(saml_request.split()), validate=True)
        saml_request = zlib.decompress(saml_request, -15)
        return saml_request

    def _parse_relay_state(self):
        return self._params.get(RELAY_STATE)

    def _parse_sig_alg(self):
        if self._signature is None:
            return None
        return self._extract(SIG_ALG)

    def _parse_signature(self):
        if SIGNATURE_PARAM not in self._params:
            return None
        signature = self._extract(SIGNATURE_PARAM)
        return self._decode_signature(signature)

    def _decode_signature(self, signature):
        try:
            return base64.b64decode(''.join(signature.split()), validate=True)
        except ValueError:
            self._fail("Unable to decode the 'Signature' element")

    def _build_signed_data(self):
        if self._signature is None:
            return None
        signed_data = '&'.join(
            [chunk for key, chunk in self._raw_params if key in SIGNED_PARAMS],
        )
        return signed_data.encode('ascii')

    def _build_request(self):
        return self._request_class(
            self._saml_request,
            self._relay_state,
            self._sig_alg,
            self._signature,
            self._signed_data,
        )


class HTTPPostRequestParser(object):

    def __init__(self, form, request_class=None, message_type=SAML_REQUEST):
        self._form = form
        self._request_class = request_class or HTTPPostRequest
        self._message_type = message_type
        self._saml_request = None
        self._relay_state = None

    def parse(self):
        self._saml_request = self._parse_saml_request()
        self._relay_state = self._parse_relay_state()
        return self._build_request()

    def _parse_saml_request(self):
        saml_request = self._extract(self._message_type)
        return self._decode_saml_request(saml_request)

    def _extract(self, key):
        try:
            return self._form[key]
        except KeyError as e:
            self._fail("Missing data in the request: '{}'".format(e.args[0]))

    @staticmethod
    def _fail(message):
        raise RequestParserError(message)

    def _decode_saml_request(self, saml_request):
        try:
            return self._convert_saml_request(saml_request)
        except ValueError:
            self._fail("Unable to decode the '{}' element".format(self._message_type))

    @staticmethod
    def _convert_saml_request(saml_request):
        return base64.b64decode(''.join(saml_request.split()), validate=True)

    def _parse_relay_state(self):
        return self._form.get(RELAY_STATE)

    def _build_request(self):
        return self._request_class(self._saml_request, self._relay_state)


class HTTPRequestDeserializer(object):

    def __init__(self, request, validator, saml_class=None):
        self._request = request
        self._validator = validator
        self._saml_class = saml_class or SAMLTree

    def deserialize(self):
        self._validate()
        return self._deserialize()

    def _validate(self):
        try:
            self._validator.validate(self._request)
        except ValidationError as e:
            raise DeserializationError(
                self._request.saml_request,
                e.details,
            )

    def _deserialize(self):
        xml_doc = objectify_from_string(self._request.saml_request)
        return self._saml_class(xml_doc)


class SAMLTree(object):
    """
    Attribute-style view over a parsed SAML document.

    Attributes and children are bound under their snake_cased names for
    convenient navigation. A name that is already taken, either by the
    class or by an earlier binding, is never rebound. Protocol fields are
    read from the real XML attributes through :meth:`attribute` and
    :meth:`child`, never through the snake_cased aliases.
    """

    def __init__(self, xml_doc, multi_occur_tags=None):
        self._xml_doc = xml_doc
        self._multi_occur_tags = multi_occur_tags or MULTIPLE_OCCURRENCES_TAGS
        self.text = self._xml_doc.text
        self._bind_tag()
        self._bind_attributes()
        self._bind_subtrees()

    def _bind_tag(self):
        tag = etree.QName(self._xml_doc).localname
        self.tag = self._to_snake_case(tag)

    @staticmethod
    def _to_snake_case(child_name):
        s1 = re.sub('(.)([A-Z][a-z]+)', r'\1_\2', child_name)
        return re.sub('([a-z0-9])([A-Z])', r'\1_\2', s1).lower()

    def _is_reserved(self, name):
        return name in self.__dict__ or hasattr(type(self), name)

    def _bind(self, name, value):
        if not self._is_reserved(name):
            setattr(self, name, value)

    def _bind_attributes(self):
        for attr_name, attr_val in self._xml_doc.attrib.items():
            self._bind(self._to_snake_case(attr_name), attr_val)

    def _bind_subtrees(self):
        for child in self._xml_doc.iterchildren():
            child_name = self._to_snake_case(etree.QName(child).localname)
            subtree = SAMLTree(child, self._multi_occur_tags)
            if child.tag in self._multi_occur_tags:
                self._handle_as_list(child_name, subtree)
            else:
                self._bind(child_name, subtree)

    def _handle_as_list(self, child_name, subtree):
        existing = self.__dict__.get(child_name)
        if isinstance(existing, list):
            existing.append(subtree)
        else:
            self._bind(child_name, [subtree])

    def get(self, name, default=None):
        return getattr(self, name, default)

    def attribute(self, name, default=None):
        """Value of the XML attribute ``name``, exactly as declared."""
        return self._xml_doc.get(name, default)

    def child(self, tag):
        """First direct child with the qualified ``tag``, or None."""
        element = self._xml_doc.find(tag)
        if element is None:
            return None
        return SAMLTree(element, self._multi_occur_tags)
