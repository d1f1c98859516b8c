import re
from collections import namedtuple
from urllib.parse import unquote, urlparse

from lxml import etree
from voluptuous import ALLOW_EXTRA, All, Any, In, Invalid, Length, MultipleInvalid, Optional, Schema, Url
from voluptuous.validators import Equal

from samlidp.exceptions import (
    AuthnRequestValidationError, DestinationValidationError, GroupValidationError, StopValidation, ValidationError,
    XMLFormatValidationError,
)
from samlidp.settings import (
    BINDING_HTTP_POST, BINDING_HTTP_REDIRECT, DEFAULT_VALUE_ERROR, DS as SIGNATURE, SAML as ASSERTION,
    SAMLP as PROTOCOL, VERSION,
)
from samlidp.utils import saml_to_dict, str_to_struct_time

ValidationDetail = namedtuple(
    'ValidationDetail',
    ['value', 'line', 'column', 'domain_name', 'type_name', 'message', 'path']
)

AUTHNREQUEST_TAG = '{%s}AuthnRequest' % (PROTOCOL)


def _check_utc_date(date):
    try:
        str_to_struct_time(date)
    except Exception:
        raise Invalid('the date is not in UTC format')
    return date


def _strip_namespaces(string):
    return re.sub(r'\{(urn|http):.+?\}', '', string)


class ValidatorGroup(object):

    def __init__(self, validators):
        self._validators = validators
        self._validation_errors = []

    def validate(self, data):
        self._run(data)
        if self._validation_errors:
            raise GroupValidationError(self._validation_errors)

    def _run(self, data):
        try:
            self._run_validators(data)
        except StopValidation:
            pass

    def _run_validators(self, data):
        for validator in self._validators:
            self._run_validator(validator, data)

    def _run_validator(self, validator, data):
        try:
            validator.validate(data)
        except XMLFormatValidationError as e:
            self._handle_blocking_error(e)
        except ValidationError as e:
            self._handle_nonblocking_error(e)

    def _handle_blocking_error(self, error):
        self._handle_nonblocking_error(error)
        raise StopValidation

    def _handle_nonblocking_error(self, error):
        self._validation_errors += error.details


class XMLFormatValidator(object):
    """
    Ensure XML is well formed.
    """

    def __init__(self, parser=None):
        self._parser = parser or etree.XMLParser(resolve_entities=False, no_network=True)

    def validate(self, request):
        try:
            etree.fromstring(request.saml_request, parser=self._parser)
        except SyntaxError:
            self._handle_errors()

    def _handle_errors(self):
        errors = self._build_errors()
        raise XMLFormatValidationError(errors)

    def _build_errors(self):
        errors = self._parser.error_log
        return [
            ValidationDetail(None, err.line, err.column, err.domain_name,
                             err.type_name, err.message, err.path)
            for err in errors
        ] or [ValidationDetail(None, None, None, None, None, 'Document is empty', None)]


class AuthnRequestValidator(object):
    """
    Structural checks on an AuthnRequest.

    Only the HTTP-POST binding may carry an embedded signature; redirect
    signatures travel in the query string.
    """

    def __init__(self, binding):
        self._binding = binding

    def _check_no_embedded_signature(self, children):
        if self._binding == BINDING_HTTP_REDIRECT and '{%s}Signature' % (SIGNATURE) in children:
            raise Invalid(
                'embedded signature not allowed with the HTTP-Redirect binding',
                path=['{%s}Signature' % (SIGNATURE)],
            )
        return children

    def _schema(self):
        issuer = Schema(
            {
                'attrs': dict,
                'children': {},
                'text': All(str, Length(min=1)),
            },
            required=True,
        )

        authnrequest_attr_schema = Schema(
            {
                'ID': All(str, Length(min=1)),
                'Version': Equal(VERSION, msg=DEFAULT_VALUE_ERROR.format(VERSION)),
                'IssueInstant': All(str, _check_utc_date),
                Optional('Destination'): Url(),
                'AssertionConsumerServiceURL': Url(),
                Optional('ProtocolBinding'): In(
                    [BINDING_HTTP_POST, BINDING_HTTP_REDIRECT],
                    msg=DEFAULT_VALUE_ERROR.format(
                        ', '.join([BINDING_HTTP_POST, BINDING_HTTP_REDIRECT]))
                ),
            },
            required=True,
            extra=ALLOW_EXTRA,
        )

        children = Schema(
            All(
                Schema(
                    {
                        '{%s}Issuer' % (ASSERTION): issuer,
                        Optional('{%s}Signature' % (SIGNATURE)): dict,
                        Optional('{%s}NameIDPolicy' % (PROTOCOL)): dict,
                    },
                    required=True,
                    extra=ALLOW_EXTRA,
                ),
                self._check_no_embedded_signature,
            ),
            required=True,
        )

        return Schema(
            {
                AUTHNREQUEST_TAG: {
                    'attrs': authnrequest_attr_schema,
                    'children': children,
                    'text': Any(None, str),
                }
            },
            required=True,
        )

    def validate(self, request):
        data = saml_to_dict(request.saml_request)
        try:
            self._schema()(data)
        except MultipleInvalid as e:
            raise AuthnRequestValidationError(details=self._build_errors(e, data))

    @staticmethod
    def _build_errors(exc, data):
        errors = []
        for err in exc.errors:
            _paths = []
            _attr = None
            for idx, _path in enumerate(err.path):
                if _path != 'children':
                    if _path == 'attrs':
                        try:
                            _attr = err.path[(idx + 1)]
                        except IndexError:
                            _attr = ''
                        break

                    # strip namespaces for better readability
                    _paths.append(_strip_namespaces(str(_path)))
            path = '/'.join(_paths)
            if _attr is not None:
                path += ' - attribute: ' + _attr

            # find value to show (iterate multiple times inside data
            # until we find the sub-element or attribute)
            _val = data
            for _ in err.path:
                try:
                    _val = _val[_]
                except (KeyError, TypeError):
                    _val = None
                    break

            # no need to show value if the error is the presence of the element
            _msg = err.msg
            if 'extra keys not allowed' in _msg:
                _val = None
                _msg = 'item not allowed'

            errors.append(
                ValidationDetail(
                    _val, None, None, None, None, _msg, path
                )
            )
        return errors


class DestinationValidator(object):
    """
    Compare the Destination declared by a request with the endpoint it
    was actually delivered to.

    Missing ports are resolved through ``known_protocols``, a mapping of
    URL scheme to the port the server answers on for that scheme, so that
    ``http://idp/realms/x`` and ``http://idp:8080/realms/x`` compare equal
    when ``known_protocols`` is ``{'http': 8080}``.
    """

    def __init__(self, expected, known_protocols=None, required=False):
        self._expected = expected
        self._known_protocols = known_protocols or {}
        self._required = required

    @staticmethod
    def _fail(message):
        raise DestinationValidationError(message)

    def validate(self, destination):
        if destination is None:
            if self._required:
                self._fail('Destination is mandatory for signed requests')
            return
        if self._normalize(destination) != self._normalize(self._expected):
            self._fail(
                "Destination '{}' does not match the expected endpoint '{}'".format(
                    destination, self._expected)
            )

    def _normalize(self, url):
        parsed = urlparse(url)
        scheme = parsed.scheme.lower()
        try:
            port = parsed.port
        except ValueError:
            self._fail("Invalid port in '{}'".format(url))
        if port is None:
            port = self._known_protocols.get(scheme)
        if port is not None:
            port = int(port)
        host = (parsed.hostname or '').lower()
        path = unquote(parsed.path) or '/'
        return scheme, host, port, path, parsed.query
