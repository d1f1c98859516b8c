from collections import namedtuple

from samlidp import config, log
from samlidp.bindings import HTTP_POST, HTTP_REDIRECT
from samlidp.clients import ClientRegistry
from samlidp.exceptions import (
    AssertionConsumerValidationError, DeserializationError, DestinationValidationError, NoCertificateError,
    RequestParserError, SignatureVerificationError, UnknownClientError,
)
from samlidp.settings import (
    BAD_ASSERTION_CONSUMER, BAD_DESTINATION, BAD_SIGNATURE, MALFORMED, SAML, SAML_REQUEST, UNKNOWN_CLIENT,
)
from samlidp.validators import DestinationValidator

logger = log.logger

ISSUER_TAG = '{%s}Issuer' % (SAML)


class ValidationOutcome(namedtuple(
        'ValidationOutcome', ['accepted', 'reason', 'request', 'relay_state', 'binding', 'details'])):
    """
    Result of processing one inbound AuthnRequest.

    ``request`` is the decoded SAMLTree, only set when accepted.
    """

    @classmethod
    def accept(cls, request, relay_state=None, binding=None):
        return cls(True, None, request, relay_state, binding, [])

    @classmethod
    def reject(cls, reason, details=None, binding=None):
        return cls(False, reason, None, None, binding, details or [])


class AuthnRequestProcessor(object):
    """
    Decode and validate an inbound AuthnRequest.

    Steps run in a fixed order and stop at the first failure: decode,
    client lookup, signature, destination, assertion consumer. Nothing is
    stored before every check has passed.
    """

    def __init__(self, conf=None, registry=None):
        self._config = conf or config.params
        self._registry = registry or ClientRegistry.from_config(self._config)

    def process(self, form=None, query_string=None):
        binding = self._select_binding(form, query_string)
        if binding is None:
            return ValidationOutcome.reject(
                MALFORMED, ['No {} found in the request'.format(SAML_REQUEST)])
        try:
            return self._process(binding, form, query_string)
        except RequestParserError as err:
            return self._reject(MALFORMED, binding, [err.args[0]] if err.args else [])
        except DeserializationError as err:
            return self._reject(MALFORMED, binding, err.details)
        except UnknownClientError as err:
            return self._reject(UNKNOWN_CLIENT, binding, [err.args[0]])
        except SignatureVerificationError as err:
            return self._reject(BAD_SIGNATURE, binding, [err.args[0]])
        except DestinationValidationError as err:
            return self._reject(BAD_DESTINATION, binding, [err.args[0]])
        except AssertionConsumerValidationError as err:
            return self._reject(BAD_ASSERTION_CONSUMER, binding, [err.args[0]])

    @staticmethod
    def _select_binding(form, query_string):
        if form and SAML_REQUEST in form:
            return HTTP_POST
        if query_string:
            if isinstance(query_string, bytes):
                query_string = query_string.decode('ascii', 'replace')
            keys = [chunk.partition('=')[0] for chunk in query_string.split('&')]
            if SAML_REQUEST in keys:
                return HTTP_REDIRECT
        return None

    @staticmethod
    def _reject(reason, binding, details):
        logger.info('AuthnRequest rejected ({}) via {} binding'.format(reason, binding.name))
        for detail in details:
            logger.debug('rejection detail: {}'.format(detail))
        return ValidationOutcome.reject(reason, details, binding)

    def _process(self, binding, form, query_string):
        # known ports and endpoint are read together from one config snapshot
        expected_destination = self._config.absolute_saml_url
        known_protocols = self._config.known_protocols

        if binding is HTTP_POST:
            request_data = binding.decode(form)
        else:
            request_data = binding.decode(query_string)
        saml_tree = binding.deserializer(request_data).deserialize()
        logger.debug('AuthnRequest: \n{}'.format(request_data.saml_request))

        issuer = saml_tree.child(ISSUER_TAG)
        if issuer is None:
            raise RequestParserError('AuthnRequest has no Issuer')
        client = self._registry.get(issuer.text)
        signed = binding.is_signed(request_data, saml_tree)
        self._verify_signature(binding, request_data, client, signed)

        DestinationValidator(
            expected_destination,
            known_protocols,
            required=signed,
        ).validate(saml_tree.attribute('Destination'))

        acs_url = saml_tree.attribute('AssertionConsumerServiceURL')
        if not client.accepts_assertion_consumer(acs_url):
            raise AssertionConsumerValidationError(
                "AssertionConsumerServiceURL '{}' is not registered for client {}".format(
                    acs_url, client.client_id)
            )
        return ValidationOutcome.accept(saml_tree, request_data.relay_state, binding)

    @staticmethod
    def _verify_signature(binding, request_data, client, signed):
        if not signed:
            if client.sign_requests:
                raise SignatureVerificationError(
                    'Client {} requires signed requests'.format(client.client_id))
            return
        try:
            certificate = client.certificate
        except NoCertificateError as err:
            raise SignatureVerificationError(err.args[0])
        binding.signature_verifier(certificate, request_data).verify()
