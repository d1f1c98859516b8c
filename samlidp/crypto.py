import base64
import zlib
from urllib.parse import urlencode

from cryptography.exceptions import InvalidSignature
from cryptography.hazmat.backends import default_backend
from cryptography.hazmat.primitives.asymmetric.padding import PKCS1v15
from cryptography.hazmat.primitives.hashes import SHA224, SHA256, SHA384, SHA512
from cryptography.hazmat.primitives.serialization import load_pem_private_key
from cryptography.x509 import load_pem_x509_certificate
from lxml.etree import fromstring, tostring
from signxml import XMLSigner, XMLVerifier
from signxml.exceptions import InvalidDigest, InvalidInput, InvalidSignature as InvalidSignature_

from samlidp import log
from samlidp.exceptions import BadConfiguration, SignatureVerificationError
from samlidp.settings import (
    DEPRECATED_ALGORITHMS, EXC_C14N, KEY_INFO, RELAY_STATE, SAML, SAML_REQUEST, SIG_ALG, SIG_RSA_SHA224,
    SIG_RSA_SHA256, SIG_RSA_SHA384, SIG_RSA_SHA512, SIGNATURE, SIGNATURE_METHOD, SIGNATURE_PARAM, SIGNED_INFO,
    SIGNED_PARAMS, SUPPORTED_ALGORITHMS, X509_CERTIFICATE, X509_DATA,
)

logger = log.logger

SIGNATURE_PLACEHOLDER = (
    '<ds:Signature xmlns:ds="http://www.w3.org/2000/09/xmldsig#" Id="placeholder"></ds:Signature>'
)


def deflate_and_base64_encode(msg):
    if not isinstance(msg, bytes):
        msg = msg.encode('utf-8')
    return base64.b64encode(zlib.compress(msg)[2:-4])


def decode_base64_and_inflate(string):
    return zlib.decompress(base64.b64decode(string, validate=True), -15)


def pem_format(cert):
    return '\n'.join([
        '-----BEGIN CERTIFICATE-----',
        cert,
        '-----END CERTIFICATE-----',
    ])


def normalize_x509(cert):
    if isinstance(cert, bytes):
        cert = cert.decode('ascii')
    return ''.join(
        cert.replace(
            '-----BEGIN CERTIFICATE-----', ''
        ).replace(
            '-----END CERTIFICATE-----', ''
        ).strip().split()
    )


def load_certificate(cert):
    """Load a certificate given either as PEM or as bare base64 body."""
    cert = normalize_x509(cert)
    return load_pem_x509_certificate(
        pem_format(cert).encode('ascii'), backend=default_backend()
    )


def load_private_key(key):
    if not key:
        raise BadConfiguration('Missing private key')
    if not isinstance(key, bytes):
        key = key.encode('ascii')
    try:
        return load_pem_private_key(key, None, default_backend())
    except (ValueError, TypeError) as e:
        raise BadConfiguration('Invalid private key: {}'.format(e))


def _certificate_text(cert):
    if not cert:
        raise BadConfiguration('Missing certificate')
    if isinstance(cert, bytes):
        cert = cert.decode('ascii')
    try:
        load_certificate(cert)
    except ValueError as e:
        raise BadConfiguration('Invalid certificate: {}'.format(e))
    return cert


class RSASigner(object):

    def __init__(self, digest, key=None, padding=None):
        self._key = key
        self._digest = digest
        self._padding = padding or PKCS1v15()

    def sign(self, unsigned_data, key=None):
        if key is None:
            key = self._key
        return key.sign(unsigned_data, self._padding, self._digest)


class RSAVerifier(object):

    def __init__(self, digest, padding=None):
        self._digest = digest
        self._padding = padding or PKCS1v15()

    def verify(self, pubkey, signed_data, signature):
        try:
            pubkey.verify(signature, signed_data, self._padding, self._digest)
        except InvalidSignature:
            return False
        else:
            return True


RSA_VERIFIERS = {
    SIG_RSA_SHA224: RSAVerifier(SHA224()),
    SIG_RSA_SHA256: RSAVerifier(SHA256()),
    SIG_RSA_SHA384: RSAVerifier(SHA384()),
    SIG_RSA_SHA512: RSAVerifier(SHA512()),
}


RSA_SIGNERS = {
    SIG_RSA_SHA224: RSASigner(SHA224()),
    SIG_RSA_SHA256: RSASigner(SHA256()),
    SIG_RSA_SHA384: RSASigner(SHA384()),
    SIG_RSA_SHA512: RSASigner(SHA512()),
}


def _insert_placeholder(element):
    issuer = element.find('{%s}Issuer' % SAML)
    if issuer is not None:
        issuer.addnext(fromstring(SIGNATURE_PLACEHOLDER))
    else:
        element.insert(0, fromstring(SIGNATURE_PLACEHOLDER))


def sign_http_post(xmlstr, key, cert, message=True, assertion=False):
    """
    Return a copy of ``xmlstr`` carrying enveloped XML signatures.

    :param message: sign the root protocol message
    :param assertion: sign every Assertion contained in the message
    """
    logger.debug('http-post signing')
    key = load_private_key(key)
    cert = _certificate_text(cert)

    signer = XMLSigner(
        signature_algorithm='rsa-sha256',
        digest_algorithm='sha256',
        c14n_algorithm=EXC_C14N,
    )
    root = fromstring(xmlstr)

    try:
        if assertion:
            logger.debug('signing assertion')
            for _assertion in root.findall('{%s}Assertion' % SAML):
                _insert_placeholder(_assertion)
                root = signer.sign(root, reference_uri=_assertion.attrib['ID'], key=key, cert=cert)
        if message:
            logger.debug('signing message')
            _insert_placeholder(root)
            root = signer.sign(root, reference_uri=root.attrib['ID'], key=key, cert=cert)
    except InvalidInput as e:
        raise BadConfiguration('Unable to sign the message: {}'.format(e))
    return tostring(root, pretty_print=False)


def build_signed_data(args):
    """
    Serialize the signed query parameters in their canonical order.
    """
    return '&'.join(
        [urlencode({k: args[k]})
            for k in SIGNED_PARAMS
            if k in args],
    )


def sign_http_redirect(xmlstr, key, relay_state=None, req_type=SAML_REQUEST, sig_alg=SIG_RSA_SHA256):
    """
    Deflate and sign ``xmlstr`` for the HTTP-Redirect binding.

    Returns the full query string; the order of the parameters on the
    wire is the order they were signed in.
    """
    logger.debug('http-redirect signing')
    logger.debug('request type {}'.format(req_type))
    key = load_private_key(key)
    encoded_message = deflate_and_base64_encode(xmlstr).decode('ascii')
    args = {
        req_type: encoded_message,
        SIG_ALG: sig_alg,
    }
    if relay_state is not None and relay_state.strip() != '':
        args[RELAY_STATE] = relay_state
    query_string = build_signed_data(args)
    signer = RSA_SIGNERS[sig_alg]
    signature = base64.b64encode(signer.sign(query_string.encode('ascii'), key))
    return '{}&{}'.format(
        query_string,
        urlencode({SIGNATURE_PARAM: signature.decode('ascii')}),
    )


class HTTPRedirectSignatureVerifier(object):

    def __init__(self, certificate, request, verifiers=None):
        self._cert = certificate
        self._request = request
        self._verifiers = verifiers or RSA_VERIFIERS

    @property
    def _supported_algorithms(self):
        return ', '.join(SUPPORTED_ALGORITHMS)

    def verify(self):
        self._ensure_supported_algorithm()
        self._verify_signature()

    def _ensure_supported_algorithm(self):
        self._check_algorithm_deprecation_list()
        self._check_algorithm_whitelist()

    def _check_algorithm_deprecation_list(self):
        if self._request.sig_alg in DEPRECATED_ALGORITHMS:
            self._fail(
                "Algorithm '{}' is deprecated. Use one of: {}"
                .format(self._request.sig_alg, self._supported_algorithms)
            )

    @staticmethod
    def _fail(message):
        raise SignatureVerificationError(message)

    def _check_algorithm_whitelist(self):
        if self._request.sig_alg not in SUPPORTED_ALGORITHMS:
            self._fail(
                "Algorithm '{}' is unknown or unsupported. Use one of: {}"
                .format(self._request.sig_alg, self._supported_algorithms)
            )

    def _verify_signature(self):
        pubkey = self._get_pubkey()
        verifier = self._verifiers[self._request.sig_alg]
        if not verifier.verify(
                pubkey, self._request.signed_data, self._request.signature):
            self._fail('Signature verification failed.')

    def _get_pubkey(self):
        return load_certificate(self._cert).public_key()


class HTTPPostSignatureVerifier(object):

    def __init__(self, certificate, request, verifier=None):
        self._cert = certificate
        self._request = request
        self._verifier = verifier or XMLVerifier()
        self._xml_doc = fromstring(request.saml_request)

    @property
    def _supported_algorithms(self):
        return ', '.join(SUPPORTED_ALGORITHMS)

    def verify(self):
        self._ensure_supported_algorithm()
        self._ensure_matching_certificate()
        self._verify_signature()

    def _ensure_supported_algorithm(self):
        self._check_algorithm_deprecation_list()
        self._check_algorithm_whitelist()

    def _check_algorithm_deprecation_list(self):
        sig_alg = self._extract('sig_alg')
        if sig_alg in DEPRECATED_ALGORITHMS:
            self._fail(
                "Algorithm '{}' is deprecated. Use one of: {}"
                .format(sig_alg, self._supported_algorithms)
            )

    def _extract(self, key):
        path = {
            'sig_alg': [SIGNATURE, SIGNED_INFO, SIGNATURE_METHOD],
            'certificate': [SIGNATURE, KEY_INFO, X509_DATA, X509_CERTIFICATE],
        }[key]
        element = self._xml_doc
        for tag in path:
            element = element.find(tag)
            if element is None:
                self._fail('Element {} missing from the signature.'.format(tag))
        if key == 'sig_alg':
            return element.get('Algorithm')
        return element.text

    @staticmethod
    def _fail(message):
        raise SignatureVerificationError(message)

    def _check_algorithm_whitelist(self):
        sig_alg = self._extract('sig_alg')
        if sig_alg not in SUPPORTED_ALGORITHMS:
            self._fail(
                "Algorithm '{}' is unknown or unsupported. Use one of: {}"
                .format(sig_alg, self._supported_algorithms)
            )

    def _ensure_matching_certificate(self):
        request_cert = self._extract('certificate') or ''
        if normalize_x509(request_cert) != normalize_x509(self._cert):
            self._fail(
                'The X509 certificate in the request differs from the '
                'one registered for the client.'
            )

    def _verify_signature(self):
        try:
            result = self._verifier.verify(
                self._request.saml_request, x509_cert=normalize_x509(self._cert))
        except InvalidDigest:
            self._fail('Invalid digest value.')
        except InvalidSignature_:
            self._fail('Signature verification failed.')
        except InvalidInput as e:
            self._fail('Invalid signature: {}'.format(e))
        if result.signed_xml.get('ID') != self._xml_doc.get('ID'):
            self._fail('The signature does not cover the request.')
