# SAML2

SAML = 'urn:oasis:names:tc:SAML:2.0:assertion'
SAMLP = 'urn:oasis:names:tc:SAML:2.0:protocol'
DS = 'http://www.w3.org/2000/09/xmldsig#'
XSI = 'http://www.w3.org/2001/XMLSchema-instance'
XS = 'http://www.w3.org/2001/XMLSchema'

NSMAP = {'saml': SAML, 'samlp': SAMLP, 'ds': DS}
NAMEID_FORMAT_ENTITY = 'urn:oasis:names:tc:SAML:2.0:nameid-format:entity'
NAMEID_FORMAT_TRANSIENT = 'urn:oasis:names:tc:SAML:2.0:nameid-format:transient'
NAMEID_FORMAT_UNSPECIFIED = 'urn:oasis:names:tc:SAML:1.1:nameid-format:unspecified'
VERSION = '2.0'
SCM_BEARER = 'urn:oasis:names:tc:SAML:2.0:cm:bearer'
AUTHN_CONTEXT_PASSWORD = 'urn:oasis:names:tc:SAML:2.0:ac:classes:unspecified'

STATUS_SUCCESS = 'urn:oasis:names:tc:SAML:2.0:status:Success'
STATUS_AUTHN_FAILED = 'urn:oasis:names:tc:SAML:2.0:status:AuthnFailed'

BINDING_HTTP_POST = 'urn:oasis:names:tc:SAML:2.0:bindings:HTTP-POST'
BINDING_HTTP_REDIRECT = 'urn:oasis:names:tc:SAML:2.0:bindings:HTTP-Redirect'

SAML_REQUEST = 'SAMLRequest'
SAML_RESPONSE = 'SAMLResponse'
RELAY_STATE = 'RelayState'
SIG_ALG = 'SigAlg'
SIGNATURE_PARAM = 'Signature'

################

# Validation outcomes

MALFORMED = 'Malformed'
BAD_SIGNATURE = 'BadSignature'
BAD_DESTINATION = 'BadDestination'
UNKNOWN_CLIENT = 'UnknownClient'
BAD_ASSERTION_CONSUMER = 'BadAssertionConsumer'


INVALID_REQUEST_LABEL = 'Invalid Request'

################

# Parsing errors

DEFAULT_VALUE_ERROR = 'differs from the expected value {}'


# Crypto

SIG_RSA_SHA1 = 'http://www.w3.org/2000/09/xmldsig#rsa-sha1'
SIG_RSA_SHA224 = 'http://www.w3.org/2001/04/xmldsig-more#rsa-sha224'
SIG_RSA_SHA256 = 'http://www.w3.org/2001/04/xmldsig-more#rsa-sha256'
SIG_RSA_SHA384 = 'http://www.w3.org/2001/04/xmldsig-more#rsa-sha384'
SIG_RSA_SHA512 = 'http://www.w3.org/2001/04/xmldsig-more#rsa-sha512'
DEPRECATED_ALGORITHMS = [SIG_RSA_SHA1]
SUPPORTED_ALGORITHMS = [SIG_RSA_SHA224, SIG_RSA_SHA256, SIG_RSA_SHA384, SIG_RSA_SHA512]

EXC_C14N = 'http://www.w3.org/2001/10/xml-exc-c14n#'

SIG_NS = '{http://www.w3.org/2000/09/xmldsig#}'

SIGNATURE = '{}Signature'.format(SIG_NS)
SIGNED_INFO = '{}SignedInfo'.format(SIG_NS)
SIGNATURE_METHOD = '{}SignatureMethod'.format(SIG_NS)
KEY_INFO = '{}KeyInfo'.format(SIG_NS)
X509_DATA = '{}X509Data'.format(SIG_NS)
X509_CERTIFICATE = '{}X509Certificate'.format(SIG_NS)

# order matters: this is the byte sequence covered by a redirect signature
SIGNED_PARAMS = [SAML_REQUEST, SAML_RESPONSE, RELAY_STATE, SIG_ALG]

########


# Misc
TIMEDELTA = 2  # minutes (used to generate range limits for conditions)
DEFAULT_REALM = 'master'
SAML_PROTOCOL_PATH = '/realms/{realm}/protocol/saml'
TICKET_LIFETIME = 600  # seconds a pending login stays valid
MAX_PENDING_TICKETS = 1000

# elements a RequestedAuthnContext may repeat
MULTIPLE_OCCURRENCES_TAGS = {
    '{%s}AuthnContextClassRef' % (SAML),
    '{%s}AuthnContextDeclRef' % (SAML),
}
