class SamlIdpError(Exception):
    """Base exception class"""


class BadConfiguration(SamlIdpError):
    """Invalid configuration file or unusable key material."""


class RequestParserError(SamlIdpError):
    pass


class UnknownBindingError(SamlIdpError):
    pass


class DeserializationError(SamlIdpError):

    def __init__(self, initial_data, details):
        super(DeserializationError, self).__init__()
        self.initial_data = initial_data
        self.details = details


class ValidationError(SamlIdpError):
    """Base validation error class"""

    def __init__(self, details):
        super(ValidationError, self).__init__()
        self.details = details


class XMLFormatValidationError(ValidationError):
    pass


class AuthnRequestValidationError(ValidationError):
    pass


class GroupValidationError(ValidationError):
    pass


class StopValidation(SamlIdpError):
    pass


class SignatureVerificationError(SamlIdpError):
    pass


class DestinationValidationError(SamlIdpError):
    pass


class AssertionConsumerValidationError(SamlIdpError):
    pass


class UnknownClientError(SamlIdpError):
    pass


class NoCertificateError(SamlIdpError):
    pass
