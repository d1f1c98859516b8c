from collections import namedtuple
from copy import deepcopy
from datetime import datetime, timedelta, timezone
from hashlib import sha1
from urllib.parse import urlparse
from uuid import uuid4

from lxml.builder import ElementMaker
from lxml.etree import tostring

from samlidp.settings import (
    AUTHN_CONTEXT_PASSWORD, BINDING_HTTP_POST, DS, NAMEID_FORMAT_ENTITY, NAMEID_FORMAT_TRANSIENT,
    NAMEID_FORMAT_UNSPECIFIED, NSMAP, SAML, SAMLP, SCM_BEARER, TIMEDELTA, VERSION, XS, XSI,
)

samlp_maker = ElementMaker(
    namespace=SAMLP,
    nsmap=dict(samlp=SAMLP),
)

saml_maker = ElementMaker(
    namespace=SAML,
    nsmap=dict(saml=SAML, xs=XS, xsi=XSI),
)

ds_maker = ElementMaker(
    namespace=DS,
    nsmap=dict(ds=DS),
)

MAKERS = {
    'saml': saml_maker,
    'samlp': samlp_maker,
    'ds': ds_maker,
}


AuthnRequestData = namedtuple(
    'AuthnRequestData',
    ['id', 'issue_instant', 'destination', 'assertion_consumer_service_url', 'protocol_binding', 'issuer'],
)


class SamlMixin(object):
    saml_type = None
    defaults = {}

    def __init__(self, attrib=None, text=None, *args, **kwargs):
        E = MAKERS.get(self.saml_type)
        attributes = self.defaults.copy()
        attributes.update(attrib or {})
        # absent attributes are omitted, never serialized as empty strings
        attributes = {k: v for k, v in attributes.items() if v is not None}
        self._element = getattr(E, self.tag())(
            **attributes
        )
        if text is not None:
            self._element.text = text

    def to_xml(self):
        return tostring(self.tree, pretty_print=True)

    @property
    def tree(self):
        return self._element

    def append(self, el):
        self.tree.append(el.tree)

    @classmethod
    def tag(cls):
        return '{%s}' % NSMAP[cls.saml_type] + cls.__name__


class AuthnRequest(SamlMixin):
    saml_type = 'samlp'
    defaults = {
        'Version': VERSION
    }


class NameIDPolicy(SamlMixin):
    saml_type = 'samlp'
    defaults = {
        'Format': NAMEID_FORMAT_UNSPECIFIED,
        'AllowCreate': 'true',
    }


class Response(SamlMixin):
    saml_type = 'samlp'
    defaults = {
        'Version': VERSION
    }


class Assertion(SamlMixin):
    saml_type = 'saml'
    defaults = {
        'Version': VERSION
    }


class Issuer(SamlMixin):
    saml_type = 'saml'


# AttributeStatement

class AttributeStatement(SamlMixin):
    saml_type = 'saml'


class Attribute(SamlMixin):
    saml_type = 'saml'


class AttributeValue(SamlMixin):
    saml_type = 'saml'

#####################


# AuthnStatement

class AuthnStatement(SamlMixin):
    saml_type = 'saml'


class AuthnContext(SamlMixin):
    saml_type = 'saml'


class AuthnContextClassRef(SamlMixin):
    saml_type = 'saml'

#####################


# Conditions

class Conditions(SamlMixin):
    saml_type = 'saml'


class AudienceRestriction(SamlMixin):
    saml_type = 'saml'


class Audience(SamlMixin):
    saml_type = 'saml'

#####################


# Subject

class Subject(SamlMixin):
    saml_type = 'saml'


class NameID(SamlMixin):
    saml_type = 'saml'
    defaults = {
        'Format': NAMEID_FORMAT_TRANSIENT
    }


class SubjectConfirmation(SamlMixin):
    saml_type = 'saml'
    defaults = {
        'Method': SCM_BEARER
    }


class SubjectConfirmationData(SamlMixin):
    saml_type = 'saml'


#####################


# Status

class Status(SamlMixin):
    saml_type = 'samlp'


class StatusCode(SamlMixin):
    saml_type = 'samlp'


class StatusMessage(SamlMixin):
    saml_type = 'samlp'

#####################


def generate_unique_id():
    '''
    Generates an ID string
    :return: A unique string
    :rtype: string
    '''
    return 'id_{}'.format(sha1(uuid4().hex.encode('utf-8')).hexdigest())


def generate_issue_instant():
    '''
    Generates an issue instant value
    '''
    issue_instant = datetime.now(timezone.utc).replace(tzinfo=None)
    not_before = issue_instant - timedelta(minutes=TIMEDELTA)
    not_on_or_after = issue_instant + timedelta(minutes=TIMEDELTA)
    issue_instant = issue_instant.replace(microsecond=0)
    issue_instant = issue_instant.isoformat() + 'Z'
    not_before = not_before.replace(microsecond=0)
    not_before = not_before.isoformat() + 'Z'
    not_on_or_after = not_on_or_after.replace(microsecond=0)
    not_on_or_after = not_on_or_after.isoformat() + 'Z'
    return issue_instant, not_before, not_on_or_after


def _is_absolute_url(url):
    parsed = urlparse(url)
    return bool(parsed.scheme and parsed.netloc)


def create_login_request(client_id, assertion_consumer_service_url, destination=None,
                         protocol_binding=BINDING_HTTP_POST):
    """
    Build the typed model of a fresh AuthnRequest.

    :param client_id: issuer of the request
    :param assertion_consumer_service_url: where the response is delivered
    :param destination: absolute URL of the identity provider endpoint,
        None to leave the Destination attribute out
    :param protocol_binding: binding the response should use
    """
    if not assertion_consumer_service_url:
        raise ValueError('AssertionConsumerServiceURL is required')
    if destination is not None and not _is_absolute_url(destination):
        raise ValueError('Destination must be an absolute URL: {}'.format(destination))
    issue_instant, _, _ = generate_issue_instant()
    return AuthnRequestData(
        id=generate_unique_id(),
        issue_instant=issue_instant,
        destination=destination,
        assertion_consumer_service_url=assertion_consumer_service_url,
        protocol_binding=protocol_binding,
        issuer=client_id,
    )


def create_authn_request(data):
    authn_request = AuthnRequest(
        attrib=dict(
            ID=data.id,
            IssueInstant=data.issue_instant,
            Destination=data.destination,
            AssertionConsumerServiceURL=data.assertion_consumer_service_url,
            ProtocolBinding=data.protocol_binding,
        )
    )
    issuer = Issuer(text=data.issuer)
    authn_request.append(issuer)
    authn_request.append(NameIDPolicy())
    return authn_request


def create_response(data, response_status, attributes=None, has_assertion=True):
    issue_instant, not_before, not_on_or_after = generate_issue_instant()
    response_attrs = data.get('response').get('attrs')
    # Create a response
    response = Response(
        attrib=dict(
            ID=generate_unique_id(),
            IssueInstant=issue_instant,
            Destination=response_attrs.get('destination'),
            InResponseTo=response_attrs.get('in_response_to')
        )
    )

    # Setup issuer data
    issuer = Issuer(
        attrib=dict(
            Format=NAMEID_FORMAT_ENTITY,
        ),
        text=data.get('issuer').get('text')
    )
    response.append(issuer)

    # Setup status data
    status = Status()
    status_code = StatusCode(
        attrib=dict(
            Value=response_status.get('status_code')
        )
    )
    status.append(status_code)
    status_message_text = response_status.get('status_message')
    if status_message_text is not None:
        status.append(StatusMessage(text=status_message_text))
    response.append(status)

    # Create and setup the assertion
    if has_assertion:
        assertion = Assertion(
            attrib=dict(
                ID=generate_unique_id(),
                IssueInstant=issue_instant,
            )
        )
        # Setup subject data
        subject = Subject()
        name_id = NameID(
            attrib=dict(
                NameQualifier=data.get('issuer').get('text'),
            ),
            text=data.get('name_id').get('text')
        )
        subject.append(name_id)
        subject_confirmation = SubjectConfirmation()
        subject_confirmation_data = SubjectConfirmationData(
            attrib=dict(
                Recipient=response_attrs.get('destination'),
                NotOnOrAfter=not_on_or_after,
                InResponseTo=response_attrs.get('in_response_to')
            )
        )
        subject_confirmation.append(subject_confirmation_data)
        subject.append(subject_confirmation)
        assertion.append(deepcopy(issuer))
        assertion.append(subject)
        # Setup conditions data
        conditions = Conditions(
            attrib=dict(
                NotBefore=not_before,
                NotOnOrAfter=not_on_or_after
            )
        )
        audience_restriction = AudienceRestriction()
        audience = Audience(text=data.get('audience').get('text'))
        audience_restriction.append(audience)
        conditions.append(audience_restriction)
        assertion.append(conditions)
        # Setup authn statement data
        authn_statement = AuthnStatement(
            attrib=dict(
                AuthnInstant=issue_instant,
                SessionIndex=generate_unique_id()
            )
        )
        authn_context = AuthnContext()
        authn_context_class_ref = AuthnContextClassRef(
            text=AUTHN_CONTEXT_PASSWORD
        )
        authn_context.append(authn_context_class_ref)
        authn_statement.append(authn_context)
        assertion.append(authn_statement)
        # Setup attribute statement data (if any)
        if attributes:
            attribute_statement = AttributeStatement()
            for attr, value in attributes.items():
                _attribute = Attribute(
                    attrib=dict(
                        Name=attr
                    )
                )
                _attribute_value = AttributeValue(
                    attrib={'{%s}type' % (XSI): 'xs:string'},
                    text=value
                )
                _attribute.append(_attribute_value)
                attribute_statement.append(_attribute)
            assertion.append(attribute_statement)
        response.append(assertion)
    return response


def create_error_response(data, response_status):
    return create_response(data, response_status, has_assertion=False)
