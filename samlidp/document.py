"""XML codec for AuthnRequest documents.

Documents are plain lxml trees. Callers that need protocol-violating input
for negative testing mutate a copy through :func:`transform_document`
instead of asking the typed builder for invalid states.
"""
from copy import deepcopy

from lxml import etree

from samlidp.saml import AuthnRequestData, create_authn_request
from samlidp.settings import NSMAP, SAML, SAMLP

AUTHN_REQUEST_TAG = '{%s}AuthnRequest' % SAMLP
ISSUER_TAG = '{%s}Issuer' % SAML


def build_document(data):
    return create_authn_request(data).tree


def document_to_string(doc, pretty_print=False):
    return etree.tostring(doc, xml_declaration=False, encoding='utf-8', pretty_print=pretty_print)


def document_from_string(xmlstr):
    if not isinstance(xmlstr, bytes):
        xmlstr = xmlstr.encode('utf-8')
    return etree.fromstring(xmlstr, parser=etree.XMLParser(resolve_entities=False))


def transform_document(doc, fn):
    """
    Apply ``fn`` to a copy of ``doc``.

    ``fn`` receives the copied root element and may either mutate it in
    place and return it, or return a replacement element.
    """
    copied = deepcopy(doc)
    transformed = fn(copied)
    return copied if transformed is None else transformed


def _qualify(tag):
    if tag.startswith('{') or ':' not in tag:
        return tag
    prefix, localname = tag.split(':', 1)
    return '{%s}%s' % (NSMAP[prefix], localname)


def _find_elements(doc, tag):
    tag = _qualify(tag)
    return [el for el in doc.iter(tag)]


def set_element_attribute_value(doc, tag, attribute, value):
    """
    Overwrite ``attribute`` on every element named ``tag``.

    ``tag`` may use a prefixed name such as ``samlp:AuthnRequest``.
    """
    for element in _find_elements(doc, tag):
        element.set(attribute, value)
    return doc


def remove_element_attribute(doc, tag, attribute):
    for element in _find_elements(doc, tag):
        element.attrib.pop(attribute, None)
    return doc


def read_authn_request(doc):
    if doc.tag != AUTHN_REQUEST_TAG:
        raise ValueError('Not an AuthnRequest: {}'.format(doc.tag))
    issuer = doc.find(ISSUER_TAG)
    return AuthnRequestData(
        id=doc.get('ID'),
        issue_instant=doc.get('IssueInstant'),
        destination=doc.get('Destination'),
        assertion_consumer_service_url=doc.get('AssertionConsumerServiceURL'),
        protocol_binding=doc.get('ProtocolBinding'),
        issuer=issuer.text if issuer is not None else None,
    )
