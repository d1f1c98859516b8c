import json
from copy import deepcopy

import yaml
from voluptuous import ALLOW_EXTRA, All, Any, Coerce, In, Invalid, Length, Range, Required, Schema, Url

from samlidp.exceptions import BadConfiguration
from samlidp.settings import DEFAULT_REALM, SAML_PROTOCOL_PATH


class ConfigValidator(object):

    def __init__(self, confdata):
        self._confdata = confdata
        self._init_schema()
        self._init_custom_validators()

    def _init_schema(self):
        self._schema = {
            Required('key_file'): str,
            Required('cert_file'): str,
            Required('base_url'): Url(),
            'host': str,
            'port': Any(int, str),
            'debug': bool,
            'https': bool,
            'https_cert_file': str,
            'https_key_file': str,
            'users_file': str,
            'behind_reverse_proxy': bool,
            'realm': All(str, Length(min=1)),
            'known_protocols': {
                str: All(Coerce(int), Range(min=1, max=65535)),
            },
            'invalid_request_status': All(int, In([400, 403, 500])),
            'clients': All(
                [
                    {
                        Required('client_id'): All(str, Length(min=1)),
                        'assertion_consumer_urls': [Url()],
                        'sign_requests': bool,
                        'cert_file': str,
                    }
                ],
                Length(min=0),
            ),
        }

    def _init_custom_validators(self):
        def check_https(data):
            https = data.get('https')
            key_path = data.get('https_key_file')
            cert_path = data.get('https_cert_file')
            if https and not all([key_path, cert_path]):
                raise Invalid(
                    'HTTPS mode error: key and/or certificate missing')
            return data

        def check_signing_clients(data):
            for client in data.get('clients', []):
                if client.get('sign_requests') and not client.get('cert_file'):
                    raise Invalid(
                        'Client {} requires signed requests but has no '
                        'certificate'.format(client['client_id'])
                    )
            return data

        self._custom_validators = [
            check_https,
            check_signing_clients,
        ]

    def validate(self):
        try:
            self._validate()
        except Invalid as e:
            self._fail(e)

    @staticmethod
    def _fail(exc):
        raise BadConfiguration(str(exc))

    def _validate(self):
        schema = Schema(
            All(self._schema, *self._custom_validators),
            extra=ALLOW_EXTRA,
        )
        schema(self._confdata)


class Config(object):

    def __init__(self, confdata):
        self._confdata = confdata
        self._idp_key = self._load_idp_key()
        self._idp_certificate = self._load_idp_certificate()

    def _load_idp_key(self):
        try:
            return self._read_file_bytes(self.idp_key_file_path)
        except OSError:
            self._fail('Unable to read the private key from {}'.format(
                self.idp_key_file_path))

    @staticmethod
    def _read_file_bytes(path):
        with open(path, 'rb') as fp:
            return fp.read()

    @property
    def idp_key_file_path(self):
        return self._confdata['key_file']

    @staticmethod
    def _fail(message):
        raise BadConfiguration(message)

    def _load_idp_certificate(self):
        try:
            return self._read_file_bytes(self.idp_certificate_file_path)
        except OSError:
            self._fail('Unable to read the certificate from {}'.format(
                self.idp_certificate_file_path))

    @property
    def idp_certificate_file_path(self):
        return self._confdata['cert_file']

    @property
    def idp_key(self):
        return self._idp_key

    @property
    def idp_certificate(self):
        return self._idp_certificate

    @property
    def entity_id(self):
        return self._confdata['base_url'].rstrip('/')

    @property
    def host(self):
        return self._confdata.get('host', '0.0.0.0')

    @property
    def port(self):
        return self._confdata.get('port', 8000)

    @property
    def debug(self):
        return self._confdata.get('debug', True)

    @property
    def https(self):
        return self._confdata.get('https', False)

    @property
    def https_key_file_path(self):
        return self._confdata.get('https_key_file')

    @property
    def https_certificate_file_path(self):
        return self._confdata.get('https_cert_file')

    @property
    def realm(self):
        return self._confdata.get('realm', DEFAULT_REALM)

    @property
    def saml_endpoint(self):
        return SAML_PROTOCOL_PATH.format(realm=self.realm)

    @property
    def absolute_saml_url(self):
        return self.entity_id + self.saml_endpoint

    @property
    def known_protocols(self):
        return {
            scheme: int(port)
            for scheme, port in self._confdata.get('known_protocols', {}).items()
        }

    @property
    def invalid_request_status(self):
        return self._confdata.get('invalid_request_status', 400)

    @property
    def clients(self):
        return deepcopy(self._confdata.get('clients', []))

    @property
    def users_file_path(self):
        return self._confdata.get('users_file', 'conf/users.json')

    @property
    def behind_reverse_proxy(self):
        return self._confdata.get('behind_reverse_proxy', False)


class BaseConfigParser(object):

    def __init__(self, path):
        self._path = path
        self._fp = None

    def parse(self):
        try:
            return self._parse()
        except OSError:
            raise BadConfiguration(
                'Unable to access the configuration file: {}'.format(self._path))
        except ValueError:
            raise BadConfiguration(
                'Syntax error in the configuration file: {}'.format(self._path))

    def _parse(self):
        with open(self._path, 'r') as fp:
            self._fp = fp
            return self._deserialize()


class YAMLConfigParser(BaseConfigParser):

    def _deserialize(self):
        try:
            return yaml.safe_load(self._fp)
        except yaml.YAMLError as e:
            raise ValueError(str(e))


class JSONConfigParser(BaseConfigParser):

    def _deserialize(self):
        return json.load(self._fp)


def _get_parser_class(fileformat):
    try:
        return {
            'yaml': YAMLConfigParser,
            'json': JSONConfigParser,
        }[fileformat]
    except KeyError:
        raise BadConfiguration('Unknown configuration type: {}'.format(fileformat))


params = None


def load(f_name, f_type='yaml'):
    """
    Load configuration from a YAML or JSON file
    """
    global params
    parser = _get_parser_class(f_type)(f_name)
    confdata = parser.parse()
    if not isinstance(confdata, dict):
        raise BadConfiguration('Empty configuration file: {}'.format(f_name))
    ConfigValidator(confdata).validate()
    params = Config(confdata)
    return params
