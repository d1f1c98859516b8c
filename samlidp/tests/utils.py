import json
import os
import os.path

import yaml
from OpenSSL import crypto


class FakeRequest(object):

    def __init__(self, data):
        self.saml_request = data


def generate_certificate(fname, path):
    key = crypto.PKey()
    key.generate_key(crypto.TYPE_RSA, 2048)
    cert = crypto.X509()
    cert.get_subject().C = 'IT'
    cert.get_subject().CN = fname
    cert.set_issuer(cert.get_subject())
    cert.set_serial_number(1000)
    cert.gmtime_adj_notBefore(0)
    cert.gmtime_adj_notAfter(10 * 365 * 24 * 60 * 60)
    cert.set_pubkey(key)
    cert.sign(key, 'sha256')
    with open(os.path.join(path, '{}.crt'.format(fname)), 'wb') as fp:
        fp.write(crypto.dump_certificate(crypto.FILETYPE_PEM, cert))
    with open(os.path.join(path, '{}.key'.format(fname)), 'wb') as fp:
        fp.write(crypto.dump_privatekey(crypto.FILETYPE_PEM, key))


def read_file(path, fname):
    with open(os.path.join(path, fname), 'rb') as fp:
        return fp.read()


USERS = {
    'test': {
        'pwd': 'test',
        'client': None,
        'attrs': {
            'name': 'Test',
            'email': 'test@example.org',
        },
    },
    'other': {
        'pwd': 'other',
        'client': 'http://other.example.org',
        'attrs': {},
    },
}


def write_config(path, **overrides):
    """
    Write a config.yaml (and users.json) under ``path`` and return the
    configuration file name.

    Expects ``idp``, ``sp`` and ``spsigned`` key pairs in ``path``.
    """
    confdata = {
        'key_file': os.path.join(path, 'idp.key'),
        'cert_file': os.path.join(path, 'idp.crt'),
        'base_url': 'http://localhost:8088',
        'host': '127.0.0.1',
        'port': 8088,
        'debug': False,
        'users_file': os.path.join(path, 'users.json'),
        'clients': [
            {
                'client_id': 'http://sp.example.org',
                'assertion_consumer_urls': ['http://sp.example.org/acs'],
                'sign_requests': False,
                'cert_file': os.path.join(path, 'sp.crt'),
            },
            {
                'client_id': 'http://signed.example.org',
                'assertion_consumer_urls': ['http://signed.example.org/acs'],
                'sign_requests': True,
                'cert_file': os.path.join(path, 'spsigned.crt'),
            },
            {
                'client_id': 'http://open.example.org',
            },
        ],
    }
    confdata.update(overrides)
    with open(os.path.join(path, 'users.json'), 'w') as fp:
        json.dump(USERS, fp)
    fname = os.path.join(path, 'config.yaml')
    with open(fname, 'w') as fp:
        yaml.safe_dump(confdata, fp)
    return fname
