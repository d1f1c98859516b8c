"""Registered SAML clients (service providers) and their key material."""
from samlidp import config, log
from samlidp.crypto import load_certificate
from samlidp.exceptions import BadConfiguration, NoCertificateError, UnknownClientError

logger = log.logger


class Client(object):

    def __init__(self, client_id, assertion_consumer_urls=None, sign_requests=False, certificate=None):
        self.client_id = client_id
        self.assertion_consumer_urls = list(assertion_consumer_urls or [])
        self.sign_requests = sign_requests
        self._certificate = certificate

    def __repr__(self):
        return '<Client {}>'.format(self.client_id)

    @property
    def certificate(self):
        if not self._certificate:
            raise NoCertificateError(
                'No certificate registered for client {}'.format(self.client_id))
        return self._certificate

    def accepts_assertion_consumer(self, url):
        if not self.assertion_consumer_urls:
            return True
        return url in self.assertion_consumer_urls


class ClientRegistry(object):
    """
    Read-only lookup of clients by identifier.

    Certificates are read once when the registry is built and shared by
    every validation afterwards.
    """

    def __init__(self, clients=None):
        self._clients = {}
        for client in clients or []:
            self._clients[client.client_id] = client

    @classmethod
    def from_config(cls, conf=None):
        conf = conf or config.params
        clients = []
        for entry in conf.clients:
            certificate = None
            cert_file = entry.get('cert_file')
            if cert_file:
                certificate = cls._read_certificate(cert_file)
            clients.append(
                Client(
                    entry['client_id'],
                    assertion_consumer_urls=entry.get('assertion_consumer_urls'),
                    sign_requests=entry.get('sign_requests', False),
                    certificate=certificate,
                )
            )
        logger.debug('Loaded {} client(s)'.format(len(clients)))
        return cls(clients)

    @staticmethod
    def _read_certificate(path):
        try:
            with open(path, 'r') as fp:
                certificate = fp.read()
        except OSError:
            raise BadConfiguration('Unable to read the certificate from {}'.format(path))
        try:
            load_certificate(certificate)
        except ValueError:
            raise BadConfiguration('Invalid certificate in {}'.format(path))
        return certificate

    def get(self, client_id):
        if client_id is not None:
            client_id = client_id.strip()
        try:
            return self._clients[client_id]
        except KeyError:
            raise UnknownClientError(
                "Client '{}' is not registered".format(client_id))
