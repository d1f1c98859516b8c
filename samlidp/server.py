import time
from hashlib import sha1
from logging.handlers import RotatingFileHandler

from flask import Response, redirect, render_template, request, url_for
from lxml.etree import tostring

from samlidp import config
from samlidp.bindings import HTTP_POST, HTTP_REDIRECT, BINDINGS
from samlidp.clients import ClientRegistry
from samlidp.crypto import sign_http_post
from samlidp.processing import AuthnRequestProcessor
from samlidp.saml import create_error_response, create_response
from samlidp.settings import (
    INVALID_REQUEST_LABEL, MAX_PENDING_TICKETS, SAML, SAML_RESPONSE, STATUS_AUTHN_FAILED, STATUS_SUCCESS,
    TICKET_LIFETIME,
)
from samlidp.users import JsonUserManager

ISSUER_TAG = '{%s}Issuer' % (SAML)


class Ticket(object):
    """Accepted AuthnRequest waiting for the user to log in."""

    def __init__(self, saml_tree, relay_state, binding, lifetime=TICKET_LIFETIME):
        self.saml_tree = saml_tree
        self.relay_state = relay_state
        self.binding = binding
        self.expires_at = time.time() + lifetime

    def expired(self):
        return time.time() > self.expires_at

    @property
    def request_id(self):
        return self.saml_tree.attribute('ID')

    @property
    def client_id(self):
        return self.saml_tree.child(ISSUER_TAG).text.strip()

    @property
    def assertion_consumer_service_url(self):
        return self.saml_tree.attribute('AssertionConsumerServiceURL')

    @property
    def response_binding(self):
        protocol_binding = self.saml_tree.attribute('ProtocolBinding')
        return BINDINGS.get(protocol_binding, HTTP_POST)


class IdpServer(object):

    def __init__(self, app, conf=None, registry=None, user_manager=None):
        """
        :param app: Flask instance
        :param conf: config.Config instance
        :param registry: clients.ClientRegistry instance
        :param user_manager: users.AbstractUserManager instance
        """
        self.app = app
        self._config = conf or config.params
        self._registry = registry or ClientRegistry.from_config(self._config)
        self.user_manager = user_manager or JsonUserManager(self._config)
        self.processor = AuthnRequestProcessor(self._config, self._registry)
        self.ticket = {}
        self.ticket_lifetime = TICKET_LIFETIME
        self.max_tickets = MAX_PENDING_TICKETS
        handler = RotatingFileHandler(
            'samlidp.log', maxBytes=500000, backupCount=1
        )
        self.app.logger.addHandler(handler)
        self._setup_app_routes()

    def _setup_app_routes(self):
        """
        Setup Flask routes
        """
        self.app.add_url_rule(
            self._config.saml_endpoint,
            'single_sign_on_service',
            self.single_sign_on_service,
            methods=['GET', 'POST']
        )
        self.app.add_url_rule(
            '/login', 'login', self.login, methods=['POST']
        )

    def _purge_tickets(self):
        """
        Drop expired tickets, then the oldest ones beyond the size limit
        """
        for key in [key for key, ticket in self.ticket.items() if ticket.expired()]:
            self.ticket.pop(key, None)
        while self.ticket and len(self.ticket) >= self.max_tickets:
            self.ticket.pop(next(iter(self.ticket)), None)

    def _store_request(self, outcome):
        """
        Store an accepted AuthnRequest and return its lookup key
        """
        saml_tree = outcome.request
        key = sha1(tostring(saml_tree._xml_doc)).hexdigest()
        self._purge_tickets()
        self.ticket.pop(key, None)
        self.ticket[key] = Ticket(
            saml_tree, outcome.relay_state, outcome.binding, lifetime=self.ticket_lifetime
        )
        self.app.logger.debug('Stored request {} as {}'.format(saml_tree.attribute('ID'), key))
        return key

    def _consume_ticket(self, key):
        return self.ticket.pop(key, None)

    def _invalid_request(self):
        return render_template(
            'error.html', msg=INVALID_REQUEST_LABEL
        ), self._config.invalid_request_status

    def _render_login(self, key, ticket, error=None):
        return render_template(
            'login.html',
            action=url_for('login'),
            request_key=key,
            client_id=ticket.client_id,
            error=error,
        )

    def single_sign_on_service(self):
        """
        Process Http-Redirect or Http-POST AuthnRequests
        """
        if request.method == 'POST':
            outcome = self.processor.process(form=request.form)
        else:
            outcome = self.processor.process(query_string=request.query_string)
        if not outcome.accepted:
            self.app.logger.info('Invalid request: {}'.format(outcome.reason))
            return self._invalid_request()
        key = self._store_request(outcome)
        return self._render_login(key, self.ticket[key]), 200

    def _response_data(self, ticket, name_id=None):
        return {
            'response': {
                'attrs': {
                    'in_response_to': ticket.request_id,
                    'destination': ticket.assertion_consumer_service_url,
                }
            },
            'issuer': {
                'text': self._config.entity_id
            },
            'name_id': {
                'text': name_id
            },
            'audience': {
                'text': ticket.client_id
            },
        }

    def _send_response(self, ticket, xmlstr, sign_assertion=True):
        """
        Deliver a Response to the client with the binding it asked for.

        POST responses carry enveloped XML signatures (on the assertion for
        successful logins, on the message otherwise); Redirect responses
        are signed through the query string.
        """
        binding = ticket.response_binding
        if binding is HTTP_REDIRECT:
            self.app.logger.debug('Response: \n{}'.format(xmlstr))
            http_request = binding.encode(
                xmlstr,
                ticket.assertion_consumer_service_url,
                relay_state=ticket.relay_state,
                sign=True,
                key=self._config.idp_key,
                message_type=SAML_RESPONSE,
            )
            return redirect(http_request.url)
        xmlstr = sign_http_post(
            xmlstr,
            self._config.idp_key,
            self._config.idp_certificate,
            message=not sign_assertion,
            assertion=sign_assertion,
        )
        self.app.logger.debug('Response: \n{}'.format(xmlstr))
        http_request = binding.encode(
            xmlstr,
            ticket.assertion_consumer_service_url,
            relay_state=ticket.relay_state,
            message_type=SAML_RESPONSE,
        )
        return Response(binding.render_form(http_request), 200, mimetype='text/html')

    def login(self):
        """
        Login endpoint (verify user credentials)
        """
        key = request.form.get('request_key')
        self.app.logger.debug('Request key: {}'.format(key))
        ticket = self.ticket.get(key)
        if ticket is None or ticket.expired():
            self._consume_ticket(key)
            return render_template('403.html'), 403

        if 'delete' in request.form:
            if self._consume_ticket(key) is None:
                return render_template('403.html'), 403
            response = create_error_response(
                self._response_data(ticket),
                {
                    'status_code': STATUS_AUTHN_FAILED,
                    'status_message': 'Authentication cancelled by the user',
                }
            ).to_xml()
            return self._send_response(ticket, response, sign_assertion=False)

        user_id, user = self.user_manager.get(
            request.form.get('username'),
            request.form.get('password'),
            ticket.client_id,
        )
        if user_id is None:
            self.app.logger.info('Authentication failed for {}'.format(ticket.client_id))
            return self._render_login(key, ticket, error='Invalid credentials'), 200

        if self._consume_ticket(key) is None:
            return render_template('403.html'), 403
        response = create_response(
            self._response_data(ticket, name_id=user_id),
            {'status_code': STATUS_SUCCESS},
            dict(user.get('attrs', {})),
        ).to_xml()
        return self._send_response(ticket, response)

    @property
    def _wsgiconf(self):
        _cnf = {
            'host': self._config.host,
            'port': self._config.port,
            'debug': self._config.debug,
        }
        if self._config.https:
            key = self._config.https_key_file_path
            cert = self._config.https_certificate_file_path
            _cnf['ssl_context'] = (cert, key,)
        return _cnf

    def start(self):
        """
        Start the server instance
        """
        self.app.run(
            **self._wsgiconf
        )
