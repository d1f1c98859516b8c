import argparse
import logging

from flask import Flask
from werkzeug.middleware.proxy_fix import ProxyFix

from samlidp import config, log
from samlidp.exceptions import BadConfiguration
from samlidp.server import IdpServer

logging.basicConfig(level=logging.INFO)
logger = log.logger

if __name__ == '__main__':
    parser = argparse.ArgumentParser()
    parser.add_argument(
        '-c', dest='config', help='Path to configuration file.',
        default='./conf/config.yaml'
    )
    parser.add_argument(
        '-ct', dest='configuration_type',
        help='Configuration type [yaml|json]', default='yaml'
    )
    args = parser.parse_args()
    try:
        config.load(args.config, args.configuration_type)
    except BadConfiguration as e:
        logger.error(e)
    else:
        app = Flask('samlidp')
        if config.params.behind_reverse_proxy:
            app.wsgi_app = ProxyFix(app.wsgi_app)
        try:
            server = IdpServer(app=app)
        except BadConfiguration as e:
            logger.error(e)
        else:
            server.start()
