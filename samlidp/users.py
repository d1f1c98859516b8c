import json

from samlidp import config


class AbstractUserManager(object):
    """
    Base User manager class to handling user objects
    """

    def __init__(self, conf=None):
        self._config = conf or config.params

    def get(self, uid, pwd, client_id):
        raise NotImplementedError


class JsonUserManager(AbstractUserManager):
    """
    User manager class to handling json user objects

    The file maps usernames to ``{"pwd": ..., "client": ..., "attrs": {...}}``;
    a ``client`` of ``null`` makes the user valid for every client.
    """

    def __init__(self, conf=None):
        super(JsonUserManager, self).__init__(conf)
        self.users = {}
        self._load()

    @property
    def _filename(self):
        return self._config.users_file_path

    def _load(self):
        try:
            with open(self._filename, 'r') as fp:
                self.users = json.loads(fp.read())
        except FileNotFoundError:
            self.users = {}

    def get(self, uid, pwd, client_id):
        user = self.users.get(uid)
        if user is None or user.get('pwd') != pwd:
            return None, None
        if user.get('client') not in (None, client_id):
            return None, None
        return uid, user
