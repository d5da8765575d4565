"""Startup wiring for the Maestrano SSO integration.

Runs once at startup: records the integration root, loads the base
settings, loads the host application and builds the options mapping that
is handed to the SSO user constructor.
"""
import logging
from abc import ABC, abstractmethod
from pathlib import Path

from django.apps import apps
from django.conf import settings
from django.contrib import auth
from django.contrib.auth import get_user_model
from django.core.exceptions import ImproperlyConfigured
from django.db import DEFAULT_DB_ALIAS, connections

from mnossoclient.user import SsoUser

logger = logging.getLogger(__name__)

_root = None


class HostLoadError(ImproperlyConfigured):
    pass


def define_root(path=None):
    """Record the integration root. Later calls return the recorded value."""
    global _root
    if _root is None:
        if path is None:
            path = getattr(settings, 'MNO_ROOT', None) or Path(__file__).parent
        _root = Path(path).resolve()
    return _root


class BaseSettings:
    def __init__(self, host_dir=None, host_files=None, db_alias=DEFAULT_DB_ALIAS,
                 sso_enabled=True, consume_path='/mno/consume', after_login_url='/',
                 logout_path='/mno/logout', logout_url='/'):
        self.host_dir = host_dir
        self.host_files = list(host_files) if host_files is not None else ['manage.py']
        self.db_alias = db_alias
        self.sso_enabled = sso_enabled
        self.consume_path = consume_path
        self.after_login_url = after_login_url
        self.logout_path = logout_path
        self.logout_url = logout_url


def load_base():
    return BaseSettings(
        host_dir=getattr(settings, 'MNO_HOST_DIR', None),
        host_files=getattr(settings, 'MNO_HOST_FILES', None),
        db_alias=getattr(settings, 'MNO_DB_ALIAS', DEFAULT_DB_ALIAS),
        sso_enabled=getattr(settings, 'MNO_SSO_ENABLED', True),
        consume_path=getattr(settings, 'MNO_SSO_CONSUME_PATH', '/mno/consume'),
        after_login_url=getattr(settings, 'MNO_SSO_AFTER_LOGIN_URL', '/'),
        logout_path=getattr(settings, 'MNO_SSO_LOGOUT_PATH', '/mno/logout'),
        logout_url=getattr(settings, 'MNO_SSO_LOGOUT_URL', '/'),
    )


class HostApplication(ABC):
    """What the SSO integration needs from the application it is embedded in."""

    app_dir = None

    @abstractmethod
    def load(self):
        pass

    @property
    @abstractmethod
    def db_connection(self):
        pass

    @property
    @abstractmethod
    def user_model(self):
        pass

    @abstractmethod
    def login(self, request, user):
        pass

    @abstractmethod
    def logout(self, request):
        pass


class DjangoHost(HostApplication):
    def __init__(self, app_dir, required_files=('manage.py',), using=DEFAULT_DB_ALIAS):
        self.app_dir = Path(app_dir).resolve()
        self.required_files = list(required_files)
        self.using = using

    def load(self):
        for name in self.required_files:
            path = self.app_dir / name
            if not path.is_file():
                raise HostLoadError(f'host file not found: {path}')
        if not apps.is_installed('django.contrib.auth'):
            raise HostLoadError('django.contrib.auth is not installed')
        if self.using not in connections:
            raise HostLoadError(f'unknown database alias: {self.using}')
        logger.debug('Loaded host application at %s', self.app_dir)

    @property
    def db_connection(self):
        return connections[self.using]

    @property
    def user_model(self):
        return get_user_model()

    def login(self, request, user):
        auth.login(request, user)

    def logout(self, request):
        auth.logout(request)


class Config:
    def __init__(self, root, base, host, opts):
        self.root = root
        self.base = base
        self.host = host
        self.opts = opts

    @property
    def app_dir(self):
        return self.host.app_dir

    @property
    def using(self):
        return self.opts['db_connection'].alias

    def sso_user(self, attributes):
        return SsoUser(attributes, self.opts, host=self.host)


def bootstrap(host=None, root=None):
    root = define_root(root)
    base = load_base()

    if host is None:
        app_dir = base.host_dir or root.parent
        host = DjangoHost(app_dir, base.host_files, using=base.db_alias)
    host.load()

    opts = {}
    opts['db_connection'] = host.db_connection

    logger.info('Maestrano SSO bootstrapped (root: %s, host: %s)', root, host.app_dir)
    return Config(root, base, host, opts)
