import logging

from django.contrib import auth
from django.contrib.auth import get_user_model
from django.db import DEFAULT_DB_ALIAS, connections, transaction
from allauth.account.models import EmailAddress

from mnossoclient.models import SsoRecord

logger = logging.getLogger(__name__)

TRUTHY = (True, 'true', 'True', '1')


class SsoUser:
    """A Maestrano identity, bound to a local user on demand.

    `attributes` is the already-validated assertion (uid, email, name,
    surname, app_owner). `opts` is the options mapping built by the
    bootstrap; its `db_connection` decides where records are read and written.
    """

    class BadAssertion(Exception):
        pass

    def __init__(self, attributes, opts=None, host=None):
        opts = opts or {}
        self.connection = opts.get('db_connection') or connections[DEFAULT_DB_ALIAS]
        self.host = host

        self.uid = attributes.get('uid')
        self.email = attributes.get('email')
        self.name = attributes.get('name') or ''
        self.surname = attributes.get('surname') or ''
        self.app_owner = attributes.get('app_owner', False) in TRUTHY
        self.record = None

        if not self.uid:
            raise SsoUser.BadAssertion('missing_uid')
        if not self.email:
            raise SsoUser.BadAssertion('missing_email')

    @property
    def using(self):
        return self.connection.alias

    @property
    def user_model(self):
        if self.host is not None:
            return self.host.user_model
        return get_user_model()

    def collision(self):
        return SsoUser.BadAssertion(f'email_collision_detected (uid: {self.uid})')

    def match_local_user(self):
        """Returns (user, record); either may be None when nothing matches yet."""
        User = self.user_model
        try:
            user = User.objects.using(self.using).get(email=self.email)
        except User.DoesNotExist:
            user = None
        except User.MultipleObjectsReturned:
            raise self.collision() from None

        try:
            sso = SsoRecord.objects.using(self.using).get(uid=self.uid)
        except SsoRecord.DoesNotExist:
            # An email owned by a user bound to some other uid must not be taken over.
            if user is not None and SsoRecord.objects.using(self.using).filter(user=user).exists():
                raise self.collision()
            return user, None

        if user is not None and sso.user != user:
            raise self.collision()
        return sso.user, sso

    def create_local_user(self):
        manager = self.user_model.objects.db_manager(self.using)
        user = manager.create_user(username=self.free_username(), email=self.email, password=None)
        logger.info('Created local user %s for uid %s', user.username, self.uid)
        return user

    def free_username(self):
        max_length = self.user_model._meta.get_field('username').max_length
        base = (self.email.split('@')[0] or self.uid)[:max_length]
        users = self.user_model.objects.using(self.using)
        username, n = base, 1
        while users.filter(username=username).exists():
            n += 1
            suffix = str(n)
            username = base[:max_length - len(suffix)] + suffix
        return username

    def sync_local_details(self, user):
        user.first_name = self.name
        user.last_name = self.surname
        user.email = self.email
        if self.app_owner:
            user.is_staff = True
        user.save(using=self.using)

        addresses = EmailAddress.objects.using(self.using)
        try:
            address = addresses.get(user_id=user.id)
            address.email = user.email
            address.verified = True
            address.save(using=self.using)
        except EmailAddress.MultipleObjectsReturned:
            raise SsoUser.BadAssertion(f'Multiple addresses returned for user {user.username} (uid: {self.uid})') from None
        except EmailAddress.DoesNotExist:
            addresses.create(user=user, email=user.email, verified=True, primary=True)

    def bind(self):
        with transaction.atomic(using=self.using):
            user, sso = self.match_local_user()
            if user is None:
                user = self.create_local_user()
            if sso is None:
                sso = SsoRecord.objects.using(self.using).create(user=user, uid=self.uid)
            self.sync_local_details(user)
        self.record = sso
        return user

    def sign_in(self, request):
        user = self.bind()
        if self.host is not None:
            self.host.login(request, user)
        else:
            auth.login(request, user)
        self.record.sso_logged_in = True
        self.record.save(using=self.using)
        logger.info('Signed in uid %s as %s', self.uid, user.username)
        return user
