import logging

from django.apps import apps
from django.http import HttpResponseBadRequest, HttpResponseRedirect

from mnossoclient.models import SsoRecord
from mnossoclient.user import SsoUser

logger = logging.getLogger(__name__)

# Where the external SSO library leaves the attributes it validated.
ASSERTION_SESSION_KEY = 'mno_assertion'


class MaestranoSsoClientMiddleware:
    def __init__(self, get_response, config=None):
        self.get_response = get_response
        self.config = config or apps.get_app_config('mnossoclient').sso

    def __call__(self, request):
        base = self.config.base
        if not base.sso_enabled:
            return self.get_response(request)
        if request.path == base.consume_path:
            return self.sso_login(request)
        elif request.path == base.logout_path:
            return self.sso_logout(request)
        else:
            return self.sso_passthru(request)

    def records(self):
        return SsoRecord.objects.using(self.config.using)

    def sso_login(self, request):
        try:
            # Popped so a validated assertion signs in once only.
            attributes = request.session.pop(ASSERTION_SESSION_KEY, None)
            if attributes is None:
                raise SsoUser.BadAssertion('no_assertion_in_session')
            self.config.sso_user(attributes).sign_in(request)
            return HttpResponseRedirect(self.config.base.after_login_url)
        except SsoUser.BadAssertion as e:
            return HttpResponseBadRequest(str(e))

    def sso_logout(self, request):
        if request.user.is_authenticated:
            self.records().filter(user=request.user).update(sso_logged_in=False)
            self.config.host.logout(request)
        return HttpResponseRedirect(self.config.base.logout_url)

    # Lets the request proceed, but logs out the logged in user if they don't have a live SsoRecord
    def sso_passthru(self, request):
        if request.user.is_authenticated:
            if not self.records().filter(user=request.user, sso_logged_in=True).exists():
                logger.warning('No live SSO record for %s, logging out', request.user)
                self.config.host.logout(request)
        return self.get_response(request)
