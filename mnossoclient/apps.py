from django.apps import AppConfig


class MaestranoSsoClientConfig(AppConfig):
    name = 'mnossoclient'

    # The bootstrapped Config, shared with the middleware.
    sso = None

    def ready(self):
        from mnossoclient.bootstrap import bootstrap
        self.sso = bootstrap()
