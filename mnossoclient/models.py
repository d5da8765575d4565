from django.conf import settings
from django.db import models


# Links a Maestrano identity to a local user.
class SsoRecord(models.Model):
    # The ID of the user on the Maestrano side.
    uid = models.TextField(primary_key=True)

    # Cleared to sign the user out upon the next request.
    sso_logged_in = models.BooleanField(default=False)

    user = models.ForeignKey(settings.AUTH_USER_MODEL, on_delete=models.CASCADE)
    created_on = models.DateTimeField(auto_now_add=True)
