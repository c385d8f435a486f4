import base64
import hashlib
import json
import logging
from dataclasses import dataclass
from datetime import datetime

from cryptography.fernet import Fernet, InvalidToken


logger = logging.getLogger(__name__)


PBKDF2_ITERATIONS = 100000


@dataclass(frozen=True)
class CorrelationCookie:
    """
    Links our outgoing authorization request to the callback that follows it.

    The browser owns this for the round trip, we never read it back here.
    """

    name: str
    value: str
    expires_at: datetime
    secure: bool = True
    httponly: bool = True


class EncryptedSerializer:
    """
    Encrypt cookie values, same dumps/loads shape as webob's SignedSerializer.
    """

    def __init__(self, secret, salt, serializer=None, iterations=PBKDF2_ITERATIONS):
        if not secret:
            raise ValueError("An encryption secret is required.")
        # Fernet needs a 32 byte url-safe key so derive one from the secret.
        derived_key = hashlib.pbkdf2_hmac(
            "sha256",
            secret.encode("utf-8"),
            (salt or "shoplogin").encode("utf-8"),
            iterations,
            dklen=32,
        )
        self.fernet = Fernet(base64.urlsafe_b64encode(derived_key))
        self.serializer = serializer if serializer is not None else json

    def dumps(self, appstruct):
        cstruct = self.serializer.dumps(appstruct)
        if isinstance(cstruct, str):
            cstruct = cstruct.encode("utf-8")
        return self.fernet.encrypt(cstruct).decode("ascii")

    def loads(self, bstruct):
        if isinstance(bstruct, str):
            bstruct = bstruct.encode("ascii")
        try:
            cstruct = self.fernet.decrypt(bstruct)
        except InvalidToken:
            raise ValueError("Invalid encrypted cookie value.")
        return self.serializer.loads(cstruct.decode("utf-8"))


def get_default_encrypted_serializer(secret, salt, serializer=None):
    return EncryptedSerializer(secret, salt, serializer=serializer)


@dataclass
class CorrelationCookieManager:
    """Write correlation cookies to the outgoing response through a web shim."""

    web_shim: object

    def store(self, cookie):
        logger.debug(f"Storing correlation cookie {cookie.name}")
        self.web_shim.set_cookie(
            cookie.name,
            cookie.value,
            encrypted=True,
            httponly=True,
            secure=True,
            samesite="lax",
            expires=cookie.expires_at,
        )
