import logging
import random
import string
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from urllib.parse import urlencode

import zope.interface

from .cookies import CorrelationCookie
from .interfaces import IOAuthProvider
from .util import sanitize_shop_domain


logger = logging.getLogger(__name__)


MINUTE_IN_SECONDS = 60


@dataclass(frozen=True)
class AuthorizationRequest:
    # Where to send the browser to grant access.
    auth_url: str
    cookie: CorrelationCookie


@zope.interface.implementer(IOAuthProvider)
@dataclass
class ShopifyOAuthProvider:
    """
    Build the authorize url and the cookie that tracks it until the callback.
    """

    api_key: str
    # The shopify access scopes that our app needs, such as read_orders, write_orders, etc.
    access_scopes: tuple
    # Scheme and host of our app, ie. https://myapp.example.com
    app_url: str
    cookie_name: str = "shopify_app_session"
    cookie_max_age: int = MINUTE_IN_SECONDS
    myshopify_domain: str = "myshopify.com"
    utcnow: callable = field(default=lambda: datetime.now(timezone.utc))

    def begin_auth(self, shop, redirect_path, is_online):
        # Never trust the caller to have sanitized it.
        shop_host = sanitize_shop_domain(shop, self.myshopify_domain)
        if not shop_host:
            raise ValueError(f"Shop is not properly formatted: {shop!r}")
        state = self.get_nonce()
        query = sorted(
            (
                {
                    "client_id": self.api_key,
                    "scope": ",".join(self.access_scopes),
                    # This tells shopify where to send the callback with our grant code.
                    "redirect_uri": self.get_redirect_uri(redirect_path),
                    "state": state,
                    # defaults, ie. '', to offline access
                    "grant_options[]": "per-user" if is_online else "",
                }
            ).items()
        )
        auth_url = f"https://{shop_host}/admin/oauth/authorize?{urlencode(query)}"
        logger.info(
            f"Begin {'online' if is_online else 'offline'} auth for {shop_host}"
        )
        cookie = CorrelationCookie(
            name=self.cookie_name,
            value=state,
            expires_at=self.utcnow() + timedelta(seconds=self.cookie_max_age),
        )
        return AuthorizationRequest(auth_url=auth_url, cookie=cookie)

    def get_redirect_uri(self, redirect_path):
        return self.app_url.rstrip("/") + "/" + redirect_path.lstrip("/")

    def get_nonce(self, charset=string.ascii_lowercase + string.digits, length=15):
        """Get a random string of `length` characters from given `charset`."""
        return "".join(random.SystemRandom().choice(charset) for _ in range(length))
