import logging
import re
from urllib.parse import urlencode, urlsplit


logger = logging.getLogger(__name__)


UNAUTHENTICATED_WRITE_PREFIX = "unauthenticated_write_"


UNAUTHENTICATED_READ_PREFIX = "unauthenticated_read_"


WRITE_PREFIX = "write_"


READ_PREFIX = "read_"


def build_shop_host(shop_name, myshopify_domain="myshopify.com"):
    return f"{shop_name}.{myshopify_domain}"


def sanitize_shop_domain(raw, myshopify_domain="myshopify.com"):
    """
    Normalize user or query input into a canonical shop host.

    Accepts "my-shop", "My-Shop.myshopify.com " or
    "https://my-shop.myshopify.com/admin" and returns "my-shop.myshopify.com".
    Returns None when the input is blank or does not look like a shop host.
    """
    if raw is None:
        return None
    name = str(raw).strip().lower()
    if not name:
        return None
    # urlsplit silently drops tabs and newlines.
    if any(ord(c) < 32 or ord(c) == 127 for c in name):
        return None
    if myshopify_domain not in name and "." not in name:
        name = build_shop_host(name, myshopify_domain)
    name = re.sub(r"^https?://", "", name)
    try:
        host = urlsplit(f"http://{name}").hostname
    except ValueError:
        return None
    shop_host_re = re.compile(
        r"^[a-z0-9][a-z0-9\-]*[a-z0-9]\.{}$".format(re.escape(myshopify_domain))
    )
    if host and shop_host_re.match(host):
        return host
    return None


def make_safe(candidate, fallback="/"):
    """Only allow redirects to paths on our own host."""
    if not candidate:
        return fallback
    if any(ord(c) < 32 for c in candidate) or "\\" in candidate:
        logger.debug("Unsafe return target, using fallback.")
        return fallback
    try:
        parts = urlsplit(candidate)
    except ValueError:
        return fallback
    if (
        parts.scheme
        or parts.netloc
        or not candidate.startswith("/")
        or candidate.startswith("//")
    ):
        logger.debug("Unsafe return target, using fallback.")
        return fallback
    return candidate


def build_url(path, params=None):
    """Join path and query params, keeping the params in the given order."""
    if not params:
        return path
    return f"{path}?{urlencode(params)}"


def get_implied_scopes(scopes):
    implied_scopes = set()
    for scope in scopes:
        if scope.startswith(UNAUTHENTICATED_WRITE_PREFIX):
            implied_scopes.add(
                UNAUTHENTICATED_READ_PREFIX + scope[len(UNAUTHENTICATED_WRITE_PREFIX) :]
            )
        elif scope.startswith(WRITE_PREFIX):
            implied_scopes.add(READ_PREFIX + scope[len(WRITE_PREFIX) :])
    return implied_scopes


def scopes_cover(granted_scopes, required_scopes):
    # write_x implies read_x on both sides.
    granted = set(granted_scopes) | get_implied_scopes(granted_scopes)
    required = set(required_scopes) | get_implied_scopes(required_scopes)
    return required.issubset(granted)
