from zope.interface import Attribute, Interface


class IWebShim(Interface):
    """Bridge between the login service and a web framework's request/response."""

    def set_cookie(name, value, encrypted=True, httponly=None, samesite=None,
                   secure=True, max_age=None, expires=None):
        """Set a cookie on the outgoing response."""


class IShopStorage(Interface):
    """Persisted shop lookup."""

    def load_shop(shop_domain):
        """Return the stored ShopRecord or None."""

    def store_shop(record):
        """Insert or replace the ShopRecord."""

    def remove_shop(shop_domain):
        """Forget the shop, ie. after uninstall."""


class IShopRecordSerializer(Interface):
    def to_dict(record):
        pass

    def from_dict(record_dict):
        pass


class IOAuthProvider(Interface):
    """Starts the authorization handshake with the platform."""

    def begin_auth(shop, redirect_path, is_online):
        """Return an AuthorizationRequest with the auth url and correlation cookie."""


class IShopLoginService(Interface):
    config = Attribute("The ShopLoginConfig in use.")
