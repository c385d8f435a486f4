"""
@NOTE: Resolution for shop overloading.

shop_name: The name of the shop, used as a subdomain of myshopify.com
shop_host: The shopname and the correct top level domain: "{shop_name}.myshopify.com".
    This is what we call the sanitized "shop" param and what we pass around.

@NOTE: Resolution for the embedded iframe dance.

An embedded app is loaded in an iframe inside the shopify admin.  The
authorize page at shopify refuses to load in that iframe, so before we can
start oauth the browser has to be bounced out to the top level window.  The
bounce re-enters the login page with `top_level` in the query and only then
do we redirect to shopify.

Every entry point takes an explicit LoginRequest and returns a LoginDecision,
the web shim is responsible for turning that decision into a response.
"""
import logging
from dataclasses import dataclass, asdict, field
from typing import Callable, Mapping, Optional

import requests
import zope.interface

from .cookies import CorrelationCookie
from .embedding import detect_embedding
from .interfaces import (
    IOAuthProvider,
    IShopLoginService,
    IShopRecordSerializer,
    IShopStorage,
)
from .util import build_url, make_safe, sanitize_shop_domain, scopes_cover

logger = logging.getLogger(__name__)


@dataclass
class ShopLoginConfig:
    """
    Mechanism to provide configuration to ShopLoginService.
    """

    api_key: str
    api_secret: str
    # Scheme and host of our app, used to build the oauth redirect uri.
    app_url: str
    # The shopify access scopes that our app needs, such as read_orders, write_orders, etc.
    access_scopes: tuple
    # If the app will be embedded in an iframe in the admin.
    embedded: bool
    # If we want online access that matches the logged in user.
    need_online_access_token: bool = False
    # Hosts that intercept embedded traffic before any oauth attempt.
    embedded_redirect_url: Optional[str] = None
    login_path: str = "/login"
    login_callback_path: str = "auth/shopify/callback"
    # Where to go when there is nothing better in the session.
    root_url: str = "/"
    myshopify_domain: str = "myshopify.com"
    # Used to track the oauth request until the callback.
    oauth_cookie_name: str = "shopify_app_session"
    oauth_cookie_max_age: int = 60
    api_version: str = "2024-01"
    # Ping shopify with the stored token when checking if a shop is authorized.
    verify_access_token: bool = False
    request_timeout: int = 10
    invalid_shop_message: str = "Invalid shop domain"
    logged_out_message: str = "Successfully logged out"


START = "start"
AWAITING_SHOP_INPUT = "awaiting_shop_input"
VALIDATING_SHOP = "validating_shop"
REDIRECTING_TOP_LEVEL = "redirecting_top_level"
BEGINNING_EXTERNAL_AUTH = "beginning_external_auth"
RENDERING_EMBEDDED_REDIRECT = "rendering_embedded_redirect"
INVALID_SHOP_ERROR = "invalid_shop_error"
TOP_LEVEL_INTERACTION = "top_level_interaction"
LOGGED_OUT = "logged_out"
LOGIN_REQUIRED = "login_required"


SHOP_ENTRY_TEMPLATE = "shop_entry"
TOP_LEVEL_INTERACTION_TEMPLATE = "top_level_interaction"


RETURN_TO_KEY = "return_to"


@dataclass(frozen=True)
class LoginRequest:
    """
    Everything the login flow is allowed to know about the current request.
    """

    # Query and form params, name -> value.  The value may be None, what
    # matters for markers like `top_level` is that the key is there.
    params: Mapping[str, Optional[str]] = field(default_factory=dict)
    # The return_to value currently held in the session, if any.
    session_return_to: Optional[str] = None

    def has_param(self, name):
        return name in self.params

    def get_param(self, name, default=None):
        return self.params.get(name, default)


@dataclass
class LoginDecision:
    """
    The outcome of a login flow operation and the effects the web layer must apply.
    """

    state: str
    redirect_url: Optional[str] = None
    # Break out of the iframe instead of redirecting inside it.
    fullpage: bool = False
    # The redirect leaves our host, ie. to shopify.
    allow_other_host: bool = False
    template: Optional[str] = None
    template_values: dict = field(default_factory=dict)
    cookies: list = field(default_factory=list)
    # A value of None removes the key from the session.
    session_values: dict = field(default_factory=dict)
    # Invalidate the whole session before applying anything else.
    clear_session: bool = False
    # Cookie names to expire on the response.
    expired_cookies: list = field(default_factory=list)
    # (queue, message) pairs shown on the next render.
    flash: list = field(default_factory=list)
    # Skip X-Frame-Options so the response can load in the admin iframe.
    allow_framing: bool = False
    shop: Optional[str] = None

    @property
    def is_redirect(self):
        return self.redirect_url is not None


@dataclass
class ShopRecord:
    """
    The stored authorization for a shop, written by the oauth callback.
    """

    shop_domain: str
    access_token: str
    # The granted scopes.
    access_scopes: list
    api_version: Optional[str] = None


@zope.interface.implementer(IShopRecordSerializer)
@dataclass
class ShopRecordSerializer:
    """
    Convert shop records to and from plain dictionaries.

    Intended for storing and loading records from a JSON blob in a db.
    """

    record_cls: type = ShopRecord

    def from_dict(self, record_dict):
        if not record_dict:
            return None
        else:
            return self.record_cls(**record_dict)

    def to_dict(self, record):
        return asdict(record)


@zope.interface.implementer(IShopLoginService)
@dataclass
class ShopLoginService:
    """
    Decide what to do with a login attempt: show the shop form, bounce to the
    top level window, or send the shop owner to shopify to grant access.
    """

    config: ShopLoginConfig
    provider: IOAuthProvider
    # Only needed for check_shop_authorized.
    storage: IShopStorage = None
    # Policy deciding if we want an online (per-user) token for this shop,
    # called with the shop host.  Defaults to config.need_online_access_token.
    user_session_expected: Callable = None
    test_graphql_query: str = """{ shop { name } }"""

    def sanitized_shop(self, login_request):
        return sanitize_shop_domain(
            login_request.get_param("shop"), self.config.myshopify_domain
        )

    def new(self, login_request):
        """GET on the login page."""
        raw_shop = login_request.get_param("shop")
        if raw_shop is None or not str(raw_shop).strip():
            return LoginDecision(
                state=AWAITING_SHOP_INPUT,
                template=SHOP_ENTRY_TEMPLATE,
                template_values={"login_path": self.config.login_path},
                allow_framing=True,
            )
        return self.authenticate(login_request)

    def create(self, login_request):
        """POST on the login page."""
        return self.authenticate(login_request)

    def authenticate(self, login_request):
        shop = self.sanitized_shop(login_request)
        if not shop:
            decision = self.render_invalid_shop_error(login_request)
            decision.allow_framing = True
            return decision

        decision = LoginDecision(state=VALIDATING_SHOP, shop=shop, allow_framing=True)
        self.copy_return_to_param_to_session(login_request, decision)

        embedding = detect_embedding(self.config.embedded, login_request.params)
        # Keep this order, the embedded redirect wins over the top level check.
        if self.config.embedded_redirect_url:
            if embedding.has_embedded_param:
                return self.redirect_for_embedded(decision)
            else:
                return self.start_oauth(shop, decision)
        elif embedding.is_top_level:
            return self.start_oauth(shop, decision)
        else:
            return self.redirect_auth_to_top_level(shop, decision)

    def top_level_interaction(self, login_request):
        """Page that waits for the user to click before breaking out of the iframe."""
        shop = self.sanitized_shop(login_request)
        if not shop:
            return self.render_invalid_shop_error(login_request)
        return LoginDecision(
            state=TOP_LEVEL_INTERACTION,
            template=TOP_LEVEL_INTERACTION_TEMPLATE,
            template_values={
                "url": self.login_url_with_optional_shop(shop, top_level=True),
                "shop": shop,
            },
            shop=shop,
            allow_framing=True,
        )

    def destroy(self, login_request):
        """Log out, forget everything in the session."""
        shop = self.sanitized_shop(login_request)
        logger.info("Logging out, session will be invalidated.")
        return LoginDecision(
            state=LOGGED_OUT,
            clear_session=True,
            expired_cookies=[self.config.oauth_cookie_name],
            flash=[("notice", self.config.logged_out_message)],
            redirect_url=self.login_url_with_optional_shop(shop),
            shop=shop,
        )

    def check_shop_authorized(self, login_request):
        """Check if the app is already authorized for the requested shop.

        Returns a 2-tuple of (shop_record, decision), exactly one is not None.
        """
        shop = self.sanitized_shop(login_request)
        if not shop:
            return None, self.login_required(None)
        if self.storage is None:
            raise AssertionError("A storage shim is needed to look up shops.")
        record = self.storage.load_shop(shop)
        if not record:
            logger.info(f"No stored shop for {shop}, app is not installed.")
            return None, self.login_required(shop)
        elif not scopes_cover(record.access_scopes, self.config.access_scopes):
            logger.info("Scopes have changed, redirect to re-install/update app.")
            return None, self.login_required(shop)
        elif self.config.verify_access_token and not self.test_access(record):
            logger.info(f"Stored token for {shop} was rejected.")
            return None, self.login_required(shop)
        return record, None

    def login_required(self, shop):
        return LoginDecision(
            state=LOGIN_REQUIRED,
            redirect_url=self.login_url_with_optional_shop(shop),
            shop=shop,
        )

    def start_oauth(self, shop, decision):
        callback_path = self.config.login_callback_path.lstrip("/")
        auth_request = self.provider.begin_auth(
            shop=shop,
            redirect_path=f"/{callback_path}",
            is_online=self.is_user_session_expected(shop),
        )
        cookie = auth_request.cookie
        decision.state = BEGINNING_EXTERNAL_AUTH
        decision.cookies.append(
            CorrelationCookie(
                name=cookie.name,
                value=cookie.value,
                expires_at=cookie.expires_at,
                secure=True,
                httponly=True,
            )
        )
        decision.redirect_url = auth_request.auth_url
        decision.allow_other_host = True
        return decision

    def redirect_for_embedded(self, decision):
        logger.info("Embedded request, redirecting to configured embedded url.")
        decision.state = RENDERING_EMBEDDED_REDIRECT
        decision.redirect_url = self.config.embedded_redirect_url
        decision.allow_other_host = True
        return decision

    def redirect_auth_to_top_level(self, shop, decision):
        # The browser comes back to `new` with top_level and then starts oauth.
        logger.info(f"Bouncing {shop} to the top level window.")
        decision.state = REDIRECTING_TOP_LEVEL
        decision.redirect_url = self.login_url_with_optional_shop(shop, top_level=True)
        decision.fullpage = True
        return decision

    def render_invalid_shop_error(self, login_request):
        logger.info(f"Invalid shop param: {login_request.get_param('shop')!r}")
        decision = LoginDecision(
            state=INVALID_SHOP_ERROR,
            flash=[("error", self.config.invalid_shop_message)],
        )
        decision.redirect_url = self.return_address(login_request, decision)
        return decision

    def return_address(self, login_request, decision):
        """Use up the return_to in the session or fall back to the root url."""
        if login_request.session_return_to:
            decision.session_values[RETURN_TO_KEY] = None
            return make_safe(login_request.session_return_to, self.config.root_url)
        return self.config.root_url

    def copy_return_to_param_to_session(self, login_request, decision):
        return_to = login_request.get_param(RETURN_TO_KEY)
        if return_to is not None:
            decision.session_values[RETURN_TO_KEY] = make_safe(return_to, "/")

    def login_url_with_optional_shop(self, shop=None, top_level=False):
        query_params = {}
        if shop:
            query_params["shop"] = shop
        if top_level:
            query_params["top_level"] = "true"
        return build_url(self.config.login_path, query_params)

    def is_user_session_expected(self, shop):
        if self.user_session_expected is not None:
            return bool(self.user_session_expected(shop))
        return self.config.need_online_access_token

    def test_access(self, record):
        """Test that the stored token still works, False if shopify rejects it."""
        response = self.execute_graphql(
            record.shop_domain,
            record.api_version or self.config.api_version,
            record.access_token,
            self.test_graphql_query,
        )
        if response.status_code == requests.codes.ok:
            return True
        elif response.status_code in (
            requests.codes.unauthorized,
            requests.codes.forbidden,
        ):
            return False
        else:
            response.raise_for_status()
            return False

    def execute_graphql(self, shop_host, api_version, access_token, query):
        """
        Post a graphql query to the shop's admin api.

        shop_host:
            The full shop host, ie. my-shop.myshopify.com
        api_version:
            The version of the api to send the GQL to.
        access_token:
            Token we got from oauth, either online or offline.

        return:
            The raw response, callers decide what a bad status means.
        """
        url = f"https://{shop_host}/admin/api/{api_version}/graphql.json"
        headers = {
            "Accept": "application/json",
            "Content-Type": "application/json",
            "X-Shopify-Access-Token": access_token,
        }
        return requests.post(
            url,
            json={"query": query},
            headers=headers,
            timeout=self.config.request_timeout,
        )
