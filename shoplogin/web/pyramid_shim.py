import html
import json
import logging
import re
from dataclasses import dataclass, field
from datetime import timezone
from typing import Callable

from pyramid.httpexceptions import HTTPFound
from pyramid.request import Request
from pyramid.settings import asbool
import zope.interface
from zope.interface import Interface

from .. import (
    SHOP_ENTRY_TEMPLATE,
    TOP_LEVEL_INTERACTION_TEMPLATE,
    LoginRequest,
    ShopLoginConfig,
    ShopLoginService,
)
from ..cookies import CorrelationCookieManager, get_default_encrypted_serializer
from ..interfaces import IShopLoginService, IWebShim
from ..oauth import ShopifyOAuthProvider

logger = logging.getLogger(__name__)


class IPyramidWebShimConfig(Interface):
    pass


@zope.interface.implementer(IPyramidWebShimConfig)
@dataclass
class PyramidWebShimConfig:
    # This is used to encrypt cookies.
    cookie_secret: str
    cookie_salt: str = "shoplogin"
    login_route: str = "shoplogin.login"
    login_interaction_route: str = "shoplogin.login_interaction"
    logout_route: str = "shoplogin.logout"


@zope.interface.implementer(IWebShim)
@dataclass
class PyramidWebShim:
    """Shim between the login service and pyramid for web tasks."""

    # Configuration params that describe how we should behave.
    config: PyramidWebShimConfig
    # The current request.
    request: Request
    login_config: ShopLoginConfig
    # Builds the cookie serializer, interface of webob.cookies.SignedSerializer.
    serializer_factory: Callable = field(default=get_default_encrypted_serializer)
    shop_entry_html_content_fmt: str = """<!DOCTYPE html>
<html>
  <head>
    <meta charset="utf-8">
    <title>Install app</title>
  </head>
  <body>
    %(messages)s
    <form method="post" action="%(login_path)s">
      <label for="shop">Shop domain</label>
      <input id="shop" name="shop" type="text" placeholder="example.myshopify.com" autofocus>
      <button type="submit">Install app</button>
    </form>
  </body>
</html>"""
    top_level_interaction_html_content_fmt: str = """<!DOCTYPE html>
<html>
  <head>
    <meta charset="utf-8">
    <title>Continue to %(shop)s</title>
  </head>
  <body>
    <p>Your browser needs to open this app in its own window before continuing.</p>
    <a href="%(url)s" target="_top">Continue</a>
  </body>
</html>"""
    fullpage_redirect_html_content_fmt: str = """<!DOCTYPE html>
<html>
  <head>
    <script src="https://unpkg.com/@shopify/app-bridge@2"></script>
    <script>
      document.addEventListener('DOMContentLoaded', function () {
        var config = %s;
        if (window.top === window.self) {
          window.location.href = config.url;
        } else if (config.host) {
          var AppBridge = window['app-bridge'];
          var createApp = AppBridge.default;
          var Redirect = AppBridge.actions.Redirect;
          const app = createApp({
            apiKey: config.apiKey,
            host: config.host,
          });
          const redirect = Redirect.create(app);
          redirect.dispatch(
            Redirect.Action.REMOTE,
            config.absoluteUrl,
          );
        } else {
          window.top.location.href = config.absoluteUrl;
        }
      });
    </script>
  </head>
  <body></body>
</html>"""

    def set_cookie(
        self,
        name,
        value,
        encrypted=True,
        httponly=None,
        samesite=None,
        secure=True,
        max_age=None,
        expires=None,
        secure_salt=None,
    ):
        if encrypted:
            value = self.serializer_factory(
                self.config.cookie_secret, secure_salt or self.config.cookie_salt
            ).dumps(value)
        if expires is not None and expires.tzinfo is not None:
            # webob compares against a naive utcnow.
            expires = expires.astimezone(timezone.utc).replace(tzinfo=None)
        self.request.response.set_cookie(
            name,
            value,
            httponly=httponly,
            samesite=samesite,
            secure=secure,
            max_age=max_age,
            expires=expires,
        )

    def get_param(self, name, default=None):
        return self.request.params.get(name, default)

    def get_login_request(self):
        return LoginRequest(
            params=dict(self.request.params.items()),
            session_return_to=self.request.session.get("return_to"),
        )

    def apply_decision(self, decision):
        """Turn a LoginDecision into session/cookie changes and a response."""
        session = self.request.session
        if decision.clear_session:
            session.invalidate()
        for key, value in decision.session_values.items():
            if value is None:
                session.pop(key, None)
            else:
                session[key] = value
        for queue, message in decision.flash:
            session.flash(message, queue=queue)
        cookie_manager = CorrelationCookieManager(self)
        for cookie in decision.cookies:
            cookie_manager.store(cookie)
        for name in decision.expired_cookies:
            self.request.response.delete_cookie(name)
        if decision.allow_framing:
            self.request.add_response_callback(self.make_framing_callback(decision))

        if decision.template == SHOP_ENTRY_TEMPLATE:
            return self.response_200_string(
                self.get_shop_entry_html_content(decision.template_values)
            )
        elif decision.template == TOP_LEVEL_INTERACTION_TEMPLATE:
            return self.response_200_string(
                self.get_top_level_interaction_html_content(decision.template_values)
            )
        elif decision.fullpage and self.login_config.embedded:
            return self.response_200_string(
                self.get_fullpage_redirect_html_content(decision.redirect_url)
            )
        elif decision.is_redirect:
            return self.redirect_302_url(decision.redirect_url)
        raise AssertionError(f"Nothing to respond with for state {decision.state}.")

    def make_framing_callback(self, decision):
        shop_host = decision.shop
        embedded = self.login_config.embedded

        def allow_framing(request, response):
            response.headers.pop("X-Frame-Options", None)
            if embedded and shop_host:
                response.headers["Content-Security-Policy"] = (
                    f"frame-ancestors https://{shop_host} https://admin.shopify.com;"
                )

        return allow_framing

    def get_shop_entry_html_content(self, values):
        messages = "".join(
            f'<p class="flash-error">{html.escape(message)}</p>'
            for message in self.request.session.pop_flash("error")
        ) + "".join(
            f'<p class="flash-notice">{html.escape(message)}</p>'
            for message in self.request.session.pop_flash("notice")
        )
        return self.shop_entry_html_content_fmt % {
            "messages": messages,
            "login_path": html.escape(values.get("login_path", "")),
        }

    def get_top_level_interaction_html_content(self, values):
        return self.top_level_interaction_html_content_fmt % {
            "url": html.escape(values["url"]),
            "shop": html.escape(values["shop"]),
        }

    def get_fullpage_redirect_html_content(self, url):
        """Special html/js to break out of the iframe."""
        # Use JS case style for client-side object keys.
        config_json_str = json.dumps(
            {
                "apiKey": self.login_config.api_key,
                # This is the 'special' encoded host variable provided by shopify.
                "host": self.get_param("host"),
                "url": url,
                "absoluteUrl": self.request.application_url + url,
            }
        ).replace("<", "\\u003c")
        return self.fullpage_redirect_html_content_fmt % (config_json_str,)

    def redirect_302_url(self, url, with_cookies=True):
        """Return a redirect, carrying over cookies set on request.response."""
        kwargs = {}
        if with_cookies:
            kwargs["headers"] = [
                (k, v)
                for (k, v) in self.request.response.headerlist
                if k.lower() == "set-cookie"
            ]
        return HTTPFound(url, **kwargs)

    def response_200_string(self, content, content_type="text/html"):
        response = self.request.response
        response.content_type = content_type
        response.text = content
        return response


def get_web_shim(request):
    return PyramidWebShim(
        config=request.registry.getUtility(IPyramidWebShimConfig),
        request=request,
        login_config=request.registry.getUtility(IShopLoginService).config,
    )


def login_view(request):
    service = request.registry.getUtility(IShopLoginService)
    web_shim = request.shoplogin_web_shim
    login_request = web_shim.get_login_request()
    if request.method == "POST":
        decision = service.create(login_request)
    else:
        decision = service.new(login_request)
    return web_shim.apply_decision(decision)


def login_interaction_view(request):
    service = request.registry.getUtility(IShopLoginService)
    web_shim = request.shoplogin_web_shim
    return web_shim.apply_decision(
        service.top_level_interaction(web_shim.get_login_request())
    )


def logout_view(request):
    service = request.registry.getUtility(IShopLoginService)
    web_shim = request.shoplogin_web_shim
    return web_shim.apply_decision(service.destroy(web_shim.get_login_request()))


REQUIRED_SETTINGS = ("api_key", "api_secret", "app_url")


def config_from_settings(settings, prefix="shoplogin."):
    """Build a ShopLoginConfig from ini style settings."""

    def get(name, default=None):
        return settings.get(prefix + name, default)

    missing = [prefix + name for name in REQUIRED_SETTINGS if not get(name)]
    if missing:
        raise ValueError(f"Missing required settings: {', '.join(missing)}")

    defaults = ShopLoginConfig(
        api_key="", api_secret="", app_url="", access_scopes=(), embedded=True
    )
    return ShopLoginConfig(
        api_key=get("api_key"),
        api_secret=get("api_secret"),
        app_url=get("app_url"),
        # Allow "read_orders,write_orders" as well as one per line.
        access_scopes=tuple(
            scope for scope in re.split(r"[\s,]+", get("access_scopes", "")) if scope
        ),
        embedded=asbool(get("embedded", True)),
        need_online_access_token=asbool(get("need_online_access_token", False)),
        embedded_redirect_url=get("embedded_redirect_url") or None,
        login_path=get("login_path", defaults.login_path),
        login_callback_path=get("login_callback_path", defaults.login_callback_path),
        root_url=get("root_url", defaults.root_url),
        myshopify_domain=get("myshopify_domain", defaults.myshopify_domain),
        oauth_cookie_name=get("oauth_cookie_name", defaults.oauth_cookie_name),
        oauth_cookie_max_age=int(
            get("oauth_cookie_max_age", defaults.oauth_cookie_max_age)
        ),
        api_version=get("api_version", defaults.api_version),
        verify_access_token=asbool(get("verify_access_token", False)),
        request_timeout=int(get("request_timeout", defaults.request_timeout)),
    )


def includeme(config, prefix="shoplogin."):
    """Register login routes, views and the login service.

    Requires a session factory to be configured on the app.
    """
    settings = config.get_settings()
    login_config = config_from_settings(settings, prefix=prefix)
    cookie_secret = settings.get(prefix + "cookie_secret")
    if not cookie_secret:
        raise ValueError(f"Missing required settings: {prefix}cookie_secret")
    shim_config = PyramidWebShimConfig(cookie_secret=cookie_secret)

    provider = ShopifyOAuthProvider(
        api_key=login_config.api_key,
        access_scopes=login_config.access_scopes,
        app_url=login_config.app_url,
        cookie_name=login_config.oauth_cookie_name,
        cookie_max_age=login_config.oauth_cookie_max_age,
        myshopify_domain=login_config.myshopify_domain,
    )
    service = ShopLoginService(config=login_config, provider=provider)
    config.registry.registerUtility(service, IShopLoginService)
    config.registry.registerUtility(shim_config, IPyramidWebShimConfig)
    config.add_request_method(get_web_shim, "shoplogin_web_shim", reify=True)

    login_path = login_config.login_path
    config.add_route(shim_config.login_route, login_path)
    config.add_route(
        shim_config.login_interaction_route, login_path.rstrip("/") + "/interaction"
    )
    config.add_route(
        shim_config.logout_route, settings.get(prefix + "logout_path", "/logout")
    )
    config.add_view(
        login_view, route_name=shim_config.login_route, request_method=("GET", "POST")
    )
    config.add_view(
        login_interaction_view,
        route_name=shim_config.login_interaction_route,
        request_method="GET",
    )
    config.add_view(
        logout_view,
        route_name=shim_config.logout_route,
        request_method=("POST", "DELETE"),
    )
    logger.debug(f"Login routes registered under {login_path}")
