import pytest
from pyramid import testing
from pyramid.httpexceptions import HTTPFound
from pyramid.request import apply_request_extensions
from pyramid.response import Response

from shoplogin import START, LoginDecision, ShopLoginService
from shoplogin.cookies import EncryptedSerializer
from shoplogin.interfaces import IShopLoginService
from shoplogin.web.pyramid_shim import (
    PyramidWebShim,
    PyramidWebShimConfig,
    config_from_settings,
    login_interaction_view,
    login_view,
    logout_view,
)

from .conftest import RecordingProvider, make_config


SHOP = "foo.myshopify.com"


SETTINGS = {
    "shoplogin.api_key": "key",
    "shoplogin.api_secret": "secret",
    "shoplogin.app_url": "https://app.example.com",
    "shoplogin.access_scopes": "read_products, write_orders",
    "shoplogin.embedded": "true",
    "shoplogin.cookie_secret": "cookie-secret",
}


@pytest.fixture
def config():
    config = testing.setUp(settings=SETTINGS)
    config.include("shoplogin.web.pyramid_shim")
    yield config
    testing.tearDown()


@pytest.fixture
def provider(config):
    # Swap shopify out so nothing random ends up in the assertions.
    service = config.registry.getUtility(IShopLoginService)
    provider = RecordingProvider()
    service.provider = provider
    return provider


def make_request(config, params=None, post=None, **kwargs):
    request = testing.DummyRequest(params=params, post=post, **kwargs)
    request.registry = config.registry
    apply_request_extensions(request)
    return request


def run_framing_callbacks(request, response):
    for callback in request.response_callbacks:
        callback(request, response)


def test_login_get_renders_form(config, provider):
    request = make_request(config)
    response = login_view(request)
    assert response.status_code == 200
    assert 'action="/login"' in response.text
    assert 'name="shop"' in response.text
    response.headers["X-Frame-Options"] = "DENY"
    run_framing_callbacks(request, response)
    assert "X-Frame-Options" not in response.headers


def test_login_post_embedded_renders_top_level_bounce(config, provider):
    params = {"shop": SHOP, "host": "YWRtaW4uc2hvcGlmeS5jb20"}
    request = make_request(config, params=params, post=params)
    response = login_view(request)
    assert response.status_code == 200
    assert '"url": "/login?shop=foo.myshopify.com&top_level=true"' in response.text
    assert '"absoluteUrl": "http://example.com/login?shop=' in response.text
    assert "YWRtaW4uc2hvcGlmeS5jb20" in response.text
    assert provider.calls == []
    assert not response.headers.getall("Set-Cookie")


def test_login_get_top_level_redirects_to_shopify_with_cookie(config, provider):
    request = make_request(config, params={"shop": SHOP, "top_level": "true"})
    response = login_view(request)
    assert isinstance(response, HTTPFound)
    assert response.location == f"https://{SHOP}/admin/oauth/authorize?state=abc"
    assert len(provider.calls) == 1
    set_cookies = response.headers.getall("Set-Cookie")
    assert len(set_cookies) == 1
    set_cookie = set_cookies[0]
    assert set_cookie.startswith("shopify_app_session=")
    assert "secure" in set_cookie.lower()
    assert "httponly" in set_cookie.lower()
    value = set_cookie.split(";")[0].split("=", 1)[1].strip('"')
    assert EncryptedSerializer("cookie-secret", "shoplogin").loads(value) == "abc"

    response.headers["X-Frame-Options"] = "SAMEORIGIN"
    run_framing_callbacks(request, response)
    assert "X-Frame-Options" not in response.headers
    assert response.headers["Content-Security-Policy"] == (
        f"frame-ancestors https://{SHOP} https://admin.shopify.com;"
    )


def test_login_post_stores_safe_return_to(config, provider):
    params = {"shop": SHOP, "top_level": "", "return_to": "https://evil.example.com"}
    request = make_request(config, params=params, post=params)
    login_view(request)
    assert request.session["return_to"] == "/"


def test_login_post_invalid_shop_flashes_error(config, provider):
    params = {"shop": "evil.example.com"}
    request = make_request(config, params=params, post=params)
    request.session["return_to"] = "/orders"
    response = login_view(request)
    assert isinstance(response, HTTPFound)
    assert response.location == "/orders"
    assert "return_to" not in request.session
    assert request.session.peek_flash("error") == ["Invalid shop domain"]
    assert provider.calls == []


def test_login_form_shows_flashed_error(config, provider):
    request = make_request(config)
    request.session.flash("Invalid shop domain", queue="error")
    response = login_view(request)
    assert "Invalid shop domain" in response.text
    assert request.session.peek_flash("error") == []


def test_login_interaction_view(config, provider):
    request = make_request(config, params={"shop": SHOP})
    response = login_interaction_view(request)
    assert response.status_code == 200
    assert "/login?shop=foo.myshopify.com&amp;top_level=true" in response.text
    response.headers["X-Frame-Options"] = "DENY"
    run_framing_callbacks(request, response)
    assert "X-Frame-Options" not in response.headers


def test_logout_view_invalidates_session(config, provider):
    request = make_request(config, post={}, params={"shop": SHOP})
    request.session["return_to"] = "/orders"
    request.session["shopify_user"] = "someone"
    response = logout_view(request)
    assert isinstance(response, HTTPFound)
    assert response.location == "/login?shop=foo.myshopify.com"
    assert "return_to" not in request.session
    assert "shopify_user" not in request.session
    assert request.session.peek_flash("notice") == ["Successfully logged out"]


def test_logout_view_expires_correlation_cookie(config, provider):
    request = make_request(
        config,
        post={},
        params={},
        cookies={"shopify_app_session": "encrypted-state"},
    )
    response = logout_view(request)
    set_cookies = response.headers.getall("Set-Cookie")
    assert len(set_cookies) == 1
    assert set_cookies[0].startswith("shopify_app_session=;")
    assert "Max-Age=0" in set_cookies[0]


def test_login_with_real_provider_sets_cookie(config):
    # Real provider, its expiry is timezone aware.
    request = make_request(config, params={"shop": SHOP, "top_level": "true"})
    response = login_view(request)
    assert isinstance(response, HTTPFound)
    assert response.location.startswith(f"https://{SHOP}/admin/oauth/authorize?")
    set_cookies = response.headers.getall("Set-Cookie")
    assert len(set_cookies) == 1
    assert set_cookies[0].startswith("shopify_app_session=")
    assert "expires=" in set_cookies[0].lower()


def test_standalone_fullpage_decision_is_plain_redirect(config):
    request = make_request(config)
    web_shim = PyramidWebShim(
        config=PyramidWebShimConfig(cookie_secret="cookie-secret"),
        request=request,
        login_config=make_config(embedded=False),
    )
    response = web_shim.apply_decision(
        LoginDecision(state="redirecting_top_level", redirect_url="/login", fullpage=True)
    )
    assert isinstance(response, HTTPFound)
    assert response.location == "/login"


def test_apply_decision_without_response_fails(config):
    request = make_request(config)
    web_shim = PyramidWebShim(
        config=PyramidWebShimConfig(cookie_secret="cookie-secret"),
        request=request,
        login_config=make_config(),
    )
    with pytest.raises(AssertionError):
        web_shim.apply_decision(LoginDecision(state=START))


def test_config_from_settings():
    login_config = config_from_settings(
        dict(SETTINGS, **{"shoplogin.embedded_redirect_url": "https://h.example.com"})
    )
    assert login_config.access_scopes == ("read_products", "write_orders")
    assert login_config.embedded is True
    assert login_config.embedded_redirect_url == "https://h.example.com"
    assert login_config.login_path == "/login"
    assert login_config.oauth_cookie_max_age == 60


def test_config_from_settings_missing_required():
    with pytest.raises(ValueError) as exc_info:
        config_from_settings({"shoplogin.api_key": "key"})
    assert "shoplogin.api_secret" in str(exc_info.value)


def test_includeme_registers_service(config):
    service = config.registry.getUtility(IShopLoginService)
    assert isinstance(service, ShopLoginService)
    assert service.config.api_key == "key"


def test_response_is_plain_response_for_form(config, provider):
    response = login_view(make_request(config))
    assert isinstance(response, Response)
