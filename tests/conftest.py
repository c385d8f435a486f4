from dataclasses import dataclass, field
from datetime import datetime, timezone

import pytest

from shoplogin import ShopLoginConfig, ShopLoginService
from shoplogin.cookies import CorrelationCookie
from shoplogin.oauth import AuthorizationRequest


FIXED_NOW = datetime(2024, 1, 1, 12, 0, 0, tzinfo=timezone.utc)


@dataclass
class RecordingProvider:
    """Stands in for shopify, remembers every begin_auth call."""

    calls: list = field(default_factory=list)

    def begin_auth(self, shop, redirect_path, is_online):
        self.calls.append(
            {"shop": shop, "redirect_path": redirect_path, "is_online": is_online}
        )
        return AuthorizationRequest(
            auth_url=f"https://{shop}/admin/oauth/authorize?state=abc",
            cookie=CorrelationCookie(
                name="shopify_app_session", value="abc", expires_at=FIXED_NOW
            ),
        )


@dataclass
class MemoryShopStorage:
    shops: dict = field(default_factory=dict)

    def load_shop(self, shop_domain):
        return self.shops.get(shop_domain)

    def store_shop(self, record):
        self.shops[record.shop_domain] = record

    def remove_shop(self, shop_domain):
        self.shops.pop(shop_domain, None)


def make_config(**kwargs):
    values = dict(
        api_key="key",
        api_secret="secret",
        app_url="https://app.example.com",
        access_scopes=("read_products",),
        embedded=True,
    )
    values.update(kwargs)
    return ShopLoginConfig(**values)


@pytest.fixture
def provider():
    return RecordingProvider()


@pytest.fixture
def storage():
    return MemoryShopStorage()


@pytest.fixture
def make_service(provider, storage):
    def _make_service(**config_kwargs):
        return ShopLoginService(
            config=make_config(**config_kwargs), provider=provider, storage=storage
        )

    return _make_service
