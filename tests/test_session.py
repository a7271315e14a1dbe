import httpx
import pytest

from bazaar_server.exceptions import CartError, NotFoundError
from bazaar_server.session import BazaarSession

from .fakes import BASE_URL


@pytest.fixture
async def env_session(api, tmp_path, monkeypatch):
    monkeypatch.setenv("BAZAAR_EMAIL", "amna@example.com")
    monkeypatch.setenv("BAZAAR_PASSWORD", "secret123")
    session = BazaarSession.create(
        base_url=BASE_URL,
        state_file=str(tmp_path / "state.json"),
        transport=httpx.MockTransport(api.handler),
    )
    yield session
    await session.close()


class TestAddProductToCart:
    async def test_adds_with_valid_variant(self, session):
        line = await session.add_product_to_cart("p1", 2, size="L", color="White")

        assert line.line_key == ("p1", "L", "White")
        assert line.quantity == 2
        assert session.store.cart[0].product.name_ar == "جلابية"

    async def test_product_without_variants(self, session):
        await session.add_product_to_cart("p2")
        line = await session.add_product_to_cart("p2", 3)
        assert line.quantity == 4

    async def test_missing_size(self, session):
        with pytest.raises(CartError, match="size"):
            await session.add_product_to_cart("p1", color="White")
        assert session.store.cart == []

    async def test_unknown_color(self, session):
        with pytest.raises(CartError, match="color"):
            await session.add_product_to_cart("p1", size="M", color="Purple")

    async def test_out_of_stock(self, session):
        with pytest.raises(CartError, match="out of stock"):
            await session.add_product_to_cart("p3")

    async def test_non_positive_quantity(self, session, api):
        with pytest.raises(CartError):
            await session.add_product_to_cart("p2", 0)
        assert api.requests == []

    async def test_unknown_product(self, session):
        with pytest.raises(NotFoundError):
            await session.add_product_to_cart("nope")


class TestLifecycle:
    async def test_credentials_from_environment(self, env_session):
        assert env_session.credentials.email == "amna@example.com"

    async def test_no_credentials(self, api, monkeypatch):
        monkeypatch.delenv("BAZAAR_EMAIL", raising=False)
        monkeypatch.delenv("BAZAAR_PASSWORD", raising=False)
        session = BazaarSession.create(base_url=BASE_URL, persist=False, transport=httpx.MockTransport(api.handler))

        assert session.credentials is None
        assert session.store.storage is None
        assert await session.ensure_authenticated() is False
        await session.close()

    async def test_ensure_authenticated_logs_in(self, env_session, api):
        api.wishlist = ["p2"]
        await env_session.start()

        assert await env_session.ensure_authenticated() is True
        assert env_session.store.user.name == "Amna"
        assert env_session.store.wishlist == ["p2"]

    async def test_ensure_authenticated_with_bad_password(self, env_session, api):
        api.passwords["amna@example.com"] = "changed"

        assert await env_session.ensure_authenticated() is False
        assert not env_session.store.is_authenticated

    async def test_start_applies_language(self, env_session, monkeypatch):
        monkeypatch.setenv("BAZAAR_LANGUAGE", "en")
        await env_session.start()
        assert env_session.store.language == "en"

    async def test_start_ignores_unsupported_language(self, env_session, monkeypatch):
        monkeypatch.setenv("BAZAAR_LANGUAGE", "fr")
        await env_session.start()
        assert env_session.store.language == "ar"

    async def test_close_flushes_pending_calls(self, env_session, api):
        await env_session.ensure_authenticated()
        env_session.store.toggle_wishlist("p1")

        await env_session.close()
        assert api.wishlist == ["p1"]
