import os

# atelier.main builds its settings at import time and the signing secret has no default
os.environ.setdefault("JWT_SECRET", "test-secret")

from types import SimpleNamespace
import pytest
from asgi_lifespan import LifespanManager
from fakeredis import FakeAsyncRedis, FakeServer
from httpx import ASGITransport, AsyncClient
from sqlalchemy import select
from atelier.config.settings import Settings
from atelier.main import create_app
from atelier.schema.full_schema import Category, Color, Product, Size, Variation

API = "/api/v1"
PASSWORD = "Passw0rd!x"


@pytest.fixture
def settings(tmp_path):
    return Settings(
        ENV="dev",
        DATABASE_URL=f"sqlite+aiosqlite:///{tmp_path / 'atelier_test.db'}",
        AUTO_CREATE_SCHEMA=True,
        JWT_SECRET="test-secret",
        SESSION_TTL_SECONDS=3600,
        ADMIN_EMAIL=None,
    )


@pytest.fixture
def redis_client():
    # private server per test, no state shared between tests
    return FakeAsyncRedis(server=FakeServer())


@pytest.fixture
async def app(settings, redis_client):
    application = create_app(settings=settings, redis_client=redis_client)
    async with LifespanManager(application):
        yield application


@pytest.fixture
async def ac_client(app):
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        yield ac


@pytest.fixture
async def other_client(app):
    # separate cookie jar, i.e. a second visitor
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        yield ac


@pytest.fixture
def session_maker(app):
    return app.state.session_maker


@pytest.fixture
async def db_session(session_maker):
    async with session_maker() as session:
        yield session


@pytest.fixture
async def catalog(session_maker):
    async with session_maker() as s:
        dresses = Category(name="Dresses", slug="dresses")
        scarves = Category(name="Scarves", slug="scarves")
        size_m = Size(name="M", value="46")
        black = Color(name="Black", value="#000000")
        s.add_all([dresses, scarves, size_m, black])
        await s.flush()

        dress = Product(name="Linen Dress", slug="linen-dress", price=250000, category_id=dresses.id)
        scarf = Product(name="Silk Scarf", slug="silk-scarf", price=40000, category_id=scarves.id)
        coat = Product(name="Archived Coat", slug="archived-coat", price=900000, is_active=False)
        s.add_all([dress, scarf, coat])
        await s.flush()

        dress_v = Variation(product_id=dress.id, size_id=size_m.id, color_id=black.id, quantity=5)
        scarf_v = Variation(product_id=scarf.id, color_id=black.id, quantity=10)
        coat_v = Variation(product_id=coat.id, size_id=size_m.id, quantity=3)
        s.add_all([dress_v, scarf_v, coat_v])
        await s.commit()

        return SimpleNamespace(
            dresses=dresses.id, scarves=scarves.id, size_m=size_m.id, black=black.id,
            dress=dress.id, scarf=scarf.id, coat=coat.id,
            dress_v=dress_v.id, scarf_v=scarf_v.id, coat_v=coat_v.id,
        )


@pytest.fixture
def stock_of(session_maker):
    async def _stock(variation_id):
        async with session_maker() as s:
            res = await s.execute(select(Variation.quantity).where(Variation.id == variation_id))
            return res.scalar_one()
    return _stock


@pytest.fixture
def register_and_login():
    async def _login(client, email, password=PASSWORD, name=None):
        r = await client.post(f"{API}/auth/register", json={"email": email, "password": password, "name": name})
        assert r.status_code == 201, r.text
        r = await client.post(f"{API}/auth/login", json={"email": email, "password": password})
        assert r.status_code == 200, r.text
        data = r.json()["data"]
        return {"Authorization": f"Bearer {data['access_token']}"}, data["user"]
    return _login


@pytest.fixture
async def admin_auth(ac_client, register_and_login):
    # first registered account becomes admin
    headers, _ = await register_and_login(ac_client, "admin@atelier.shop")
    return headers


@pytest.fixture
async def user_auth(ac_client, admin_auth, register_and_login):
    headers, user = await register_and_login(ac_client, "alice@atelier.shop", name="Alice")
    return SimpleNamespace(headers=headers, user=user)
