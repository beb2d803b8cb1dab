import mongomock
import pytest
from fastapi.testclient import TestClient

from config import Settings
from main import create_app


@pytest.fixture
def db():
    mongo = mongomock.MongoClient()
    yield mongo["storefront_test"]
    # mongomock clients on the same host share their data
    mongo.drop_database("storefront_test")


@pytest.fixture
def settings(tmp_path):
    return Settings(
        database_name="storefront_test",
        upload_dir=tmp_path / "uploads",
        frontend_dir=tmp_path / "frontend",
        images_dir=tmp_path / "images",
        views_dir=tmp_path / "views",
        public_dir=tmp_path / "public",
    )


@pytest.fixture
def client(settings, db):
    app = create_app(settings=settings, db=db)
    with TestClient(app) as c:
        yield c


@pytest.fixture
def signup(client):
    def _signup(email="ana@example.com", password="secret1", role="user", name="Ana"):
        return client.post("/signup", json={
            "name": name,
            "email": email,
            "password": password,
            "confirm": password,
            "role": role,
        })
    return _signup


@pytest.fixture
def make_product(client):
    def _make(name="Tee", price=499, category="men", image_url="http://x/y.png"):
        res = client.post("/products", json={
            "name": name,
            "price": price,
            "category": category,
            "imageUrl": image_url,
        })
        assert res.status_code == 200, res.text
        return res.json()["product"]
    return _make
