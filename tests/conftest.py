import os

os.environ.setdefault("DISABLE_FASTAPI_LIMITER_INIT_FOR_TESTS", "1")

import pytest
from typing import Any, Callable, Dict, Generator
from fastapi.testclient import TestClient
from unittest.mock import MagicMock

from wedding_checkout.app import app as fastapi_app
from wedding_checkout.checkout.cart import CartItem
from wedding_checkout.utils.security import require_user

# Marquage automatique selon le dossier
def pytest_collection_modifyitems(config, items):
    for item in items:
        nodeid = item.nodeid.replace("\\", "/")
        if "tests/unit/" in nodeid:
            item.add_marker(pytest.mark.unit)
        elif "tests/integration/" in nodeid:
            item.add_marker(pytest.mark.integration)

@pytest.fixture(scope="session")
def app():
    return fastapi_app

@pytest.fixture()
def client(app) -> Generator[TestClient, None, None]:
    with TestClient(app) as c:
        yield c

# Simuler un utilisateur authentifié pour les endpoints protégés
@pytest.fixture(autouse=True)
def _override_require_user(app):
    fake_user: Dict[str, Any] = {
        "id": "test-user",
        "email": "test@example.com",
        "metadata": {"name": "Test User"},
        "token": "fake-token",
    }
    app.dependency_overrides[require_user] = lambda: fake_user
    try:
        yield
    finally:
        app.dependency_overrides.pop(require_user, None)

# Aucun test ne doit joindre Supabase
@pytest.fixture(scope="function", autouse=True)
def mock_db_dependency(monkeypatch):
    monkeypatch.setattr("wedding_checkout.infra.supabase_client.get_supabase", lambda: MagicMock())
    monkeypatch.setattr("wedding_checkout.infra.supabase_client.get_service_supabase", lambda: MagicMock())

@pytest.fixture
def make_item() -> Callable[..., CartItem]:
    """Fabrique de CartItem: make_item("Photography", 200000, vendor="v1")."""
    counter = {"n": 0}

    def _make(service_type: str = "Photography", price: int = 200000, vendor: str = "v1",
              vendor_name: str = "Lens & Co", package_name: str = "Gold Package", **extra) -> CartItem:
        counter["n"] += 1
        n = counter["n"]
        data = {
            "id": f"item-{n}",
            "package": {"id": f"pkg-{n}", "name": package_name, "serviceType": service_type, "price": price},
            "vendor": {"id": vendor, "name": vendor_name},
            "eventDate": "2026-06-20",
            "eventTime": "14:00",
            "endTime": "22:00",
            "venue": {"id": "venue-1", "name": "Rose Garden"},
        }
        data.update(extra)
        return CartItem.model_validate(data)

    return _make

@pytest.fixture
def templates_by_type() -> Dict[str, dict]:
    return {
        "Photography": {"id": "tpl-photo", "service_type": "Photography",
                        "content": "Agreement between {{client_name}} and {{vendor_name}} for {{package_name}} "
                                   "on {{event_date}} ({{event_time}}) at {{venue}}. Price: {{price}}."},
        "Videography": {"id": "tpl-video", "service_type": "Videography",
                        "content": "{{client_name}} books {{vendor_name}}."},
        "DJ": {"id": "tpl-dj", "service_type": "DJ", "content": "DJ {{vendor_name}} for {{client_name}}."},
    }

@pytest.fixture
def template_loader(templates_by_type):
    """Chargeur de modèles en mémoire, enregistre les types demandés."""
    calls = []

    def _load(service_types):
        types = list(service_types)
        calls.append(types)
        return {t: templates_by_type[t] for t in types if t in templates_by_type}

    _load.calls = calls
    return _load
