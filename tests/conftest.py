"""
Pytest configuration for KisanSathi tests.

Provides a fake text generator and a TestClient wired to it, and clears
every credential variable so no test can reach a real provider.
"""
from typing import Any, Dict, List, Optional

import pytest
from fastapi.testclient import TestClient

from kisansathi.config import API_KEY_ENV_VARS
from kisansathi.main import app
from kisansathi.services import gemini
from kisansathi.services.gemini import get_generator


class FakeGenerator:
    """Stands in for GeminiGenerator; records calls and replays a reply or error."""

    def __init__(self, reply: str = "", error: Optional[BaseException] = None):
        self.reply = reply
        self.error = error
        self.calls: List[Dict[str, Any]] = []

    def generate(self, system, turns, max_output_tokens, temperature):
        self.calls.append({
            "system": system,
            "turns": list(turns),
            "max_output_tokens": max_output_tokens,
            "temperature": temperature,
        })
        if self.error is not None:
            raise self.error
        return self.reply

    def generate_from_image(self, prompt, image):
        self.calls.append({"prompt": prompt, "image": image})
        if self.error is not None:
            raise self.error
        return self.reply


class QuotaError(Exception):
    code = 429


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    for name in API_KEY_ENV_VARS + ("OPENWEATHER_API_KEY", "UPSTREAM_MAX_RETRIES", "GEMINI_MODEL"):
        monkeypatch.delenv(name, raising=False)
    gemini._build_generator.cache_clear()
    yield
    gemini._build_generator.cache_clear()


@pytest.fixture
def fake_generator():
    return FakeGenerator(reply="Sow paddy at the onset of the monsoon.")


@pytest.fixture
def client():
    with TestClient(app) as c:
        yield c
    app.dependency_overrides.clear()


@pytest.fixture
def use_generator(client):
    """Route requests through the given fake generator."""
    def _use(generator):
        app.dependency_overrides[get_generator] = lambda: generator
        return generator
    return _use
