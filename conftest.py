from __future__ import annotations

import pytest

from licensedesk.config import get_settings
from licensedesk.context import correlation_id_var


@pytest.fixture(autouse=True)
def _isolated_settings(tmp_path, monkeypatch):
    # Never touch the real session file or a developer's .env overrides.
    for name in ("LICENSEDESK_AUTH_MODE", "LICENSEDESK_API_BASE_URL", "LICENSEDESK_LOG_LEVEL"):
        monkeypatch.delenv(name, raising=False)
    monkeypatch.setenv("LICENSEDESK_SESSION_FILE", str(tmp_path / "storage.json"))
    monkeypatch.setenv("LICENSEDESK_API_BASE_URL", "http://licenses.test/api/v1")
    get_settings.cache_clear()
    token = correlation_id_var.set(None)
    yield
    correlation_id_var.reset(token)
    get_settings.cache_clear()
