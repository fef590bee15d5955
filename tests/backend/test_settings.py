from __future__ import annotations

from backend.review_invites.settings import DEFAULT_RETRY_DELAYS_MS, MAX_RETRIES, load_settings


def test_delay_table_of_wrong_length_falls_back_to_default(monkeypatch) -> None:
    for raw in ("5000", "1000,2000", "1,2,3,4", "a,b,c", "1000,-1,2000"):
        monkeypatch.setenv("RETRY_DELAYS_MS", raw)
        settings = load_settings()
        assert settings.retry_delays_ms == DEFAULT_RETRY_DELAYS_MS
        assert settings.max_retries == MAX_RETRIES == 3


def test_delay_table_of_matching_length_is_used(monkeypatch) -> None:
    monkeypatch.setenv("RETRY_DELAYS_MS", "100, 200, 400")
    settings = load_settings()
    assert settings.retry_delays_ms == (100, 200, 400)
    assert settings.max_retries == 3
