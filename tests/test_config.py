from market_scan.analyzer import HeuristicAnalyzer
from market_scan.config import DEFAULT_SCAN_CONFIG, Settings
from market_scan.main import build_session

ENV_VARS = (
    "SERP_API_KEY",
    "ANTHROPIC_API_KEY",
    "ENABLE_TREND_VALIDATION",
    "MARKET_SCAN_LOG_LEVEL",
    "SCAN_DELAY_MS",
    "SCAN_CACHE_TTL_SECONDS",
    "SCAN_CACHE_MAX_ENTRIES",
)


def clean_env(monkeypatch):
    for name in ENV_VARS:
        monkeypatch.delenv(name, raising=False)


def test_settings_defaults(monkeypatch):
    clean_env(monkeypatch)
    settings = Settings.from_env()
    assert settings.serp_api_key is None
    assert settings.enable_trend_validation
    assert settings.log_level == "INFO"
    assert settings.scan_config() is DEFAULT_SCAN_CONFIG


def test_settings_overrides(monkeypatch):
    clean_env(monkeypatch)
    monkeypatch.setenv("SERP_API_KEY", "serp-key")
    monkeypatch.setenv("ENABLE_TREND_VALIDATION", "off")
    monkeypatch.setenv("MARKET_SCAN_LOG_LEVEL", "debug")
    monkeypatch.setenv("SCAN_DELAY_MS", "50")
    monkeypatch.setenv("SCAN_CACHE_TTL_SECONDS", "3600")
    monkeypatch.setenv("SCAN_CACHE_MAX_ENTRIES", "100")

    settings = Settings.from_env()
    config = settings.scan_config()

    assert settings.serp_api_key == "serp-key"
    assert not settings.enable_trend_validation
    assert settings.log_level == "DEBUG"
    assert config.delay_between_searches_ms == 50
    assert config.cache_ttl_seconds == 3600.0
    assert config.cache_max_entries == 100
    assert config.tier1_categories == DEFAULT_SCAN_CONFIG.tier1_categories


def test_build_session_without_model_key():
    session = build_session(Settings(serp_api_key="serp-key"))
    assert isinstance(session.analyzer, HeuristicAnalyzer)
    assert session.validator is not None
    assert session.fetcher.is_configured

    plain = build_session(Settings(serp_api_key="serp-key", enable_trend_validation=False, cache_max_entries=5))
    assert plain.validator is None
    assert plain.fetcher.cache.max_entries == 5
