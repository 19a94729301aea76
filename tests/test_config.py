# tests/test_config.py
from copyflow.config import Settings


def _clear(monkeypatch):
    for name in ("LLM_PROVIDER", "OPENAI_API_KEY", "ANTHROPIC_API_KEY", "LLM_MODEL",
                 "VISION_LLM_MODEL", "ADMIN_API_KEYS", "RATE_LIMIT_BACKEND", "MOCK_LLM"):
        monkeypatch.delenv(name, raising=False)


def test_defaults(monkeypatch):
    _clear(monkeypatch)
    s = Settings.from_env(dotenv=False)
    assert s.llm_provider == "openai"
    assert s.mock_llm is True
    assert s.rate_limit_backend == "memory"
    assert s.admin_api_keys == []


def test_anthropic_detected_from_key(monkeypatch):
    _clear(monkeypatch)
    monkeypatch.setenv("ANTHROPIC_API_KEY", "sk-ant-test")
    s = Settings.from_env(dotenv=False)
    assert s.llm_provider == "anthropic"
    assert s.llm_model.startswith("claude")


def test_explicit_values(monkeypatch):
    _clear(monkeypatch)
    monkeypatch.setenv("LLM_PROVIDER", "openai")
    monkeypatch.setenv("ANTHROPIC_API_KEY", "sk-ant-test")
    monkeypatch.setenv("MOCK_LLM", "false")
    monkeypatch.setenv("RATE_LIMIT_BACKEND", " Redis ")
    monkeypatch.setenv("ADMIN_API_KEYS", "a, b,,")
    s = Settings.from_env(dotenv=False)
    assert s.llm_provider == "openai"
    assert s.mock_llm is False
    assert s.rate_limit_backend == "redis"
    assert s.admin_api_keys == ["a", "b"]
