import importlib

import pytest

import scbridge.config


@pytest.fixture
def reload_config(monkeypatch):
    def reload():
        return importlib.reload(scbridge.config)

    yield reload
    # restore the module as the rest of the suite sees it
    monkeypatch.undo()
    importlib.reload(scbridge.config)


def test_keys_share_the_prefix(monkeypatch, reload_config):
    monkeypatch.setenv("SCB_TITLE", "studio bridge")
    monkeypatch.setenv("SCB_ALLOW_ORIGINS", " https://a.example , ,https://b.example")
    monkeypatch.setenv("SCB_PORT", "4100")
    config = reload_config()
    assert config.TITLE == "studio bridge"
    assert config.ALLOW_ORIGINS == ["https://a.example", "https://b.example"]
    assert config.PORT == 4100


def test_unprefixed_keys_are_ignored(monkeypatch, reload_config):
    monkeypatch.delenv("SCB_TITLE", raising=False)
    monkeypatch.delenv("SCB_ALLOW_ORIGINS", raising=False)
    monkeypatch.setenv("FASTAPI_TITLE", "other")
    monkeypatch.setenv("ALLOW_ORIGINS", "https://c.example")
    config = reload_config()
    assert config.TITLE == "sclang bridge"
    assert config.ALLOW_ORIGINS == ["*"]
