import pytest
from pydantic import ValidationError

from dispatch.config import Settings


def test_defaults(monkeypatch):
    monkeypatch.delenv("WHATSAPP_RATE_LIMIT", raising=False)
    s = Settings(_env_file=None)
    assert s.whatsapp_rate_limit == 80
    assert s.meta_api_version == "v24.0"
    assert s.pair_rate_limit_wait == 6.0


def test_env_overrides(monkeypatch):
    monkeypatch.setenv("WHATSAPP_RATE_LIMIT", "250")
    monkeypatch.setenv("WHATSAPP_PHONE_NUMBER_ID", "123")
    monkeypatch.setenv("WHATSAPP_ACCESS_TOKEN", "tok")
    s = Settings(_env_file=None)
    assert s.whatsapp_rate_limit == 250
    assert s.credentials_configured


@pytest.mark.parametrize("value", ["0", "1001"])
def test_rate_out_of_range_rejected(monkeypatch, value):
    monkeypatch.setenv("WHATSAPP_RATE_LIMIT", value)
    with pytest.raises(ValidationError):
        Settings(_env_file=None)
