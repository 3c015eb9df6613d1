import pytest
from pydantic import SecretStr

from voice_relay.config import Settings, validate_api_keys

VALID_GOOGLE_KEY = "AIza" + "B" * 35


def make_settings(**overrides) -> Settings:
    values = {
        "openrouter_api_key": SecretStr("or-test"),
        "google_tts_api_key": SecretStr(VALID_GOOGLE_KEY),
    }
    values.update(overrides)
    return Settings(**values)


def test_defaults_match_voice_and_generation_profile() -> None:
    settings = make_settings()

    assert settings.max_output_tokens == 200
    assert settings.generation_temperature == pytest.approx(0.7)
    assert settings.generation_top_p == pytest.approx(0.8)
    assert settings.generation_top_k == 40
    assert settings.tts_voice_name == "pt-BR-Neural2-B"
    assert settings.tts_sample_rate == 16000
    assert settings.audio_chunk_bytes == 4096
    assert settings.audio_chunk_delay == pytest.approx(0.002)
    assert settings.idle_timeout_seconds == 300
    assert settings.heartbeat_interval_seconds == 30


def test_env_aliases_are_honoured(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("OPENROUTER_API_KEY", "from-env")
    monkeypatch.setenv("AUDIO_CHUNK_BYTES", "1024")

    settings = Settings()

    assert settings.openrouter_api_key.get_secret_value() == "from-env"
    assert settings.audio_chunk_bytes == 1024


def test_validate_api_keys_accepts_well_formed_keys() -> None:
    assert validate_api_keys(make_settings()) == []


def test_validate_api_keys_reports_missing_keys() -> None:
    errors = validate_api_keys(
        make_settings(openrouter_api_key=None, google_tts_api_key=None)
    )

    assert len(errors) == 2
    assert "OPENROUTER_API_KEY" in errors[0]
    assert "GOOGLE_TTS_API_KEY" in errors[1]


def test_validate_api_keys_rejects_blank_and_malformed() -> None:
    errors = validate_api_keys(
        make_settings(
            openrouter_api_key=SecretStr("   "),
            google_tts_api_key=SecretStr("not-a-google-key"),
        )
    )

    assert errors == [
        "OpenRouter API key (OPENROUTER_API_KEY) is missing",
        "Google Cloud TTS API key (GOOGLE_TTS_API_KEY) is invalid format",
    ]
