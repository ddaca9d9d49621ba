"""Tests for preferences and the settings snapshot."""

from __future__ import annotations

import json

import pytest

from proofread.config import EngineSettings, Preferences, default_preferences_path
from proofread.constants import (
    KEY_DECODER_PATH,
    KEY_ENCODER_PATH,
    KEY_KEEP_MODEL_LOADED,
    KEY_MAX_TOKENS,
    KEY_SYSTEM_PROMPT,
)


class TestPreferences:
    def test_default_path_honours_env(self, tmp_path) -> None:
        assert default_preferences_path() == tmp_path / "config" / "preferences.json"

    def test_persists_across_instances(self, tmp_path) -> None:
        path = tmp_path / "prefs.json"
        prefs = Preferences.open(path)
        prefs.put(KEY_ENCODER_PATH, "/models/encoder.onnx")
        prefs.put(KEY_MAX_TOKENS, 64)

        reopened = Preferences.open(path)
        assert reopened.get_str(KEY_ENCODER_PATH) == "/models/encoder.onnx"
        assert reopened.get_int(KEY_MAX_TOKENS, 128) == 64
        assert json.loads(path.read_text())[KEY_MAX_TOKENS] == 64

    def test_remove(self, tmp_path) -> None:
        prefs = Preferences.open(tmp_path / "prefs.json")
        prefs.put(KEY_DECODER_PATH, "/d.onnx")
        prefs.remove(KEY_DECODER_PATH)
        assert Preferences.open(tmp_path / "prefs.json").get_str(KEY_DECODER_PATH) is None

    def test_malformed_file_is_empty(self, tmp_path) -> None:
        path = tmp_path / "prefs.json"
        path.write_text("{not json", encoding="utf-8")
        assert Preferences.open(path).as_dict() == {}

    def test_in_memory_never_writes(self) -> None:
        prefs = Preferences.in_memory()
        prefs.put(KEY_ENCODER_PATH, "/e.onnx")
        assert prefs.path is None
        assert prefs.get_str(KEY_ENCODER_PATH) == "/e.onnx"

    def test_typed_getters_tolerate_strings(self) -> None:
        prefs = Preferences.in_memory(
            {KEY_MAX_TOKENS: "32", KEY_KEEP_MODEL_LOADED: "yes", "bad": "x"}
        )
        assert prefs.get_int(KEY_MAX_TOKENS, 128) == 32
        assert prefs.get_bool(KEY_KEEP_MODEL_LOADED, False) is True
        assert prefs.get_int("bad", 7) == 7
        assert prefs.get_int("missing", 7) == 7


class TestEngineSettings:
    def test_defaults(self) -> None:
        settings = EngineSettings.from_preferences(Preferences.in_memory())
        assert settings.encoder_path is None
        assert settings.decoder_path is None
        assert settings.vocab_path is None
        assert settings.max_tokens == 128
        assert settings.keep_model_loaded is False
        assert settings.system_prompt == "grammar: "
        assert settings.target_language == "German"

    def test_blank_paths_are_unset(self) -> None:
        prefs = Preferences.in_memory({KEY_ENCODER_PATH: "  ", KEY_DECODER_PATH: ""})
        settings = EngineSettings.from_preferences(prefs)
        assert settings.encoder_path is None
        assert settings.decoder_path is None

    def test_empty_prompt_kept(self) -> None:
        prefs = Preferences.in_memory({KEY_SYSTEM_PROMPT: ""})
        assert EngineSettings.from_preferences(prefs).system_prompt == ""

    def test_non_positive_budget_clamped(self) -> None:
        prefs = Preferences.in_memory({KEY_MAX_TOKENS: 0})
        assert EngineSettings.from_preferences(prefs).max_tokens == 1

    def test_direct_construction_validates(self) -> None:
        with pytest.raises(ValueError):
            EngineSettings(max_tokens=0)
