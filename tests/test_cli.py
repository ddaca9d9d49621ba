"""Tests for the command-line entry point."""

from __future__ import annotations

import pytest

from proofread.cli import SETTING_KEYS, build_arg_parser, main
from proofread.config import Preferences
from proofread.constants import KEY_ENCODER_PATH, KEY_MAX_TOKENS


class TestArgParser:
    def test_check(self) -> None:
        args = build_arg_parser().parse_args(["check", "I has a apple"])
        assert args.subcommand == "check"
        assert args.text == "I has a apple"
        assert args.prompt is None

    def test_config_set(self) -> None:
        args = build_arg_parser().parse_args(["config", "set", "max-tokens", "64"])
        assert (args.action, args.key, args.value) == ("set", "max-tokens", "64")

    def test_unknown_setting_rejected(self) -> None:
        with pytest.raises(SystemExit):
            build_arg_parser().parse_args(["config", "set", "colour", "red"])

    def test_every_setting_has_a_key(self) -> None:
        assert set(SETTING_KEYS) == {
            "encoder",
            "decoder",
            "vocab",
            "max-tokens",
            "keep-loaded",
            "prompt",
            "target-language",
        }


class TestMain:
    def test_config_set_and_unset(self, tmp_path) -> None:
        prefs = tmp_path / "prefs.json"
        base = ["--preferences", str(prefs), "config"]

        assert main([*base, "set", "encoder", "/models/encoder.onnx"]) == 0
        assert main([*base, "set", "max-tokens", "64"]) == 0
        stored = Preferences.open(prefs)
        assert stored.get_str(KEY_ENCODER_PATH) == "/models/encoder.onnx"
        assert stored.get_int(KEY_MAX_TOKENS, 0) == 64

        assert main([*base, "unset", "encoder"]) == 0
        assert Preferences.open(prefs).get_str(KEY_ENCODER_PATH) is None

    def test_config_show(self, tmp_path, capsys) -> None:
        assert main(["--preferences", str(tmp_path / "p.json"), "config", "show"]) == 0
        assert "target-language" in capsys.readouterr().out

    def test_bad_number_is_usage_error(self, tmp_path) -> None:
        with pytest.raises(SystemExit) as exc:
            main(
                ["--preferences", str(tmp_path / "p.json"),
                 "config", "set", "max-tokens", "many"]
            )
        assert exc.value.code == 2

    def test_check_without_model_fails(self, tmp_path, capsys) -> None:
        code = main(["--preferences", str(tmp_path / "p.json"), "check", "hello"])
        assert code == 1
        assert capsys.readouterr().out == ""

    def test_inspect_without_model_fails(self, tmp_path) -> None:
        assert main(["--preferences", str(tmp_path / "p.json"), "inspect"]) == 1
