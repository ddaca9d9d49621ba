"""CLI entry point for proofread.

Parses arguments, configures logging, and runs one request or edits the
stored settings. setup_environment() is called before onnxruntime is
imported.

Subcommands:
    check      grammar-correct text
    translate  translate text to the configured target language
    config     show, set or unset stored settings
    inspect    show the decoder inputs and the detected calling convention
"""

import argparse
import logging
import os
import sys

from proofread.constants import (
    KEY_DECODER_PATH,
    KEY_ENCODER_PATH,
    KEY_KEEP_MODEL_LOADED,
    KEY_MAX_TOKENS,
    KEY_SYSTEM_PROMPT,
    KEY_TARGET_LANGUAGE,
    KEY_TOKENIZER_PATH,
)

# CLI setting names -> preference keys
SETTING_KEYS = {
    "encoder": KEY_ENCODER_PATH,
    "decoder": KEY_DECODER_PATH,
    "vocab": KEY_TOKENIZER_PATH,
    "max-tokens": KEY_MAX_TOKENS,
    "keep-loaded": KEY_KEEP_MODEL_LOADED,
    "prompt": KEY_SYSTEM_PROMPT,
    "target-language": KEY_TARGET_LANGUAGE,
}


def build_arg_parser() -> argparse.ArgumentParser:
    """Build the CLI argument parser with subcommand support."""
    parser = argparse.ArgumentParser(
        description="Offline grammar correction and translation with ONNX models"
    )
    parser.add_argument(
        "--preferences",
        default=None,
        help="Preferences file (default: ~/.config/proofread/preferences.json)",
    )
    subparsers = parser.add_subparsers(dest="subcommand", required=True)

    check = subparsers.add_parser("check", help="Grammar-correct text")
    check.add_argument("text", help="Text to correct, or '-' to read stdin")
    check.add_argument(
        "--prompt",
        default=None,
        help="Instruction prefix to use instead of the stored one",
    )

    translate = subparsers.add_parser("translate", help="Translate text")
    translate.add_argument("text", help="Text to translate, or '-' to read stdin")

    config = subparsers.add_parser("config", help="Show or edit settings")
    config_sub = config.add_subparsers(dest="action", required=True)
    config_sub.add_parser("show", help="Show stored settings")
    config_set = config_sub.add_parser("set", help="Store a setting")
    config_set.add_argument("key", choices=sorted(SETTING_KEYS))
    config_set.add_argument("value")
    config_unset = config_sub.add_parser("unset", help="Remove a setting")
    config_unset.add_argument("key", choices=sorted(SETTING_KEYS))

    subparsers.add_parser(
        "inspect", help="Show decoder inputs and the detected calling convention"
    )
    return parser


def _read_text(value: str) -> str:
    return sys.stdin.read().rstrip("\n") if value == "-" else value


def _apply_setting(service, key: str, value: str | None) -> None:
    """Route through the service so path changes unload resident models."""
    match key:
        case "encoder":
            service.set_encoder_path(value)
        case "decoder":
            service.set_decoder_path(value)
        case "vocab":
            service.set_vocab_path(value)
        case "max-tokens":
            if value is None:
                service.preferences.remove(KEY_MAX_TOKENS)
            else:
                service.set_max_tokens(int(value))
        case "keep-loaded":
            if value is None:
                service.preferences.remove(KEY_KEEP_MODEL_LOADED)
            else:
                service.set_keep_model_loaded(
                    value.strip().lower() in ("1", "true", "yes", "on")
                )
        case "prompt":
            if value is None:
                service.preferences.remove(KEY_SYSTEM_PROMPT)
            else:
                service.set_system_prompt(value)
        case "target-language":
            if value is None:
                service.preferences.remove(KEY_TARGET_LANGUAGE)
            else:
                service.set_target_language(value)


def show_settings(service) -> None:
    """Display the effective settings."""
    from rich.console import Console
    from rich.table import Table

    settings = service.settings()
    table = Table(title="Proofread Settings")
    table.add_column("Setting", style="cyan")
    table.add_column("Value", style="white")
    table.add_row("encoder", settings.encoder_path or "")
    table.add_row("decoder", settings.decoder_path or "")
    table.add_row("vocab", settings.vocab_path or "")
    table.add_row("max-tokens", str(settings.max_tokens))
    table.add_row("keep-loaded", "Yes" if settings.keep_model_loaded else "No")
    table.add_row("prompt", repr(settings.system_prompt))
    table.add_row("target-language", settings.target_language)
    table.caption = f"Model: {service.model_name()}"
    Console().print(table)


def show_decoder(service) -> None:
    """Display decoder inputs with their role and declared shape."""
    from rich.console import Console
    from rich.table import Table

    signature, shapes = service.inspect_decoder()
    roles = {
        signature.token_input: "tokens",
        signature.hidden_input: "encoder hidden states",
        signature.mask_input: "encoder mask",
        signature.use_cache_input: "use-cache flag",
    }
    table = Table(title=f"Decoder ({signature.convention.value})")
    table.add_column("Input", style="cyan")
    table.add_column("Role", style="white")
    table.add_column("Shape", style="green")
    for name, shape in shapes.items():
        role = roles.get(name) or ("cache" if name in signature.cache_inputs else "")
        dims = "?" if shape is None else ", ".join(
            "?" if d is None else str(d) for d in shape
        )
        table.add_row(name, role, f"[{dims}]")
    Console().print(table)


def main(argv: list[str] | None = None) -> int:
    """CLI entry point. Returns exit code."""
    # Must run before onnxruntime is imported.
    from proofread.env import setup_environment

    setup_environment()

    from rich.console import Console
    from rich.logging import RichHandler

    from proofread.config import Preferences
    from proofread.errors import ProofreadError
    from proofread.service import ProofreadService

    log_level = os.environ.get("LOG_LEVEL", "INFO").upper()
    logging.basicConfig(
        level=log_level,
        format="%(message)s",
        handlers=[
            RichHandler(
                console=Console(stderr=True),
                show_time=False,
                show_path=False,
                rich_tracebacks=False,
            )
        ],
    )

    parser = build_arg_parser()
    args = parser.parse_args(argv)

    service = ProofreadService(Preferences.open(args.preferences))
    try:
        if args.subcommand == "config":
            if args.action == "show":
                show_settings(service)
            else:
                value = args.value if args.action == "set" else None
                try:
                    _apply_setting(service, args.key, value)
                except ValueError as exc:
                    parser.error(f"invalid value for {args.key}: {exc}")
            return 0

        if args.subcommand == "inspect":
            try:
                show_decoder(service)
            except ProofreadError as exc:
                logging.getLogger("proofread").error("%s", exc)
                return 1
            return 0

        text = _read_text(args.text)
        if not text.strip():
            logging.getLogger("proofread").error("No text to process")
            return 1
        if args.subcommand == "translate":
            result = service.translate(text)
        else:
            result = service.proofread(text, args.prompt)
        if not result.ok:
            return 1
        print(result.text)
        return 0
    finally:
        service.close()
