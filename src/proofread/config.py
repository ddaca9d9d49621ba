"""Persisted preferences and the per-request settings snapshot."""

import json
import os
import tempfile
import threading
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Self

from proofread.constants import (
    DEFAULT_CONFIG_DIR,
    DEFAULT_CONFIG_DIR_ENV,
    DEFAULT_CONFIG_FILE,
    DEFAULT_KEEP_MODEL_LOADED,
    DEFAULT_MAX_TOKENS,
    DEFAULT_SYSTEM_PROMPT,
    DEFAULT_TARGET_LANGUAGE,
    KEY_DECODER_PATH,
    KEY_ENCODER_PATH,
    KEY_KEEP_MODEL_LOADED,
    KEY_MAX_TOKENS,
    KEY_SYSTEM_PROMPT,
    KEY_TARGET_LANGUAGE,
    KEY_TOKENIZER_PATH,
)
from proofread.env import LOGGER


def default_preferences_path() -> Path:
    config_dir = Path(
        os.environ.get(DEFAULT_CONFIG_DIR_ENV, "") or DEFAULT_CONFIG_DIR,
    ).expanduser()
    return config_dir / DEFAULT_CONFIG_FILE


class Preferences:
    """Small key-value store persisted as one JSON object.

    ``path=None`` keeps everything in memory.
    """

    def __init__(
        self, path: Path | None, values: dict[str, Any] | None = None
    ) -> None:
        self._path = path
        self._values: dict[str, Any] = dict(values or {})
        self._lock = threading.Lock()

    @classmethod
    def open(cls, path: str | Path | None = None) -> Self:
        """Read the store at *path* (default location if None).

        A missing or malformed file yields an empty store.
        """
        resolved = Path(path).expanduser() if path else default_preferences_path()
        values: dict[str, Any] = {}
        if resolved.exists():
            try:
                with open(resolved, encoding="utf-8") as f:
                    data = json.load(f)
            except (OSError, json.JSONDecodeError) as exc:
                LOGGER.warning("Ignoring unreadable preferences %s: %s", resolved, exc)
            else:
                if isinstance(data, dict):
                    values = data
        return cls(resolved, values)

    @classmethod
    def in_memory(cls, values: dict[str, Any] | None = None) -> Self:
        return cls(None, values)

    @property
    def path(self) -> Path | None:
        return self._path

    def as_dict(self) -> dict[str, Any]:
        with self._lock:
            return dict(self._values)

    def get_str(self, key: str, default: str | None = None) -> str | None:
        value = self._values.get(key)
        return value if isinstance(value, str) else default

    def get_int(self, key: str, default: int) -> int:
        value = self._values.get(key)
        if isinstance(value, bool):
            return default
        if isinstance(value, int):
            return value
        if isinstance(value, str):
            try:
                return int(value)
            except ValueError:
                return default
        return default

    def get_bool(self, key: str, default: bool) -> bool:
        value = self._values.get(key)
        if isinstance(value, bool):
            return value
        if isinstance(value, str):
            return value.strip().lower() in ("1", "true", "yes", "on")
        return default

    def put(self, key: str, value: Any) -> None:
        with self._lock:
            self._values[key] = value
            self._flush()

    def remove(self, key: str) -> None:
        with self._lock:
            if self._values.pop(key, None) is not None:
                self._flush()

    def _flush(self) -> None:
        if self._path is None:
            return
        self._path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp = tempfile.mkstemp(dir=self._path.parent, suffix=".tmp")
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                json.dump(self._values, f, indent=2, sort_keys=True)
            os.replace(tmp, self._path)
        except BaseException:
            Path(tmp).unlink(missing_ok=True)
            raise


def _blank_to_none(value: str | None) -> str | None:
    return value if value and value.strip() else None


@dataclass(frozen=True, slots=True)
class EngineSettings:
    """Settings read once at the start of a request."""

    encoder_path: str | None = None
    decoder_path: str | None = None
    vocab_path: str | None = None
    max_tokens: int = DEFAULT_MAX_TOKENS
    keep_model_loaded: bool = DEFAULT_KEEP_MODEL_LOADED
    system_prompt: str = DEFAULT_SYSTEM_PROMPT
    target_language: str = DEFAULT_TARGET_LANGUAGE

    def __post_init__(self) -> None:
        if self.max_tokens < 1:
            raise ValueError("max_tokens must be at least 1")

    @classmethod
    def from_preferences(cls, prefs: Preferences) -> Self:
        return cls(
            encoder_path=_blank_to_none(prefs.get_str(KEY_ENCODER_PATH)),
            decoder_path=_blank_to_none(prefs.get_str(KEY_DECODER_PATH)),
            vocab_path=_blank_to_none(prefs.get_str(KEY_TOKENIZER_PATH)),
            max_tokens=max(1, prefs.get_int(KEY_MAX_TOKENS, DEFAULT_MAX_TOKENS)),
            keep_model_loaded=prefs.get_bool(
                KEY_KEEP_MODEL_LOADED, DEFAULT_KEEP_MODEL_LOADED
            ),
            system_prompt=prefs.get_str(KEY_SYSTEM_PROMPT, DEFAULT_SYSTEM_PROMPT)
            or "",
            target_language=prefs.get_str(
                KEY_TARGET_LANGUAGE, DEFAULT_TARGET_LANGUAGE
            )
            or DEFAULT_TARGET_LANGUAGE,
        )
