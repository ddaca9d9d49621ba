"""Inference facade: proofread and translate entry points.

Every call reads a fresh settings snapshot, runs encode + decode inside
the resource manager's critical section, and re-arms the idle-unload
timer afterwards whether it succeeded or not. Failures never escape as
exceptions; they come back as a ProofreadResult carrying the typed error
and the caller's original text.
"""

import asyncio
import threading
import time
from collections.abc import Callable
from concurrent.futures import Executor, Future, ThreadPoolExecutor
from dataclasses import dataclass
from pathlib import Path

from proofread.config import EngineSettings, Preferences
from proofread.constants import (
    DECODER_START_TOKEN_ID,
    KEY_DECODER_PATH,
    KEY_ENCODER_PATH,
    KEY_KEEP_MODEL_LOADED,
    KEY_MAX_TOKENS,
    KEY_SYSTEM_PROMPT,
    KEY_TARGET_LANGUAGE,
    KEY_TOKENIZER_PATH,
    MAX_WORKERS,
    TRANSLATE_PROMPT_TEMPLATE,
)
from proofread.env import LOGGER
from proofread.errors import (
    Cancelled,
    ConfigurationError,
    InferenceError,
    ProofreadError,
)
from proofread.model.decoder import DecodeLoop, DecoderSignature, classify_decoder
from proofread.model.encoder import run_encoder
from proofread.model.loader import ModelResources


@dataclass(frozen=True, slots=True)
class ProofreadResult:
    """Outcome of one request. On failure ``text`` is the original input."""

    original: str
    text: str
    error: ProofreadError | None = None

    @property
    def ok(self) -> bool:
        return self.error is None


class InferenceTask:
    """Handle to a request running on the worker pool."""

    __slots__ = ("future", "_cancel_event")

    def __init__(
        self, future: Future[ProofreadResult], cancel_event: threading.Event
    ) -> None:
        self.future = future
        self._cancel_event = cancel_event

    def cancel(self) -> None:
        """Stop at the next decoder step, or never start if still queued."""
        self._cancel_event.set()
        self.future.cancel()

    @property
    def cancel_requested(self) -> bool:
        return self._cancel_event.is_set()

    def done(self) -> bool:
        return self.future.done()

    def result(self, timeout: float | None = None) -> ProofreadResult:
        return self.future.result(timeout)

    def add_done_callback(
        self, callback: Callable[[Future[ProofreadResult]], None]
    ) -> None:
        self.future.add_done_callback(callback)

    async def wait(self) -> ProofreadResult:
        return await asyncio.wrap_future(self.future)


def strip_echoed_prefix(output: str, prompt: str) -> str:
    """Drop *prompt* from the start of *output* if the model echoed it."""
    # Match the stripped prompt so "grammar:x" loses "grammar:" too.
    prefix = prompt.strip()
    if prefix and output.lower().startswith(prefix.lower()):
        return output[len(prefix) :].lstrip()
    return output


class ProofreadService:
    """Public entry points over one ModelResources instance."""

    def __init__(
        self,
        preferences: Preferences | None = None,
        resources: ModelResources | None = None,
        executor: Executor | None = None,
    ) -> None:
        self.preferences = preferences or Preferences.open()
        self.resources = resources or ModelResources(
            keep_resident=lambda: self.settings().keep_model_loaded
        )
        self._executor = executor or ThreadPoolExecutor(
            max_workers=MAX_WORKERS, thread_name_prefix="proofread"
        )
        self._active: set[Future[ProofreadResult]] = set()
        self._active_lock = threading.Lock()

    def settings(self) -> EngineSettings:
        return EngineSettings.from_preferences(self.preferences)

    # -- blocking entry points ------------------------------------------

    def proofread(
        self,
        text: str,
        prompt_override: str | None = None,
        *,
        cancel_event: threading.Event | None = None,
    ) -> ProofreadResult:
        settings = self.settings()
        prompt = (
            prompt_override if prompt_override is not None else settings.system_prompt
        )
        return self._run(text, prompt, settings, cancel_event)

    def translate(
        self, text: str, *, cancel_event: threading.Event | None = None
    ) -> ProofreadResult:
        settings = self.settings()
        prompt = TRANSLATE_PROMPT_TEMPLATE.format(target=settings.target_language)
        return self._run(text, prompt, settings, cancel_event)

    def _run(
        self,
        text: str,
        prompt: str,
        settings: EngineSettings,
        cancel_event: threading.Event | None,
    ) -> ProofreadResult:
        try:
            output = self._infer(text, prompt, settings, cancel_event)
        except Cancelled as exc:
            LOGGER.info("Request cancelled: %s", exc)
            return ProofreadResult(text, text, exc)
        except ProofreadError as exc:
            LOGGER.error("Proofread failed: %s", exc)
            return ProofreadResult(text, text, exc)
        except Exception as exc:
            LOGGER.exception("Proofread failed unexpectedly")
            error = InferenceError(str(exc) or type(exc).__name__)
            error.__cause__ = exc
            return ProofreadResult(text, text, error)
        finally:
            self.resources.schedule_idle_unload()
        return ProofreadResult(text, output)

    def _infer(
        self,
        text: str,
        prompt: str,
        settings: EngineSettings,
        cancel_event: threading.Event | None,
    ) -> str:
        if not settings.encoder_path:
            raise ConfigurationError(
                "Model not loaded. Please select an encoder ONNX file."
            )
        input_text = f"{prompt}{text}" if prompt.strip() else text

        with self.resources.hold(
            settings.encoder_path, settings.decoder_path, settings.vocab_path
        ) as models:
            if cancel_event is not None and cancel_event.is_set():
                raise Cancelled("cancelled before encoding")
            input_ids = models.tokenizer.encode(input_text)

            start = time.perf_counter()
            encoded = run_encoder(models.runtime, models.encoder, input_ids)
            LOGGER.debug(
                "Encoded %d symbols in %.0f ms",
                len(input_ids),
                (time.perf_counter() - start) * 1000,
            )
            if models.decoder is None:
                LOGGER.warning("Decoder not available, returning original text")
                return text

            generation = DecodeLoop(models.runtime, models.decoder).generate(
                encoded,
                max_steps=settings.max_tokens,
                start_token_id=DECODER_START_TOKEN_ID,
                eos_token_id=models.tokenizer.eos_token_id,
                cancel_event=cancel_event,
            )
            output = models.tokenizer.decode(generation.body)

        output = strip_echoed_prefix(output, prompt)
        return output if output.strip() else text

    # -- worker pool ----------------------------------------------------

    def submit_proofread(
        self, text: str, prompt_override: str | None = None
    ) -> InferenceTask:
        event = threading.Event()
        return self._track(
            self._executor.submit(
                self.proofread, text, prompt_override, cancel_event=event
            ),
            event,
        )

    def submit_translate(self, text: str) -> InferenceTask:
        event = threading.Event()
        return self._track(
            self._executor.submit(self.translate, text, cancel_event=event),
            event,
        )

    def _track(
        self, future: Future[ProofreadResult], event: threading.Event
    ) -> InferenceTask:
        with self._active_lock:
            self._active.add(future)
        future.add_done_callback(self._forget)
        return InferenceTask(future, event)

    def _forget(self, future: Future[ProofreadResult]) -> None:
        with self._active_lock:
            self._active.discard(future)

    def is_busy(self) -> bool:
        with self._active_lock:
            return any(not f.done() for f in self._active)

    # -- lifecycle and settings -----------------------------------------

    def unload(self) -> None:
        self.resources.unload()

    def close(self) -> None:
        self._executor.shutdown(wait=True, cancel_futures=True)
        self.resources.unload()

    def inspect_decoder(self) -> tuple[DecoderSignature, dict[str, tuple]]:
        """Load the configured models and describe the decoder's inputs."""
        settings = self.settings()
        if not settings.encoder_path or not settings.decoder_path:
            raise ConfigurationError("Both encoder and decoder must be configured.")
        try:
            with self.resources.hold(
                settings.encoder_path, settings.decoder_path, settings.vocab_path
            ) as models:
                decoder = models.decoder
                shapes = {
                    name: decoder.input_shape(name) for name in decoder.input_names
                }
                return classify_decoder(decoder), shapes
        finally:
            self.resources.schedule_idle_unload()

    def _set_path(self, key: str, path: str | None) -> None:
        if path and path.strip():
            self.preferences.put(key, path)
        else:
            self.preferences.remove(key)
        self.resources.unload()

    def set_encoder_path(self, path: str | None) -> None:
        self._set_path(KEY_ENCODER_PATH, path)

    def set_decoder_path(self, path: str | None) -> None:
        self._set_path(KEY_DECODER_PATH, path)

    def set_vocab_path(self, path: str | None) -> None:
        self._set_path(KEY_TOKENIZER_PATH, path)

    def set_system_prompt(self, prompt: str) -> None:
        self.preferences.put(KEY_SYSTEM_PROMPT, prompt)

    def set_target_language(self, language: str) -> None:
        self.preferences.put(KEY_TARGET_LANGUAGE, language)

    def set_max_tokens(self, max_tokens: int) -> None:
        if max_tokens < 1:
            raise ValueError("max_tokens must be at least 1")
        self.preferences.put(KEY_MAX_TOKENS, max_tokens)

    def set_keep_model_loaded(self, keep: bool) -> None:
        self.preferences.put(KEY_KEEP_MODEL_LOADED, keep)
        if keep:
            self.resources.cancel_idle_unload()

    def model_name(self) -> str:
        path = self.settings().encoder_path
        if not path:
            return "No Model Selected"
        return Path(path).name or "Local Model"
