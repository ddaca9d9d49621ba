"""Model resource manager: owns sessions, loads lazily, unloads when idle.

All transitions (load, unload, arming the idle timer) and every use of
the loaded sessions happen under one reentrant lock, so a session is never
closed while a request is running on it.
"""

import threading
from collections.abc import Callable, Iterator
from contextlib import contextmanager
from dataclasses import dataclass
from pathlib import Path
from typing import TypeAlias

from proofread.constants import IDLE_UNLOAD_DELAY_S
from proofread.env import LOGGER
from proofread.errors import LoadError
from proofread.model.cache import copy_to_cache, default_cache_dir
from proofread.protocols import (
    RuntimeLike,
    SessionLike,
    TimerHandle,
    TimerScheduler,
)
from proofread.scheduling import ThreadingScheduler
from proofread.tokenizer import Tokenizer

Copier: TypeAlias = Callable[[str, str, Path], Path]


def _default_runtime() -> RuntimeLike:
    from proofread.model.runtime import OrtRuntime

    return OrtRuntime()


@dataclass(frozen=True, slots=True)
class LoadedModels:
    """View of the resident resources handed to one request."""

    runtime: RuntimeLike
    encoder: SessionLike
    decoder: SessionLike | None
    tokenizer: Tokenizer


class ModelResources:
    """Owns the runtime environment, both sessions and the tokenizer."""

    def __init__(
        self,
        *,
        runtime_factory: Callable[[], RuntimeLike] = _default_runtime,
        copier: Copier = copy_to_cache,
        cache_dir: Path | None = None,
        scheduler: TimerScheduler | None = None,
        keep_resident: Callable[[], bool] = lambda: False,
        idle_delay: float = IDLE_UNLOAD_DELAY_S,
    ) -> None:
        self._runtime_factory = runtime_factory
        self._copier = copier
        self._cache_dir = cache_dir or default_cache_dir()
        self._scheduler = scheduler or ThreadingScheduler()
        self._keep_resident = keep_resident
        self._idle_delay = idle_delay

        self._lock = threading.RLock()
        self._models: LoadedModels | None = None
        self._paths: tuple[str, str | None, str | None] | None = None
        self._unload_handle: TimerHandle | None = None
        self._unload_generation = 0
        self.last_error: Exception | None = None

    @property
    def is_loaded(self) -> bool:
        return self._models is not None

    @property
    def idle_unload_pending(self) -> bool:
        return self._unload_handle is not None

    def load_models(
        self,
        encoder_path: str,
        decoder_path: str | None = None,
        vocab_path: str | None = None,
    ) -> bool:
        """Make the given artifacts resident.

        Returns True immediately if exactly these paths are already loaded.
        Otherwise the previous resources are fully released first. On
        failure nothing stays loaded, ``last_error`` holds the cause and
        False is returned.
        """
        with self._lock:
            self.cancel_idle_unload()
            paths = (encoder_path, decoder_path or None, vocab_path or None)
            if self._models is not None and self._paths == paths:
                return True

            self.unload()
            runtime: RuntimeLike | None = None
            sessions: list[SessionLike] = []
            try:
                tokenizer = Tokenizer()
                tokenizer.load(self._cached_vocab(vocab_path))

                runtime = self._runtime_factory()
                encoder_file = self._copier(encoder_path, "encoder", self._cache_dir)
                encoder = runtime.create_session(str(encoder_file))
                sessions.append(encoder)

                decoder = None
                if decoder_path:
                    decoder_file = self._copier(
                        decoder_path, "decoder", self._cache_dir
                    )
                    decoder = runtime.create_session(str(decoder_file))
                    sessions.append(decoder)
            except Exception as exc:
                LOGGER.error("Failed to load ONNX models: %s", exc)
                self.last_error = exc
                self._release(runtime, sessions)
                return False

            self._models = LoadedModels(runtime, encoder, decoder, tokenizer)
            self._paths = paths
            self.last_error = None
            LOGGER.info(
                "Loaded encoder%s (%s tokenizer)",
                " and decoder" if decoder is not None else "",
                "character" if tokenizer.degraded else "vocabulary",
            )
            return True

    def _cached_vocab(self, vocab_path: str | None) -> Path | None:
        if not vocab_path:
            return None
        try:
            return self._copier(vocab_path, "tokenizer", self._cache_dir)
        except LoadError as exc:
            LOGGER.warning("Vocabulary unavailable: %s", exc)
            return None

    @staticmethod
    def _release(
        runtime: RuntimeLike | None, sessions: list[SessionLike]
    ) -> None:
        for session in sessions:
            try:
                session.close()
            except Exception as exc:
                LOGGER.warning("Error closing ONNX session: %s", exc)
        if runtime is not None:
            try:
                runtime.close()
            except Exception as exc:
                LOGGER.warning("Error closing ONNX runtime: %s", exc)

    def unload(self) -> None:
        """Release sessions, runtime and tokenizer. Safe when empty."""
        with self._lock:
            self.cancel_idle_unload()
            models, self._models, self._paths = self._models, None, None
            if models is None:
                return
            sessions = [models.encoder]
            if models.decoder is not None:
                sessions.append(models.decoder)
            self._release(models.runtime, sessions)
            LOGGER.info("Offline model unloaded")

    @contextmanager
    def hold(
        self,
        encoder_path: str,
        decoder_path: str | None = None,
        vocab_path: str | None = None,
    ) -> Iterator[LoadedModels]:
        """Load if needed, then use the models exclusively for one request.

        Raises LoadError if the artifacts cannot be made resident.
        """
        with self._lock:
            if not self.load_models(encoder_path, decoder_path, vocab_path):
                raise LoadError(f"Failed to load model: {self.last_error}")
            yield self._models

    def cancel_idle_unload(self) -> None:
        with self._lock:
            self._unload_generation += 1
            if self._unload_handle is not None:
                self._unload_handle.cancel()
                self._unload_handle = None

    def schedule_idle_unload(self) -> None:
        """Arm the idle timer, replacing any pending one.

        Skipped entirely when the keep-resident option is set.
        """
        with self._lock:
            self.cancel_idle_unload()
            if self._keep_resident():
                LOGGER.info("Model unload skipped (keep model loaded enabled)")
                return
            generation = self._unload_generation
            self._unload_handle = self._scheduler.call_later(
                self._idle_delay, lambda: self._idle_unload(generation)
            )

    def _idle_unload(self, generation: int) -> None:
        with self._lock:
            # A use or re-arm after this timer fired supersedes it.
            if generation != self._unload_generation:
                return
            self._unload_handle = None
            if self._models is None:
                return
            self.unload()
            LOGGER.info("Offline model unloaded due to inactivity")
