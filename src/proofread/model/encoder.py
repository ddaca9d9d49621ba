"""Encode stage: run the encoder graph once per request."""

from collections.abc import Sequence
from dataclasses import dataclass

import numpy as np

from proofread.errors import InferenceError
from proofread.protocols import RunResultLike, RuntimeLike, SessionLike, TensorLike


@dataclass(frozen=True, slots=True)
class EncoderOutput:
    """Encoder hidden states [1, seq, hidden] and the matching mask [1, seq]."""

    hidden_states: np.ndarray
    attention_mask: np.ndarray

    @property
    def seq_len(self) -> int:
        return int(self.hidden_states.shape[1])

    @property
    def hidden_dim(self) -> int:
        return int(self.hidden_states.shape[2])


def run_encoder(
    runtime: RuntimeLike, session: SessionLike, input_ids: Sequence[int]
) -> EncoderOutput:
    """Feed ids plus an all-ones mask and return the first output.

    Input tensors and the run result are closed before returning, on
    success and on failure.
    """
    if not input_ids:
        raise InferenceError("cannot encode an empty symbol sequence")
    ids = np.asarray([list(input_ids)], dtype=np.int64)
    mask = np.ones_like(ids)

    tensors: list[TensorLike] = []
    result: RunResultLike | None = None
    try:
        ids_tensor = runtime.tensor(ids)
        tensors.append(ids_tensor)
        mask_tensor = runtime.tensor(mask)
        tensors.append(mask_tensor)

        feeds: dict[str, TensorLike] = {}
        for name in session.input_names:
            if "attention_mask" in name:
                feeds[name] = mask_tensor
            elif "input_ids" in name:
                feeds[name] = ids_tensor
        result = session.run(feeds)
        names = result.names()
        if not names:
            raise InferenceError("encoder produced no outputs")
        hidden = np.array(result[names[0]].numpy(), dtype=np.float32)
    except InferenceError:
        raise
    except Exception as exc:
        raise InferenceError(f"encoder failed: {exc}") from exc
    finally:
        for tensor in tensors:
            tensor.close()
        if result is not None:
            result.close()

    if hidden.ndim != 3 or hidden.shape[0] != 1 or hidden.shape[1] == 0:
        raise InferenceError(
            f"encoder hidden states have unexpected shape {hidden.shape}"
        )
    return EncoderOutput(hidden_states=hidden, attention_mask=mask)
