"""Model subpackage: runtime bindings, resource manager, encode and decode."""

from proofread.model.decoder import (
    Convention,
    DecodeLoop,
    DecoderSignature,
    Generation,
    classify_decoder,
)
from proofread.model.encoder import EncoderOutput, run_encoder
from proofread.model.loader import LoadedModels, ModelResources

__all__ = [
    "Convention",
    "DecodeLoop",
    "DecoderSignature",
    "EncoderOutput",
    "Generation",
    "LoadedModels",
    "ModelResources",
    "classify_decoder",
    "run_encoder",
]
