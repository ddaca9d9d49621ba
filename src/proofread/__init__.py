__version__ = "0.1.0"


def __getattr__(name: str):
    """Lazy re-exports of the public API."""
    _service_names = {
        "InferenceTask",
        "ProofreadResult",
        "ProofreadService",
    }
    if name in _service_names:
        from proofread import service

        return getattr(service, name)
    if name == "ModelResources":
        from proofread.model.loader import ModelResources

        return ModelResources
    raise AttributeError(f"module 'proofread' has no attribute {name!r}")
