"""Environment setup and logging for proofread.

setup_environment() should run before onnxruntime is imported so that
library warnings do not leak into CLI output.
"""

import logging
import os
import warnings

LOGGER = logging.getLogger("proofread")


def setup_environment() -> None:
    """Configure warning filters before library imports."""
    warnings.filterwarnings("ignore", category=UserWarning)
    warnings.filterwarnings("ignore", category=DeprecationWarning)
    warnings.filterwarnings("ignore", category=FutureWarning)

    os.environ["PYTHONWARNINGS"] = "ignore"
    # Keep OpenMP from spinning extra threads next to onnxruntime's pool.
    os.environ.setdefault("OMP_NUM_THREADS", "1")
