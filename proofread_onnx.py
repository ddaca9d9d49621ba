# /// script
# requires-python = ">=3.12"
# dependencies = [
#     "proofread-onnx",
# ]
#
# [tool.uv.sources]
# proofread-onnx = { path = "." }
# ///
"""Offline grammar correction and translation with local ONNX models."""

from proofread.cli import main

if __name__ == "__main__":
    raise SystemExit(main())
