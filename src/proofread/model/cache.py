"""Private on-disk copies of caller-supplied model artifacts.

Loading from a private copy keeps sessions valid even if the original
file is moved or its access is revoked after selection.
"""

import hashlib
import os
import shutil
import tempfile
from pathlib import Path
from urllib.parse import unquote, urlparse

from proofread.constants import DEFAULT_CACHE_DIR, DEFAULT_CACHE_DIR_ENV
from proofread.env import LOGGER
from proofread.errors import LoadError


def default_cache_dir() -> Path:
    return Path(
        os.environ.get(DEFAULT_CACHE_DIR_ENV, "") or DEFAULT_CACHE_DIR
    ).expanduser()


def resolve_source(source: str) -> Path:
    """Turn a plain path or ``file://`` URI into a filesystem path."""
    parsed = urlparse(source)
    if parsed.scheme == "file":
        return Path(unquote(parsed.path))
    if parsed.scheme and len(parsed.scheme) > 1:
        raise LoadError(f"unsupported artifact reference: {source}")
    return Path(source).expanduser()


def cached_name(source: str, kind: str) -> str:
    """Cache file name unique to *source*, keeping its suffix."""
    digest = hashlib.sha1(source.encode("utf-8")).hexdigest()[:12]
    return f"{kind}-{digest}{resolve_source(source).suffix}"


def copy_to_cache(source: str, kind: str, cache_dir: Path) -> Path:
    """Copy *source* into *cache_dir*, reusing a non-empty earlier copy.

    Raises LoadError if the source cannot be read or the copy is empty.
    """
    target = cache_dir / cached_name(source, kind)
    if target.exists() and target.stat().st_size > 0:
        return target

    src = resolve_source(source)
    try:
        cache_dir.mkdir(parents=True, exist_ok=True)
        fd, tmp = tempfile.mkstemp(dir=cache_dir, suffix=".part")
        os.close(fd)
        try:
            shutil.copyfile(src, tmp)
            os.replace(tmp, target)
        finally:
            Path(tmp).unlink(missing_ok=True)
    except OSError as exc:
        raise LoadError(f"failed to copy {kind} from {source}: {exc}") from exc

    if target.stat().st_size == 0:
        target.unlink(missing_ok=True)
        raise LoadError(f"{kind} artifact {source} is empty")
    LOGGER.debug("Cached %s at %s", kind, target)
    return target
