"""Writing exports to disk without exposing partial artifacts."""

import logging
import os
import re
import tempfile
from pathlib import Path
from typing import Iterable, Iterator, Optional, Union

from trustline_api.errors import ExportCancelled, ValidationError
from trustline_api.export.streams import check_cancelled
from trustline_api.settings import get_settings
from trustline_api.utils.metrics import exports

logger = logging.getLogger(__name__)

_SAFE_FILENAME = re.compile(r"^[A-Za-z0-9][A-Za-z0-9._\-]{0,200}$")

Chunk = Union[str, bytes]


def tracked(chunks: Iterable[Chunk], fmt: str) -> Iterator[Chunk]:
    """Pass chunks through, counting the export outcome once it finishes."""
    try:
        yield from chunks
    except ExportCancelled:
        exports.labels(format=fmt, outcome="cancelled").inc()
        raise
    except Exception:
        exports.labels(format=fmt, outcome="failed").inc()
        raise
    exports.labels(format=fmt, outcome="completed").inc()


def write_export(
    chunks: Iterable[Chunk],
    filename: str,
    cancel_event=None,
    export_dir: Optional[str] = None,
    staging_dir: Optional[str] = None,
) -> Path:
    """
    Stream ``chunks`` into ``export_dir/filename``.

    Data is written to a private staging file and only moved into place once
    complete. On cancellation or any error the staging file is removed and
    nothing appears in ``export_dir``.
    """
    if not _SAFE_FILENAME.match(filename):
        raise ValidationError(f"Unsafe export filename: {filename!r}")

    settings = get_settings()
    export_dir = Path(export_dir or settings.export_dir)
    staging_dir = Path(staging_dir or settings.export_staging_dir)
    export_dir.mkdir(parents=True, exist_ok=True)
    staging_dir.mkdir(parents=True, exist_ok=True, mode=0o700)

    fd, staging_path = tempfile.mkstemp(prefix=".export-", suffix=".part", dir=staging_dir)
    try:
        with os.fdopen(fd, "wb") as handle:
            for chunk in chunks:
                check_cancelled(cancel_event)
                handle.write(chunk.encode("utf-8") if isinstance(chunk, str) else chunk)
            check_cancelled(cancel_event)
            handle.flush()
            os.fsync(handle.fileno())
        target = export_dir / filename
        os.replace(staging_path, target)
    except BaseException:
        _discard(staging_path)
        logger.info("Export aborted, staged file removed", extra={"export_filename": filename})
        raise

    logger.info("Export written", extra={"export_filename": filename, "path": str(target)})
    return target


def _discard(path: str) -> None:
    try:
        os.unlink(path)
    except FileNotFoundError:
        pass
