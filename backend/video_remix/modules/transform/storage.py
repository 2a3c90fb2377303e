"""Scratch storage for per-request input and output files."""

import logging
import os
import re
import uuid
from contextlib import contextmanager
from dataclasses import dataclass
from typing import BinaryIO, Callable, Iterator, Optional

from video_remix.core.config import Settings
from video_remix.core.metrics import TEMP_CLEANUP_FAILURES_TOTAL
from video_remix.modules.transform.exceptions import ResourceError, ValidationError
from video_remix.modules.transform.models import DEFAULT_INPUT_EXTENSION, OUTPUT_EXTENSION

logger = logging.getLogger(__name__)

_EXTENSION_RE = re.compile(r"^\.[a-z0-9]{1,10}$")


def _new_id() -> str:
    return uuid.uuid4().hex


@dataclass(frozen=True)
class TempAsset:
    """Input/output scratch paths owned by a single request."""
    input_path: str
    output_path: str
    extension: str


def input_extension(filename: Optional[str]) -> str:
    """Extension to keep on the persisted upload so ffmpeg can sniff the container.

    Falls back to ``.mp4`` when the name has no extension or one that is not a
    short alphanumeric suffix.
    """
    if not filename:
        return DEFAULT_INPUT_EXTENSION
    ext = os.path.splitext(os.path.basename(filename))[1].lower()
    if not _EXTENSION_RE.match(ext):
        return DEFAULT_INPUT_EXTENSION
    return ext


class TempStorage:
    """Allocates and removes scratch files under one directory.

    Names are ``input_<id><ext>`` and ``output_<id>.mp4``, where the id comes
    from ``id_factory`` (a fresh UUID4 per call by default), so concurrent
    requests never share a path.
    """

    def __init__(
        self,
        base_dir: str,
        id_factory: Optional[Callable[[], str]] = None,
        chunk_size: int = 1024 * 1024,
    ):
        self.base_dir = base_dir
        self.id_factory = id_factory or _new_id
        self.chunk_size = chunk_size

    @classmethod
    def from_settings(cls, settings: Settings) -> "TempStorage":
        return cls(base_dir=settings.TEMP_DIR)

    def acquire(self, original_filename: Optional[str] = None) -> TempAsset:
        """Create the scratch directory if needed and allocate two fresh paths.

        Raises:
            ResourceError: If the scratch directory cannot be created
        """
        try:
            os.makedirs(self.base_dir, exist_ok=True)
        except OSError as e:
            raise ResourceError(
                f"Cannot create scratch directory {self.base_dir}: {e}",
                {"base_dir": self.base_dir},
            ) from e

        extension = input_extension(original_filename)
        asset = TempAsset(
            input_path=os.path.join(self.base_dir, f"input_{self.id_factory()}{extension}"),
            output_path=os.path.join(self.base_dir, f"output_{self.id_factory()}{OUTPUT_EXTENSION}"),
            extension=extension,
        )
        logger.debug(
            "Scratch paths allocated",
            extra={"input_path": asset.input_path, "output_path": asset.output_path},
        )
        return asset

    def release(self, asset: TempAsset) -> None:
        """Delete both scratch files. Never raises; failures are logged."""
        for path in (asset.input_path, asset.output_path):
            try:
                os.remove(path)
            except FileNotFoundError:
                continue
            except OSError as e:
                TEMP_CLEANUP_FAILURES_TOTAL.inc()
                logger.warning(
                    "Failed to remove scratch file",
                    extra={"path": path, "error": str(e)},
                )

    @contextmanager
    def scoped(self, original_filename: Optional[str] = None) -> Iterator[TempAsset]:
        """Acquire a TempAsset and release it exactly once on exit."""
        asset = self.acquire(original_filename)
        try:
            yield asset
        finally:
            self.release(asset)

    def write_input(
        self,
        asset: TempAsset,
        source: BinaryIO,
        max_bytes: Optional[int] = None,
    ) -> int:
        """Copy the uploaded stream into ``asset.input_path``.

        Args:
            asset: Destination paths
            source: Readable binary upload stream
            max_bytes: Upper bound on the upload size

        Returns:
            Number of bytes written

        Raises:
            ValidationError: If the upload is empty or larger than ``max_bytes``
            ResourceError: If the scratch file cannot be written
        """
        total = 0
        try:
            with open(asset.input_path, "wb") as f:
                while True:
                    chunk = source.read(self.chunk_size)
                    if not chunk:
                        break
                    total += len(chunk)
                    if max_bytes is not None and total > max_bytes:
                        raise ValidationError(
                            f"Upload exceeds maximum allowed size of {max_bytes} bytes",
                            {"max_bytes": max_bytes},
                        )
                    f.write(chunk)
        except OSError as e:
            raise ResourceError(
                f"Failed to persist upload to {asset.input_path}: {e}",
                {"path": asset.input_path},
            ) from e

        if total == 0:
            raise ValidationError("Uploaded video is empty")

        logger.info(
            "Upload persisted",
            extra={"input_path": asset.input_path, "size_bytes": total},
        )
        return total
