"""
Clip library for the stream switcher.

Resolves clip identifiers to files inside the configured clip directory.
"""

import logging
import os
from pathlib import Path
from typing import List, Union

from streamswitch.errors import TargetNotFoundError

logger = logging.getLogger(__name__)

# Extensions listed by available(); resolve() accepts any regular file.
CLIP_EXTENSIONS = (".mp4", ".flv", ".mkv", ".mov", ".ts", ".webm")


class ClipLibrary:
    """
    Read-only view of the clip directory.

    Identifiers are filenames relative to the clip directory. Absolute paths
    are accepted as-is.
    """

    def __init__(self, clip_dir: Union[str, Path]) -> None:
        self.clip_dir = Path(clip_dir)
        if not self.clip_dir.is_dir():
            logger.warning(f"Clip directory does not exist: {self.clip_dir}")

    def resolve(self, target: str) -> Path:
        """
        Resolve a clip identifier to a readable file.

        Args:
            target: Clip identifier

        Returns:
            Path to the clip file

        Raises:
            TargetNotFoundError: If the clip does not exist or is not readable
        """
        if not target:
            raise TargetNotFoundError(target)

        path = Path(target)
        if not path.is_absolute():
            path = self.clip_dir / path

        if not path.is_file() or not os.access(path, os.R_OK):
            raise TargetNotFoundError(target, str(path))
        return path

    def exists(self, target: str) -> bool:
        try:
            self.resolve(target)
        except TargetNotFoundError:
            return False
        return True

    def available(self) -> List[str]:
        """List clip filenames in the clip directory."""
        if not self.clip_dir.is_dir():
            return []
        return sorted(
            entry.name
            for entry in self.clip_dir.iterdir()
            if entry.is_file() and entry.suffix.lower() in CLIP_EXTENSIONS
        )
