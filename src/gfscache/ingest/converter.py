from __future__ import annotations

import logging
import subprocess
from pathlib import Path
from typing import Sequence
from uuid import uuid4

from ..errors import ConversionError, FilesystemError

LOGGER = logging.getLogger(__name__)


class GribConverter:
    """Thin wrapper around the external ``grib2json`` executable."""

    def __init__(self, command: Sequence[str], timeout: float = 300.0) -> None:
        if not command:
            raise ValueError("converter command must not be empty")
        self.command = list(command)
        self.timeout = timeout

    def build_argv(self, raw_path: Path, output_path: Path) -> list[str]:
        return [*self.command, "--data", "--output", str(output_path), "--names", "--compact", str(raw_path)]

    def convert(self, raw_path: Path, output_path: Path) -> Path:
        """Convert ``raw_path`` into ``output_path``.

        The converter writes to a uniquely named sibling ``.part`` file which is
        renamed into place only after a zero exit status.
        """
        tmp_path = output_path.with_name(f"{output_path.name}.{uuid4().hex[:12]}.part")
        argv = self.build_argv(raw_path, tmp_path)
        LOGGER.debug("Running converter: %s", " ".join(argv))
        try:
            result = subprocess.run(argv, capture_output=True, text=True, timeout=self.timeout)
        except FileNotFoundError as exc:
            raise ConversionError(f"Converter executable not found: {self.command[0]}") from exc
        except subprocess.TimeoutExpired as exc:
            tmp_path.unlink(missing_ok=True)
            raise ConversionError(f"Converter timed out after {self.timeout}s on {raw_path.name}") from exc
        except OSError as exc:
            raise ConversionError(f"Unable to start converter: {exc}") from exc

        if result.returncode != 0:
            tmp_path.unlink(missing_ok=True)
            stderr = (result.stderr or "").strip()
            raise ConversionError(
                f"Converter exited with status {result.returncode} for {raw_path.name}: {stderr[-500:]}"
            )
        if not tmp_path.is_file():
            raise ConversionError(f"Converter produced no output for {raw_path.name}")

        try:
            tmp_path.replace(output_path)
        except OSError as exc:
            raise FilesystemError(f"Unable to move converted output into {output_path}: {exc}") from exc
        return output_path
