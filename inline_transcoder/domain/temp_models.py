"""
Defines the per-request temporary workspace.
"""

import shutil
import sys
import tempfile
from pathlib import Path
from typing import Optional

from loguru import logger

from ..config.common import TEMP_DIR_PREFIX


class TempWorkspace:
    """
    Scoped ownership of a uniquely named temporary directory for one request.

    The directory holds the downloaded input and every encoder output written while
    converting it. It is created when the context is entered and removed, together
    with everything inside it, when the context exits, whether the conversion
    returned normally, raised, or was interrupted.

    Lifecycle:
    1. `with TempWorkspace(root) as workspace:` creates the directory.
    2. `write_input()` and `path_for()` place files inside it.
    3. On exit, `cleanup()` removes the tree. Removal problems are logged and
       never propagate, so they cannot replace the conversion's own outcome.

    A workspace can be entered only once; a second `__enter__` raises RuntimeError.

    Attributes:
        root (Optional[Path]): Parent directory, or None for the system temp dir.
        path (Optional[Path]): The workspace directory while it exists.
    """

    def __init__(self, root: Optional[Path] = None, prefix: str = TEMP_DIR_PREFIX):
        self.root = root
        self.prefix = prefix
        self.path: Optional[Path] = None
        self._created = False

    def __enter__(self) -> "TempWorkspace":
        if self._created:
            raise RuntimeError("TempWorkspace can only be entered once.")
        if self.root is not None:
            self.root.mkdir(parents=True, exist_ok=True)
        self.path = Path(tempfile.mkdtemp(prefix=self.prefix, dir=self.root))
        self._created = True
        logger.debug(f"Created workspace {self.path}")
        return self

    def __exit__(self, exc_type, exc_value, traceback) -> bool:
        self.cleanup()
        return False

    def _require_path(self) -> Path:
        if self.path is None:
            raise RuntimeError("TempWorkspace is not active.")
        return self.path

    def path_for(self, name: str, extension: str) -> Path:
        """Returns the path of a file named `name.extension` inside the workspace."""
        return self._require_path() / f"{name}.{extension.lstrip('.')}"

    def write_input(self, data: bytes, extension: str) -> Path:
        input_path = self.path_for("input", extension)
        input_path.write_bytes(data)
        logger.debug(f"Written input to temp file: {input_path}")
        return input_path

    def cleanup(self):
        """Removes the workspace directory and all files in it. Never raises."""
        if self.path is None:
            return
        target = self.path
        self.path = None

        def _log_failure(function, failed_path, error):
            if isinstance(error, tuple):
                error = error[1]
            logger.warning(f"Failed to remove {failed_path} during cleanup: {error}")

        try:
            if sys.version_info >= (3, 12):
                shutil.rmtree(target, onexc=_log_failure)
            else:
                shutil.rmtree(target, onerror=_log_failure)
        except Exception as e:
            logger.error(f"Failed to clean up workspace {target}: {e}")
            return
        logger.debug(f"Cleaned up workspace {target}")
