import logging
import os
import tempfile
from pathlib import Path
from typing import Union

from .values import SETTABLE_KEYS, TrackedKey, ValueStore

logger = logging.getLogger(__name__)


class ValueFileWriter:
    """Mirrors each tracked value into `<data_dir>/<key>.txt` for overlays."""

    def __init__(self, data_dir: Union[str, Path]):
        self.data_dir = Path(data_dir)

    def path_for(self, key: TrackedKey) -> Path:
        return self.data_dir / f"{key.value}.txt"

    def prepare(self, store: ValueStore) -> None:
        self.data_dir.mkdir(parents=True, exist_ok=True)
        for key, val in store.items():
            self(key, val)

    def __call__(self, key: TrackedKey, value: int) -> None:
        if key not in SETTABLE_KEYS:
            return
        path = self.path_for(key)
        try:
            fd, tmp = tempfile.mkstemp(dir=self.data_dir, prefix=f".{key.value}-")
            try:
                with os.fdopen(fd, "w", encoding="utf-8") as f:
                    f.write(str(value))
                os.replace(tmp, path)
            except BaseException:
                os.unlink(tmp)
                raise
        except OSError as e:
            logger.warning("Failed to write %s: %s", path, e)
