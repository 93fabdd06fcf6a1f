"""
CV attachment storage.

Files live under a root directory, addressed by a storage key such as
cvs/<candidate or temp id>/<timestamp>_<file name>.
"""

import shutil
from pathlib import Path

from intake.errors import BlobStoreError


def cv_path(owner_id: str, file_name: str) -> str:
    """Storage key for a CV belonging to a candidate (or a temp upload id)."""
    return f"cvs/{owner_id}/{Path(file_name).name}"


class LocalBlobStore:
    """Filesystem-backed blob store."""

    def __init__(self, root: Path):
        self.root = Path(root)

    def _resolve(self, key: str) -> Path:
        target = (self.root / key).resolve()
        if self.root.resolve() not in target.parents:
            raise BlobStoreError(f"Storage key escapes blob root: {key}")
        return target

    def upload(self, source: Path, key: str) -> str:
        """Copy a local file into the store. Returns the storage key."""
        target = self._resolve(key)
        try:
            target.parent.mkdir(parents=True, exist_ok=True)
            shutil.copyfile(source, target)
        except OSError as e:
            raise BlobStoreError(f"Upload failed for {source}: {e}") from e
        return key

    def get_url(self, key: str) -> str:
        target = self._resolve(key)
        if not target.exists():
            raise BlobStoreError(f"Blob not found: {key}")
        return target.as_uri()

    def delete(self, key: str) -> None:
        target = self._resolve(key)
        try:
            target.unlink(missing_ok=True)
        except OSError as e:
            raise BlobStoreError(f"Delete failed for {key}: {e}") from e
