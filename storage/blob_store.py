# mtls_broker/storage/blob_store.py

import os
import shutil

from broker.errors import NotFoundError, StorageError


class FileBlobStore:
    """
    Small async facade over the local filesystem used to keep key,
    certificate and trusted-authority material.

    Usage:
        store = FileBlobStore()
        await store.save('config/certs/key', key_bytes)
        data = await store.read('config/certs/key')

    Every failure is reported as StorageError (NotFoundError when the
    file simply is not there).
    """
    def __init__(self, mode: int = 0o600):
        # permissions given to every file written by save()
        self.mode = mode

    async def save(self, path: str, data) -> str:
        """
        Write data to path, creating parent directories. Returns the path.
        """
        if isinstance(data, str):
            data = data.encode('utf-8')
        try:
            parent = os.path.dirname(path)
            if parent:
                os.makedirs(parent, exist_ok=True)
            fd = os.open(path, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, self.mode)
            with os.fdopen(fd, 'wb') as f:
                f.write(data)
        except OSError as exc:
            raise StorageError(f"cannot write {path!r}: {exc}") from exc
        return path

    async def read(self, path: str) -> bytes:
        try:
            with open(path, 'rb') as f:
                return f.read()
        except FileNotFoundError as exc:
            raise NotFoundError(f"{path!r} does not exist") from exc
        except OSError as exc:
            raise StorageError(f"cannot read {path!r}: {exc}") from exc

    async def exists(self, path: str) -> bool:
        return os.path.isfile(path)

    async def delete(self, path: str) -> None:
        try:
            os.remove(path)
        except OSError as exc:
            raise StorageError(f"cannot delete {path!r}: {exc}") from exc

    async def copy(self, src: str, dst: str) -> None:
        try:
            shutil.copyfile(src, dst)
            os.chmod(dst, self.mode)
        except OSError as exc:
            raise StorageError(f"cannot copy {src!r} to {dst!r}: {exc}") from exc
