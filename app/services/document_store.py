from __future__ import annotations

from pathlib import Path, PurePosixPath


class LocalDocumentStore:
    """Envelope blobs on the local filesystem, addressed by relative key."""

    def __init__(self, base_path: str | Path) -> None:
        self.base_path = Path(base_path)
        self.base_path.mkdir(parents=True, exist_ok=True)

    def _resolve_safe_path(self, object_key: str) -> Path:
        if not object_key or "\\" in object_key:
            raise ValueError("Invalid object key")
        key_path = PurePosixPath(object_key)
        if key_path.is_absolute() or ".." in key_path.parts:
            raise ValueError("Invalid object key")
        base = self.base_path.resolve()
        resolved = (base / Path(object_key)).resolve()
        if resolved != base and base not in resolved.parents:
            raise ValueError("Invalid object key")
        return resolved

    def write(self, object_key: str, content: bytes) -> None:
        path = self._resolve_safe_path(object_key)
        path.parent.mkdir(parents=True, exist_ok=True)
        tmp_path = path.with_suffix(path.suffix + ".part")
        tmp_path.write_bytes(content)
        tmp_path.replace(path)

    def read(self, object_key: str) -> bytes:
        return self._resolve_safe_path(object_key).read_bytes()

    def delete(self, object_key: str) -> None:
        self._resolve_safe_path(object_key).unlink(missing_ok=True)

    def exists(self, object_key: str) -> bool:
        try:
            path = self._resolve_safe_path(object_key)
        except ValueError:
            return False
        return path.exists()
