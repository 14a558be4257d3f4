from __future__ import annotations

import json
import re
import tempfile
from pathlib import Path
from typing import Protocol
from urllib.parse import urlparse, unquote
from urllib.request import url2pathname
from uuid import uuid4

_UNSAFE_RE = re.compile(r"[^A-Za-z0-9._-]+")


class BlobStore(Protocol):
    def upload(self, blob: bytes, venue_id: str, file_name: str = "") -> str: ...
    def download(self, url: str) -> bytes: ...
    def delete(self, url: str) -> None: ...


def uri_to_path(uri: str) -> Path:
    u = urlparse(uri)
    if u.scheme != "file":
        raise ValueError(f"unsupported uri scheme: {u.scheme}")
    path = url2pathname(unquote(u.path))
    if len(path) >= 3 and (path[0] in ("\\", "/")) and path[2] == ":":
        path = path[1:]
    if u.netloc:
        path = f"\\\\{u.netloc}{path}"
    return Path(path)


def write_json_atomic(path: Path, obj: dict) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    # unique temp name per writer; API and worker processes may write the same file
    with tempfile.NamedTemporaryFile(
        "w", encoding="utf-8", dir=path.parent, prefix=f".{path.name}.", suffix=".tmp", delete=False
    ) as f:
        json.dump(obj, f, indent=2)
        tmp = Path(f.name)
    try:
        tmp.replace(path)  # atomic on same filesystem
    except OSError:
        tmp.unlink(missing_ok=True)
        raise


class LocalBlobStore:
    """Uploaded roster files under <root>/<venue_id>/, addressed by file:// urls."""

    def __init__(self, root_dir: str) -> None:
        self.root = Path(root_dir)
        self.root.mkdir(parents=True, exist_ok=True)

    def upload(self, blob: bytes, venue_id: str, file_name: str = "") -> str:
        safe_name = _UNSAFE_RE.sub("_", Path(file_name or "roster").name) or "roster"
        p = self.root / _UNSAFE_RE.sub("_", venue_id) / f"{uuid4().hex}-{safe_name}"
        p.parent.mkdir(parents=True, exist_ok=True)
        p.write_bytes(blob)
        return p.resolve().as_uri()

    def download(self, url: str) -> bytes:
        return uri_to_path(url).read_bytes()

    def delete(self, url: str) -> None:
        uri_to_path(url).unlink(missing_ok=True)
