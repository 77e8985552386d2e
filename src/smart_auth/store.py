"""Token persistence for the SMART authorization core.

This module introduces a *narrow* persistence interface (:class:`TokenStore`)
keyed by FHIR server URL, plus two implementations:

* :class:`InMemoryTokenStore` – process-local, for tests and short sessions.
* :class:`DiskTokenStore` – one JSON file per server.

The disk design follows these goals:

* **Atomicity** – writes use *temp-file + os.replace*.
* **Concurrency** – writers and deleters take an advisory lock file.
* **Filename safety** – server URLs are hashed before hitting the filesystem.
* **Confidentiality** – files are created owner read/write only.

The store owns the persisted bytes; the core never reads them directly.
"""

from __future__ import annotations

import json
import logging
import os
import stat
import time
from contextlib import contextmanager
from hashlib import sha256
from pathlib import Path
from typing import Iterator, Protocol, runtime_checkable

from anyio import to_thread

from smart_auth.config import DEFAULT_STORAGE_DIR
from smart_auth.models import Token

_LOG = logging.getLogger("smart-auth.store")


# --------------------------------------------------------------------------- #
# helpers                                                                     #
# --------------------------------------------------------------------------- #


def _hash(text: str, length: int = 16) -> str:
    return sha256(text.encode()).hexdigest()[:length]


def _atomic_write(path: Path, data: dict) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    tmp = path.with_suffix(path.suffix + ".tmp")
    fd = os.open(tmp, os.O_CREAT | os.O_WRONLY | os.O_TRUNC, stat.S_IRUSR | stat.S_IWUSR)
    with os.fdopen(fd, "w", encoding="utf-8") as fh:
        json.dump(data, fh, separators=(",", ":"), sort_keys=True)
    os.replace(tmp, path)  # atomic on POSIX


@contextmanager
def _file_lock(lock_path: Path, retries: int = 25, delay: float = 0.2) -> Iterator[None]:
    """Advisory file lock using ``os.O_EXCL`` temp-file creation."""
    lock_path.parent.mkdir(parents=True, exist_ok=True)
    for attempt in range(retries + 1):
        try:
            fd = os.open(lock_path, os.O_CREAT | os.O_EXCL | os.O_RDWR)
            os.close(fd)
            break
        except FileExistsError:
            if attempt == retries:
                raise TimeoutError(f"Could not acquire lock {lock_path}") from None
            time.sleep(delay)
    try:
        yield
    finally:
        lock_path.unlink(missing_ok=True)


# --------------------------------------------------------------------------- #
# public interface                                                            #
# --------------------------------------------------------------------------- #


@runtime_checkable
class TokenStore(Protocol):
    """Minimal persistence contract, keyed by FHIR server URL."""

    async def save(self, token: Token, server_url: str) -> None: ...

    async def load(self, server_url: str) -> Token | None: ...

    async def delete(self, server_url: str) -> None: ...


class InMemoryTokenStore:
    """Dictionary-backed :class:`TokenStore`; tokens vanish with the process."""

    def __init__(self) -> None:
        self._tokens: dict[str, Token] = {}

    async def save(self, token: Token, server_url: str) -> None:
        self._tokens[server_url] = token

    async def load(self, server_url: str) -> Token | None:
        return self._tokens.get(server_url)

    async def delete(self, server_url: str) -> None:
        self._tokens.pop(server_url, None)


# --------------------------------------------------------------------------- #
# Disk implementation                                                         #
# --------------------------------------------------------------------------- #


class DiskTokenStore:
    """JSON-file implementation of :class:`TokenStore`.

    Blocking file I/O runs in a worker thread so the event loop is never
    stalled by a slow disk or a contended lock.
    """

    def __init__(
        self,
        base_dir: str | os.PathLike | None = None,
        *,
        lock_retries: int = 25,
        lock_delay: float = 0.2,
    ) -> None:
        self.base_dir = Path(base_dir or DEFAULT_STORAGE_DIR).expanduser()
        self.lock_retries = lock_retries
        self.lock_delay = lock_delay
        self.base_dir.mkdir(parents=True, exist_ok=True)

    def _token_path(self, server_url: str) -> Path:
        return self.base_dir / f"{_hash(server_url)}.json"

    def _token_lock(self, server_url: str) -> Path:
        return self._token_path(server_url).with_suffix(".lock")

    def _locked(self, server_url: str):
        return _file_lock(self._token_lock(server_url), self.lock_retries, self.lock_delay)

    # ---------------- sync primitives ------------------------------------ #
    def save_sync(self, token: Token, server_url: str) -> None:
        record = {"server_url": server_url, "token": token.to_dict()}
        with self._locked(server_url):
            _atomic_write(self._token_path(server_url), record)
        _LOG.debug("Saved token for server=%s", server_url)

    def load_sync(self, server_url: str) -> Token | None:
        path = self._token_path(server_url)
        if not path.exists():
            return None
        try:
            with path.open(encoding="utf-8") as fh:
                data = json.load(fh)
            if data.get("server_url") != server_url:
                _LOG.warning("Token file %s belongs to another server; ignoring", path.name)
                return None
            return Token.from_dict(data["token"])
        except (OSError, ValueError, KeyError, TypeError, AttributeError) as exc:
            _LOG.warning("Failed to load token for server=%s: %s", server_url, exc)
            return None

    def delete_sync(self, server_url: str) -> None:
        with self._locked(server_url):
            self._token_path(server_url).unlink(missing_ok=True)
        _LOG.debug("Deleted token for server=%s", server_url)

    # ---------------- TokenStore ----------------------------------------- #
    async def save(self, token: Token, server_url: str) -> None:
        await to_thread.run_sync(self.save_sync, token, server_url)

    async def load(self, server_url: str) -> Token | None:
        return await to_thread.run_sync(self.load_sync, server_url)

    async def delete(self, server_url: str) -> None:
        await to_thread.run_sync(self.delete_sync, server_url)
