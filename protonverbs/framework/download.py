from __future__ import annotations

import hashlib
import logging
import os
import shutil
import time
from collections.abc import Callable
from pathlib import Path

import requests

from verbkit.errors import StorageIOError

_CHUNK_SIZE = 1 << 16


class _RetryableFailure(Exception):
    pass


def sha256_of(path: Path) -> str:
    digest = hashlib.sha256()
    with open(path, "rb") as handle:
        for chunk in iter(lambda: handle.read(_CHUNK_SIZE), b""):
            digest.update(chunk)
    return digest.hexdigest()


class HttpFetcher:
    """
    Download files with bounded retries.

    Bytes stream into `<dest>.part` and are renamed to `dest` only after the
    size and checksum checks pass. Connection errors, timeouts, 5xx responses
    and empty bodies are retried with exponential backoff; 4xx responses and
    checksum mismatches fail immediately.
    """

    def __init__(
        self,
        *,
        max_attempts: int = 3,
        backoff_seconds: float = 1.0,
        timeout_seconds: float = 60.0,
        cache_dir: str | None = None,
        session: requests.Session | None = None,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        if max_attempts < 1:
            raise ValueError("max_attempts must be >= 1")
        self._max_attempts = max_attempts
        self._backoff_seconds = backoff_seconds
        self._timeout_seconds = timeout_seconds
        self._cache_dir = Path(cache_dir) if cache_dir else None
        self._session = session or requests.Session()
        self._sleep = sleep

    def _cache_path(self, url: str, filename: str, sha256: str | None) -> Path | None:
        if self._cache_dir is None:
            return None
        key = sha256 or hashlib.sha256(url.encode("utf-8")).hexdigest()
        return self._cache_dir / key[:16] / filename

    def _from_cache(self, cached: Path | None, dest: Path, sha256: str | None, logger: logging.Logger) -> bool:
        if cached is None:
            return False
        try:
            if not cached.is_file() or cached.stat().st_size == 0:
                return False
            if sha256 and sha256_of(cached) != sha256:
                logger.warning("Ignoring cached %s: checksum mismatch", cached)
                return False
            shutil.copy2(cached, dest)
        except OSError as exc:
            logger.warning("Ignoring unreadable cached %s: %s", cached, exc)
            return False
        logger.info("Using cached download %s", cached)
        return True

    def _store_in_cache(self, cached: Path | None, dest: Path, logger: logging.Logger) -> None:
        if cached is None:
            return
        try:
            cached.parent.mkdir(parents=True, exist_ok=True)
            shutil.copy2(dest, cached)
        except OSError as exc:
            logger.warning("Could not populate download cache %s: %s", cached, exc)

    def _attempt(self, url: str, part_path: Path) -> int:
        try:
            with self._session.get(url, stream=True, timeout=self._timeout_seconds) as response:
                status = response.status_code
                if 400 <= status < 500:
                    raise StorageIOError(f"Download failed: HTTP {status} for {url}", path=url)
                if status >= 500:
                    raise _RetryableFailure(f"HTTP {status}")
                written = 0
                with open(part_path, "wb") as handle:
                    for chunk in response.iter_content(chunk_size=_CHUNK_SIZE):
                        if chunk:
                            handle.write(chunk)
                            written += len(chunk)
        except (requests.ConnectionError, requests.Timeout, requests.exceptions.ChunkedEncodingError) as exc:
            raise _RetryableFailure(str(exc)) from exc
        except requests.RequestException as exc:
            raise StorageIOError(f"Download failed for {url}: {exc}", path=url) from exc
        except OSError as exc:
            raise StorageIOError(f"Cannot write {part_path}: {exc}", path=str(part_path)) from exc
        if written == 0:
            raise _RetryableFailure("empty response body")
        return written

    def _finalize(self, url: str, part_path: Path, dest: Path, sha256: str | None) -> None:
        try:
            if sha256:
                actual = sha256_of(part_path)
                if actual != sha256:
                    os.remove(part_path)
                    raise StorageIOError(
                        f"Checksum mismatch for {url}: expected {sha256}, got {actual}", path=str(dest)
                    )
            os.replace(part_path, dest)
        except OSError as exc:
            raise StorageIOError(f"Cannot finish download {part_path} -> {dest}: {exc}", path=str(dest)) from exc

    def fetch(self, url: str, dest: Path, *, sha256: str | None, logger: logging.Logger) -> Path:
        dest = Path(dest)
        try:
            dest.parent.mkdir(parents=True, exist_ok=True)
        except OSError as exc:
            raise StorageIOError(f"Cannot create download directory {dest.parent}: {exc}", path=str(dest)) from exc
        cached = self._cache_path(url, dest.name, sha256)
        if self._from_cache(cached, dest, sha256, logger):
            return dest

        part_path = dest.with_name(dest.name + ".part")
        last_error = "no attempt made"
        for attempt in range(1, self._max_attempts + 1):
            logger.info("Downloading %s (attempt %d/%d)", url, attempt, self._max_attempts)
            try:
                size = self._attempt(url, part_path)
            except _RetryableFailure as exc:
                last_error = str(exc)
                logger.warning("Download attempt %d for %s failed: %s", attempt, url, last_error)
                if attempt < self._max_attempts:
                    self._sleep(self._backoff_seconds * (2 ** (attempt - 1)))
                continue

            self._finalize(url, part_path, dest, sha256)
            logger.debug("Downloaded %s -> %s (%d bytes)", url, dest, size)
            self._store_in_cache(cached, dest, logger)
            return dest

        try:
            os.remove(part_path)
        except FileNotFoundError:
            pass
        except OSError as exc:
            logger.warning("Could not remove partial download %s: %s", part_path, exc)
        raise StorageIOError(
            f"Download failed after {self._max_attempts} attempt(s): {url} ({last_error})", path=url
        )
