from __future__ import annotations

import shutil
import subprocess
import sys
from pathlib import Path
from typing import Callable, Dict, Optional, Protocol

import structlog

from .files import read_json, write_json_atomic


logger = structlog.get_logger(__name__)

KEYCHAIN_SERVICE = "chagee-cli"
DEFAULT_HELPER_TIMEOUT = 5.0


class CredentialStoreError(RuntimeError):
    """The fallback credential file could not be written."""


def token_account(user_id: str) -> str:
    return f"auth:{user_id}"


class SecretBackend(Protocol):
    """Native secret storage addressed by account name.

    Implementations never raise: a failed lookup is None, a failed write is False.
    """

    def get(self, account: str) -> Optional[str]: ...

    def set(self, account: str, secret: str) -> bool: ...

    def delete(self, account: str) -> None: ...


class MacKeychainBackend:
    """
    macOS login keychain via the `security` command line helper.

    Notes
    - Every helper call is bounded by `timeout`; expiry counts as failure.
    - Non-zero exit status (missing entry, locked keychain, denied access)
      counts as failure too. Nothing here raises.
    """

    def __init__(
        self,
        service: str = KEYCHAIN_SERVICE,
        *,
        timeout: float = DEFAULT_HELPER_TIMEOUT,
        executable: str = "security",
        runner: Callable[..., subprocess.CompletedProcess] = subprocess.run,
    ) -> None:
        self._service = service
        self._timeout = timeout
        self._executable = executable
        self._run = runner

    def _call(self, *args: str) -> Optional[subprocess.CompletedProcess]:
        try:
            proc = self._run(
                [self._executable, *args],
                capture_output=True,
                text=True,
                timeout=self._timeout,
                check=False,
            )
        except subprocess.TimeoutExpired:
            logger.warning("keychain_helper_timeout", command=args[0], timeout=self._timeout)
            return None
        except OSError as exc:
            logger.debug("keychain_helper_unavailable", command=args[0], error=str(exc))
            return None
        if proc.returncode != 0:
            logger.debug("keychain_helper_failed", command=args[0], returncode=proc.returncode)
            return None
        return proc

    def get(self, account: str) -> Optional[str]:
        proc = self._call("find-generic-password", "-a", account, "-s", self._service, "-w")
        if proc is None:
            return None
        secret = (proc.stdout or "").strip()
        return secret or None

    def set(self, account: str, secret: str) -> bool:
        proc = self._call("add-generic-password", "-U", "-a", account, "-s", self._service, "-w", secret)
        return proc is not None

    def delete(self, account: str) -> None:
        self._call("delete-generic-password", "-a", account, "-s", self._service)


def detect_native_backend(*, timeout: float = DEFAULT_HELPER_TIMEOUT) -> Optional[SecretBackend]:
    """Return the platform secret backend, or None where only the file fallback applies."""
    if sys.platform == "darwin" and shutil.which("security"):
        return MacKeychainBackend(timeout=timeout)
    return None


class CredentialStore:
    """
    One auth token per user id: native secret storage first, JSON file fallback.

    Usage
    - `save(user_id, token)`: native write; on failure (or without a native
      backend) the token goes into the fallback file instead.
    - `load(user_id)`: native lookup, then the fallback file. Any failure is
      "not found".
    - `clear(user_id)`: best-effort native delete, and always removes the
      fallback entry so no stale copy survives.

    Empty `user_id` or `token` makes every operation a no-op.
    """

    def __init__(self, fallback_path: Path, *, native: Optional[SecretBackend] = None) -> None:
        self._fallback_path = Path(fallback_path)
        self._native = native

    @property
    def fallback_path(self) -> Path:
        return self._fallback_path

    @property
    def has_native_backend(self) -> bool:
        return self._native is not None

    # -------- Public API --------
    def load(self, user_id: str) -> Optional[str]:
        if not user_id:
            return None
        if self._native is not None:
            token = self._native.get(token_account(user_id))
            if token:
                return token
        return self._load_fallback().get(user_id)

    def save(self, user_id: str, token: str) -> None:
        if not user_id or not token:
            return
        if self._native is not None and self._native.set(token_account(user_id), token):
            return
        tokens = self._load_fallback()
        tokens[user_id] = token
        self._save_fallback(tokens)

    def clear(self, user_id: str) -> None:
        if not user_id:
            return
        if self._native is not None:
            self._native.delete(token_account(user_id))
        tokens = self._load_fallback()
        if user_id not in tokens:
            return
        del tokens[user_id]
        self._save_fallback(tokens)

    # -------- Fallback file --------
    def _load_fallback(self) -> Dict[str, str]:
        try:
            raw = read_json(self._fallback_path)
        except (OSError, ValueError):
            return {}
        if not isinstance(raw, dict):
            return {}
        return {str(k): v for k, v in raw.items() if isinstance(v, str) and v}

    def _save_fallback(self, tokens: Dict[str, str]) -> None:
        try:
            write_json_atomic(self._fallback_path, tokens)
        except OSError as exc:
            raise CredentialStoreError(f"Failed to write credential file {self._fallback_path}") from exc


__all__ = [
    "CredentialStore",
    "CredentialStoreError",
    "KEYCHAIN_SERVICE",
    "MacKeychainBackend",
    "SecretBackend",
    "detect_native_backend",
    "token_account",
]
