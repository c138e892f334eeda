import os
import sys
from typing import Dict, List, Optional, Tuple

import pytest


def pytest_configure():
    # Ensure `src/` is importable as top-level for `state.*` / `common.*` imports
    root = os.path.abspath(os.path.dirname(os.path.dirname(__file__)))
    src_path = os.path.join(root, "src")
    if src_path not in sys.path:
        sys.path.insert(0, src_path)


class FakeSecretBackend:
    """In-memory stand-in for the native keychain; can be told to fail."""

    def __init__(self, *, fail_get: bool = False, fail_set: bool = False) -> None:
        self.entries: Dict[str, str] = {}
        self.fail_get = fail_get
        self.fail_set = fail_set
        self.calls: List[Tuple[str, str]] = []

    def get(self, account: str) -> Optional[str]:
        self.calls.append(("get", account))
        if self.fail_get:
            return None
        return self.entries.get(account)

    def set(self, account: str, secret: str) -> bool:
        self.calls.append(("set", account))
        if self.fail_set:
            return False
        self.entries[account] = secret
        return True

    def delete(self, account: str) -> None:
        self.calls.append(("delete", account))
        self.entries.pop(account, None)


@pytest.fixture
def storage_paths(tmp_path):
    from common.config import StoragePaths

    return StoragePaths(root=tmp_path / "chagee-home")


@pytest.fixture
def credentials(storage_paths):
    from state.token_store import CredentialStore

    return CredentialStore(storage_paths.token_file)


@pytest.fixture
def session_store(storage_paths, credentials):
    from state.session_store import SessionStore

    return SessionStore(storage_paths.session_file, credentials)


@pytest.fixture
def fake_backend():
    return FakeSecretBackend()
