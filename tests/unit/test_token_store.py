from __future__ import annotations

import json
import os
import stat
import subprocess
import sys

import pytest

from state.token_store import (
    CredentialStore,
    CredentialStoreError,
    KEYCHAIN_SERVICE,
    MacKeychainBackend,
    detect_native_backend,
    token_account,
)


def test_fallback_roundtrip_without_native_backend(credentials: CredentialStore):
    assert not credentials.has_native_backend
    credentials.save("u3", "tokZ")
    assert credentials.load("u3") == "tokZ"
    assert json.loads(credentials.fallback_path.read_text()) == {"u3": "tokZ"}


@pytest.mark.skipif(sys.platform == "win32", reason="POSIX permissions")
def test_fallback_file_is_owner_only(credentials: CredentialStore):
    credentials.save("u1", "secret")
    mode = stat.S_IMODE(os.stat(credentials.fallback_path).st_mode)
    assert mode == 0o600


def test_empty_ids_and_tokens_are_noops(credentials: CredentialStore):
    credentials.save("", "tok")
    credentials.save("u1", "")
    credentials.clear("")
    assert credentials.load("") is None
    assert not credentials.fallback_path.exists()


def test_missing_and_malformed_fallback_resolve_to_not_found(credentials: CredentialStore):
    assert credentials.load("nobody") is None

    credentials.fallback_path.parent.mkdir(parents=True, exist_ok=True)
    credentials.fallback_path.write_text("{not json")
    assert credentials.load("u1") is None

    credentials.fallback_path.write_text(json.dumps(["u1", "tok"]))
    assert credentials.load("u1") is None

    credentials.fallback_path.write_text(json.dumps({"u1": 42, "u2": "", "u3": "ok"}))
    assert credentials.load("u1") is None
    assert credentials.load("u2") is None
    assert credentials.load("u3") == "ok"


def test_native_success_skips_fallback_file(tmp_path, fake_backend):
    store = CredentialStore(tmp_path / "tokens.json", native=fake_backend)
    store.save("u1", "tok1")
    assert fake_backend.entries == {token_account("u1"): "tok1"}
    assert not (tmp_path / "tokens.json").exists()
    assert store.load("u1") == "tok1"


def test_native_write_failure_falls_back_to_file(tmp_path, fake_backend):
    fake_backend.fail_set = True
    store = CredentialStore(tmp_path / "tokens.json", native=fake_backend)
    store.save("u1", "tok1")
    assert fake_backend.entries == {}
    assert json.loads((tmp_path / "tokens.json").read_text()) == {"u1": "tok1"}
    # native lookup misses, fallback answers
    assert store.load("u1") == "tok1"


def test_native_read_failure_falls_through_to_file(tmp_path, fake_backend):
    (tmp_path / "tokens.json").write_text(json.dumps({"u1": "from-file"}))
    fake_backend.fail_get = True
    store = CredentialStore(tmp_path / "tokens.json", native=fake_backend)
    assert store.load("u1") == "from-file"


def test_clear_removes_native_and_stale_fallback_copy(tmp_path, fake_backend):
    (tmp_path / "tokens.json").write_text(json.dumps({"u1": "old", "u2": "keep"}))
    store = CredentialStore(tmp_path / "tokens.json", native=fake_backend)
    store.save("u1", "new")

    store.clear("u1")
    assert store.load("u1") is None
    assert ("delete", token_account("u1")) in fake_backend.calls
    assert json.loads((tmp_path / "tokens.json").read_text()) == {"u2": "keep"}


def test_clear_unknown_user_leaves_file_untouched(credentials: CredentialStore):
    credentials.save("u1", "tok")
    before = credentials.fallback_path.read_text()
    credentials.clear("u2")
    assert credentials.fallback_path.read_text() == before


def test_unwritable_fallback_raises(tmp_path):
    blocker = tmp_path / "not-a-dir"
    blocker.write_text("")
    store = CredentialStore(blocker / "tokens.json")
    with pytest.raises(CredentialStoreError):
        store.save("u1", "tok")


# -------- macOS keychain helper --------
class _Runner:
    def __init__(self, *, returncode: int = 0, stdout: str = "", exc: Exception | None = None) -> None:
        self.returncode = returncode
        self.stdout = stdout
        self.exc = exc
        self.calls = []

    def __call__(self, argv, **kwargs):
        self.calls.append((argv, kwargs))
        if self.exc is not None:
            raise self.exc
        return subprocess.CompletedProcess(argv, self.returncode, stdout=self.stdout, stderr="")


def test_keychain_get_uses_service_account_and_timeout():
    runner = _Runner(stdout="tok-from-keychain\n")
    backend = MacKeychainBackend(timeout=2.5, runner=runner)
    assert backend.get("auth:u1") == "tok-from-keychain"

    argv, kwargs = runner.calls[0]
    assert argv == ["security", "find-generic-password", "-a", "auth:u1", "-s", KEYCHAIN_SERVICE, "-w"]
    assert kwargs["timeout"] == 2.5


def test_keychain_set_updates_in_place():
    runner = _Runner()
    backend = MacKeychainBackend(runner=runner)
    assert backend.set("auth:u1", "tok") is True
    argv, _ = runner.calls[0]
    assert argv[:3] == ["security", "add-generic-password", "-U"]
    assert argv[-2:] == ["-w", "tok"]


@pytest.mark.parametrize(
    "runner",
    [
        _Runner(returncode=44),
        _Runner(exc=subprocess.TimeoutExpired(cmd="security", timeout=1)),
        _Runner(exc=FileNotFoundError("security")),
        _Runner(stdout="   \n"),
    ],
)
def test_keychain_failures_are_not_found(runner):
    backend = MacKeychainBackend(runner=runner)
    assert backend.get("auth:u1") is None


def test_keychain_failed_set_and_delete_do_not_raise():
    backend = MacKeychainBackend(runner=_Runner(returncode=1))
    assert backend.set("auth:u1", "tok") is False
    backend.delete("auth:u1")


def test_detect_native_backend_only_on_darwin(monkeypatch):
    import state.token_store as token_store

    monkeypatch.setattr(token_store.shutil, "which", lambda name: "/usr/bin/security")
    monkeypatch.setattr(token_store.sys, "platform", "linux")
    assert detect_native_backend() is None

    monkeypatch.setattr(token_store.sys, "platform", "darwin")
    assert isinstance(detect_native_backend(timeout=1.0), MacKeychainBackend)
