from __future__ import annotations

import json
import math
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Tuple, Union

import structlog
from pydantic import ValidationError

from common.config import StoragePaths, keychain_timeout
from .files import write_json_atomic
from .models import AppState, AuthInfo, SessionConfig, default_session
from .token_store import CredentialStore, CredentialStoreError, detect_native_backend


logger = structlog.get_logger(__name__)

SESSION_SCHEMA_VERSION = 2


class SessionStoreError(RuntimeError):
    """The session document (or the credential it references) could not be persisted."""


@dataclass(frozen=True)
class FieldIssue:
    field: str
    reason: str

    def message(self) -> str:
        return f"session field `{self.field}` ignored: {self.reason}"


@dataclass
class SessionLoadResult:
    state: Optional[AppState] = None
    warnings: List[str] = field(default_factory=list)


Decoded = Union[Any, FieldIssue]


# -------- Field decoders --------
def _decode_object(name: str, value: Any) -> Decoded:
    if isinstance(value, dict):
        return value
    return FieldIssue(name, f"expected object, got {type(value).__name__}")


def _decode_object_list(name: str, value: Any) -> Decoded:
    if not isinstance(value, list):
        return FieldIssue(name, f"expected array, got {type(value).__name__}")
    if not all(isinstance(item, dict) for item in value):
        return FieldIssue(name, "expected array of objects")
    return value


def _decode_string(name: str, value: Any) -> Decoded:
    if isinstance(value, str):
        return value
    return FieldIssue(name, f"expected string, got {type(value).__name__}")


def _decode_cart_version(name: str, value: Any) -> Decoded:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return FieldIssue(name, f"expected integer, got {type(value).__name__}")
    if isinstance(value, float) and not (math.isfinite(value) and value.is_integer()):
        return FieldIssue(name, "expected integer")
    if value < 0:
        return FieldIssue(name, "must not be negative")
    return int(value)


def _decode_session(name: str, value: Any) -> Decoded:
    if not isinstance(value, dict):
        return FieldIssue(name, f"expected object, got {type(value).__name__}")
    merged = {**default_session().model_dump(by_alias=True), **value}
    try:
        return SessionConfig.model_validate(merged)
    except ValidationError as exc:
        return FieldIssue(name, f"invalid values ({exc.error_count()} errors)")


def _decode_auth(name: str, value: Any) -> Decoded:
    if not isinstance(value, dict):
        return FieldIssue(name, f"expected object, got {type(value).__name__}")
    user_id = value.get("userId")
    if isinstance(user_id, int) and not isinstance(user_id, bool):
        user_id = str(user_id)
    if not isinstance(user_id, str) or not user_id:
        return FieldIssue(name, "missing userId")
    return AuthInfo(user_id=user_id)


# document key -> (AppState attribute, decoder)
_FIELDS: Dict[str, Tuple[str, Callable[[str, Any], Decoded]]] = {
    "session": ("session", _decode_session),
    "auth": ("auth", _decode_auth),
    "selectedStore": ("selected_store", _decode_object),
    "storesCache": ("stores_cache", _decode_object_list),
    "menuCache": ("menu_cache", _decode_object_list),
    "menuCacheByStore": ("menu_cache_by_store", _decode_object),
    "cart": ("cart", _decode_object_list),
    "cartVersion": ("cart_version", _decode_cart_version),
    "quote": ("quote", _decode_object),
    "pendingCreatePayload": ("pending_create_payload", _decode_object),
    "order": ("order", _decode_object),
    "payment": ("payment", _decode_object),
    "pendingLoginPhone": ("pending_login_phone", _decode_string),
}


def decode_fields(candidate: Dict[str, Any]) -> Tuple[Dict[str, Any], List[FieldIssue]]:
    """Run every known field through its decoder.

    Absent and null fields are skipped without an issue; the caller's defaults
    apply to them. Unknown keys are ignored.
    """
    accepted: Dict[str, Any] = {}
    issues: List[FieldIssue] = []
    for key, (attr, decoder) in _FIELDS.items():
        value = candidate.get(key)
        if value is None:
            continue
        decoded = decoder(key, value)
        if isinstance(decoded, FieldIssue):
            issues.append(decoded)
        else:
            accepted[attr] = decoded
    return accepted, issues


def _schema_version(root: Dict[str, Any]) -> Optional[Union[int, float]]:
    value = root.get("schemaVersion")
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return None
    if isinstance(value, float) and math.isnan(value):
        return None
    return value


def _unwrap_state(root: Dict[str, Any]) -> Dict[str, Any]:
    return root["state"] if isinstance(root.get("state"), dict) else root


def migrate_v1(root: Dict[str, Any]) -> Tuple[Dict[str, Any], Optional[str]]:
    """Lift a version 1 document to the current shape.

    Version 1 could nest the state under "state" and kept the auth token
    inline. Returns the state node and the inline token, if any.
    """
    node = _unwrap_state(root)
    auth = node.get("auth")
    token = auth.get("token") if isinstance(auth, dict) else None
    return node, (token if isinstance(token, str) and token else None)


def build_document(state: AppState) -> Dict[str, Any]:
    """Serialize state for disk: every field except the auth token."""
    body = state.model_dump(mode="json", by_alias=True, exclude={"auth": {"token"}})
    document: Dict[str, Any] = {"schemaVersion": SESSION_SCHEMA_VERSION}
    document.update({k: v for k, v in body.items() if v is not None})
    return document


class SessionStore:
    """
    Persists `AppState` to a single JSON document; the auth token goes to the
    `CredentialStore` instead.

    Notes
    - `save` writes the token first, then the document through a temp file and
      an atomic rename. Failures raise `SessionStoreError`.
    - `load` never raises. Problems become human-readable warnings and the
      caller falls back to `create_initial_state()` for whatever is missing.
    """

    def __init__(self, path: Path, credentials: CredentialStore) -> None:
        self._path = Path(path)
        self._credentials = credentials

    @classmethod
    def from_paths(cls, paths: StoragePaths) -> "SessionStore":
        native = detect_native_backend(timeout=keychain_timeout())
        return cls(paths.session_file, CredentialStore(paths.token_file, native=native))

    @property
    def path(self) -> Path:
        return self._path

    @property
    def credentials(self) -> CredentialStore:
        return self._credentials

    # -------- Core operations --------
    def save(self, state: AppState) -> None:
        snapshot = state.model_copy(deep=True)
        auth = snapshot.auth
        if auth is not None and auth.user_id and auth.token:
            try:
                self._credentials.save(auth.user_id, auth.token)
            except CredentialStoreError as exc:
                raise SessionStoreError(f"Failed to persist auth token for userId={auth.user_id}") from exc

        document = build_document(snapshot)
        try:
            write_json_atomic(self._path, document)
        except OSError as exc:
            raise SessionStoreError(f"Failed to write session file {self._path}") from exc
        logger.debug("session_saved", path=str(self._path), cart_version=snapshot.cart_version)

    def load(self) -> SessionLoadResult:
        warnings: List[str] = []
        try:
            raw = self._path.read_bytes()
        except OSError:
            return SessionLoadResult()

        try:
            parsed = json.loads(raw.decode("utf-8"))
        except (ValueError, RecursionError):
            warnings.append("session file is not valid JSON; ignoring persisted state")
            return self._degraded(warnings)

        if not isinstance(parsed, dict):
            warnings.append("session file is not a JSON object; ignoring persisted state")
            return self._degraded(warnings)

        candidate, inline_token = self._extract_candidate(parsed, warnings)
        accepted, issues = decode_fields(candidate)
        warnings.extend(issue.message() for issue in issues)

        if "session" not in accepted:
            warnings.append("session file missing `session`; ignoring persisted state")
            return self._degraded(warnings)

        auth: Optional[AuthInfo] = accepted.get("auth")
        if auth is not None:
            token = inline_token or self._credentials.load(auth.user_id)
            if inline_token:
                warnings.append(
                    f"migrated inline auth token for userId={auth.user_id}; it moves to the secure store on next save"
                )
            if token:
                accepted["auth"] = auth.model_copy(update={"token": token})
            else:
                warnings.append(
                    f"auth token missing from secure store for userId={auth.user_id}; clearing auth state"
                )
                del accepted["auth"]

        try:
            state = AppState.model_validate(accepted)
        except ValidationError as exc:
            warnings.append(f"session state rejected ({exc.error_count()} errors); ignoring persisted state")
            return self._degraded(warnings)
        return SessionLoadResult(state=state, warnings=warnings)

    # -------- Internal --------
    def _extract_candidate(
        self, root: Dict[str, Any], warnings: List[str]
    ) -> Tuple[Dict[str, Any], Optional[str]]:
        version = _schema_version(root)
        if version is None or version < SESSION_SCHEMA_VERSION:
            return migrate_v1(root)
        if version > SESSION_SCHEMA_VERSION:
            warnings.append(
                f"session schemaVersion={version} is newer than supported={SESSION_SCHEMA_VERSION}; "
                "attempting best-effort load"
            )
        return _unwrap_state(root), None

    def _degraded(self, warnings: List[str]) -> SessionLoadResult:
        for message in warnings:
            logger.warning("session_load_degraded", path=str(self._path), detail=message)
        return SessionLoadResult(warnings=warnings)


__all__ = [
    "FieldIssue",
    "SESSION_SCHEMA_VERSION",
    "SessionLoadResult",
    "SessionStore",
    "SessionStoreError",
    "build_document",
    "decode_fields",
    "migrate_v1",
]
