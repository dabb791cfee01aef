from __future__ import annotations

import base64
import json
import threading
from dataclasses import replace
from datetime import datetime
from pathlib import Path
from typing import Dict, Optional

from ssoauth.logging import get_logger
from ssoauth.storage.errors import ConstraintViolation, StorageError
from ssoauth.storage.models import Application, User


class MemoryStore:
    """In-process UserStore and AppStore for tests and local development.

    Every mutation happens inside one lock section with no awaits, so each
    call is atomic with respect to concurrent tasks and threads. When
    ``fs_root`` is given each write is snapshotted to JSON before it takes
    effect, and the snapshot is reloaded on construction.
    """

    def __init__(self, fs_root: Optional[str] = None) -> None:
        self.logger = get_logger(__name__)
        self.users: Dict[int, User] = {}
        self.apps: Dict[int, Application] = {}
        self._user_id_seq: int = 1
        self._app_id_seq: int = 1
        self._data_lock = threading.RLock()
        self.fs_root = Path(fs_root) if fs_root else None
        if self.fs_root is not None:
            self.fs_root.mkdir(parents=True, exist_ok=True)
            self._load_state()

    async def open(self) -> None:
        return None

    async def close(self) -> None:
        return None

    def verify_connection(self) -> None:
        return None

    # users
    async def save_user(self, email: str, password_hash: str, code_hash: str) -> int:
        with self._data_lock:
            if any(existing.email == email for existing in self.users.values()):
                raise ConstraintViolation("email already exists", {"field": "email"})
            user = User(
                id=self._user_id_seq,
                email=email,
                password_hash=password_hash,
                code_hash=code_hash,
            )
            self._commit(users={**self.users, user.id: user})
            self._user_id_seq += 1
            return user.id

    async def get_user_by_email(self, email: str) -> Optional[User]:
        with self._data_lock:
            user = self._find_by_email(email)
            return replace(user) if user else None

    async def is_admin(self, user_id: int) -> Optional[bool]:
        with self._data_lock:
            user = self.users.get(user_id)
            return user.is_admin if user else None

    async def accept_code(self, email: str, expected_code_hash: str) -> bool:
        with self._data_lock:
            user = self._find_by_email(email)
            if user is None or user.code_hash is None:
                return False
            if user.code_hash != expected_code_hash:
                return False
            self._update_user(replace(user, code_hash=None, verified=True))
            return True

    async def replace_code(self, email: str, code_hash: str) -> bool:
        with self._data_lock:
            user = self._find_by_email(email)
            if user is None or user.verified:
                return False
            self._update_user(replace(user, code_hash=code_hash))
            return True

    async def update_password_hash(self, user_id: int, password_hash: str) -> bool:
        with self._data_lock:
            user = self.users.get(user_id)
            if user is None:
                return False
            self._update_user(replace(user, password_hash=password_hash))
            return True

    async def set_admin(self, user_id: int, is_admin: bool = True) -> bool:
        with self._data_lock:
            user = self.users.get(user_id)
            if user is None:
                return False
            self._update_user(replace(user, is_admin=is_admin))
            return True

    def _find_by_email(self, email: str) -> Optional[User]:
        return next((u for u in self.users.values() if u.email == email), None)

    def _update_user(self, user: User) -> None:
        self._commit(users={**self.users, user.id: user})

    # apps
    async def create_app(self, name: str, secret: bytes) -> Application:
        if not secret:
            raise ValueError("application secret must not be empty")
        with self._data_lock:
            if any(existing.name == name for existing in self.apps.values()):
                raise ConstraintViolation("app already exists", {"field": "name"})
            app = Application(id=self._app_id_seq, name=name, secret=bytes(secret))
            self._commit(apps={**self.apps, app.id: app})
            self._app_id_seq += 1
            return replace(app)

    async def get_app(self, app_id: int) -> Optional[Application]:
        with self._data_lock:
            app = self.apps.get(app_id)
            return replace(app) if app else None

    # persistence
    def _commit(
        self,
        *,
        users: Optional[Dict[int, User]] = None,
        apps: Optional[Dict[int, Application]] = None,
    ) -> None:
        """Snapshot the new state, then install it.

        A failed snapshot raises ``StorageError`` and leaves the live state
        untouched.
        """
        users = self.users if users is None else users
        apps = self.apps if apps is None else apps
        self._persist_state(users, apps)
        self.users = users
        self.apps = apps

    def _state_path(self) -> Path:
        assert self.fs_root is not None
        state_dir = self.fs_root / "state"
        state_dir.mkdir(parents=True, exist_ok=True)
        return state_dir / "memory_store.json"

    def _persist_state(self, users: Dict[int, User], apps: Dict[int, Application]) -> None:
        if self.fs_root is None:
            return
        state = {
            "users": [self._serialize_user(u) for u in users.values()],
            "apps": [self._serialize_app(a) for a in apps.values()],
        }
        try:
            path = self._state_path()
            path.write_text(json.dumps(state, indent=2))
        except OSError as exc:
            raise StorageError("memory.persist", str(exc)) from exc

    def _load_state(self) -> bool:
        path = self._state_path()
        try:
            data = json.loads(path.read_text())
        except FileNotFoundError:
            return False
        self.users = {u["id"]: self._deserialize_user(u) for u in data.get("users", [])}
        self.apps = {a["id"]: self._deserialize_app(a) for a in data.get("apps", [])}
        self._user_id_seq = max(self.users, default=0) + 1
        self._app_id_seq = max(self.apps, default=0) + 1
        self.logger.info(
            "memory_store_loaded", users=len(self.users), apps=len(self.apps)
        )
        return True

    def _serialize_user(self, user: User) -> dict:
        return {
            "id": user.id,
            "email": user.email,
            "password_hash": user.password_hash,
            "code_hash": user.code_hash,
            "verified": user.verified,
            "is_admin": user.is_admin,
            "created_at": user.created_at.isoformat(),
        }

    def _deserialize_user(self, data: dict) -> User:
        return User(
            id=int(data["id"]),
            email=data["email"],
            password_hash=data["password_hash"],
            code_hash=data.get("code_hash"),
            verified=bool(data.get("verified", False)),
            is_admin=bool(data.get("is_admin", False)),
            created_at=datetime.fromisoformat(data["created_at"]),
        )

    def _serialize_app(self, app: Application) -> dict:
        return {
            "id": app.id,
            "name": app.name,
            "secret": base64.b64encode(app.secret).decode("ascii"),
            "created_at": app.created_at.isoformat(),
        }

    def _deserialize_app(self, data: dict) -> Application:
        return Application(
            id=int(data["id"]),
            name=data["name"],
            secret=base64.b64decode(data["secret"]),
            created_at=datetime.fromisoformat(data["created_at"]),
        )
