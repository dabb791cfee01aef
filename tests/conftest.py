import asyncio
import inspect
import os
import sys
from pathlib import Path

# Set before any imports that might initialize runtime
os.environ.setdefault("TEST_MODE", "true")
os.environ.setdefault("USE_MEMORY_STORE", "true")
os.environ.setdefault("ALLOW_REDIS_FALLBACK_DEV", "true")
# No redis in unit tests: the replay guard falls back to process memory
os.environ.setdefault("REDIS_URL", "")
# Cheapest argon2id parameters so hashing does not dominate test time
os.environ.setdefault("PASSWORD_HASH_TIME_COST", "1")
os.environ.setdefault("PASSWORD_HASH_MEMORY_COST", "8")
os.environ.setdefault("PASSWORD_HASH_PARALLELISM", "1")

import pytest  # noqa: E402

ROOT = Path(__file__).resolve().parent.parent
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))


from ssoauth.service.codes import CodeChallenge  # noqa: E402
from ssoauth.service.credentials import CredentialService  # noqa: E402
from ssoauth.service.passwords import PasswordHasher  # noqa: E402
from ssoauth.service.replay_guard import ReplayGuard  # noqa: E402
from ssoauth.service.runtime import reset_runtime_for_tests  # noqa: E402
from ssoauth.service.tokens import TokenIssuer  # noqa: E402
from ssoauth.storage.memory import MemoryStore  # noqa: E402


class RecordingDispatcher:
    """Code dispatcher that keeps every message instead of sending it."""

    def __init__(self, *, deliver: bool = True) -> None:
        self.deliver = deliver
        self.sent: list[tuple[str, str]] = []

    def send_verification_code(self, to_email: str, code: str) -> bool:
        self.sent.append((to_email, code))
        return self.deliver

    def last_code(self, email: str) -> str:
        return next(code for to, code in reversed(self.sent) if to == email)


class FixedClock:
    def __init__(self, now: float = 1_700_000_000.0) -> None:
        self.now = now

    def __call__(self) -> float:
        return self.now


@pytest.fixture(autouse=True)
def reset_runtime_state():
    reset_runtime_for_tests()
    yield
    reset_runtime_for_tests()


@pytest.fixture
def hasher():
    return PasswordHasher(time_cost=1, memory_cost=8, parallelism=1)


@pytest.fixture
def clock():
    return FixedClock()


@pytest.fixture
def store():
    return MemoryStore()


@pytest.fixture
def dispatcher():
    return RecordingDispatcher()


@pytest.fixture
def guard():
    return ReplayGuard(None, ttl_seconds=60)


@pytest.fixture
def make_service(store, hasher, clock, guard, dispatcher):
    def _make(**overrides):
        params = dict(
            users=store,
            apps=store,
            hasher=hasher,
            issuer=TokenIssuer(clock=clock),
            challenge=CodeChallenge(hasher),
            guard=guard,
            dispatcher=dispatcher,
            token_ttl_seconds=3600,
            operation_timeout_seconds=5.0,
        )
        params.update(overrides)
        users = params.pop("users")
        apps = params.pop("apps")
        return CredentialService(users, apps, **params)

    return _make


@pytest.fixture
def service(make_service):
    return make_service()


def pytest_pyfunc_call(pyfuncitem):
    if inspect.iscoroutinefunction(pyfuncitem.obj):
        call_kwargs = {
            name: pyfuncitem.funcargs[name]
            for name in pyfuncitem._fixtureinfo.argnames
            if name in pyfuncitem.funcargs
        }
        asyncio.run(pyfuncitem.obj(**call_kwargs))
        return True
    return None


def pytest_configure(config):
    config.addinivalue_line("markers", "asyncio: mark test as async")
