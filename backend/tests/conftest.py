"""
PeopleDesk Backend — Test Configuration (conftest.py)
=======================================================

What:  Shared pytest fixtures for the entire test suite.
How:   pytest auto-discovers conftest.py and makes fixtures available to all tests.

Fixture Hierarchy (all function-scoped):
    ├── temp_storage: Temporary storage root for file operations
    ├── storage_snapshot: Lists every file under temp_storage
    ├── make_image: Factory for real encoded images (Pillow)
    ├── owner_id / repository: In-memory owner store with one known user
    ├── store / allocator / service: Pipeline wired to temp_storage
    ├── sqlite_session_factory: Real SQLAlchemy sessions on aiosqlite
    └── test_client: HTTPX AsyncClient with the service overridden
"""

import io
import os
import tempfile
import uuid
from pathlib import Path
from typing import Callable, Dict, List, Optional, Set

# Override settings for testing BEFORE any peopledesk imports
_test_dir = tempfile.mkdtemp(prefix="peopledesk_test_")
os.environ["DATABASE_URL"] = f"sqlite+aiosqlite:///{_test_dir}/test.db"
os.environ["STORAGE_ROOT"] = os.path.join(_test_dir, "storage")
os.environ["LOG_LEVEL"] = "WARNING"

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from PIL import Image
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from peopledesk.database import Base
from peopledesk.exceptions import NotFoundError, StaleReferenceError
from peopledesk.schemas.profile_picture import ProfilePictureReference
from peopledesk.services.asset_store import AssetStore
from peopledesk.services.profile_picture_service import ProfilePictureService
from peopledesk.services.storage_paths import StoragePathAllocator
from peopledesk.services.user_repository import ProfilePictureRepository


# ══════════════════════════════════════════════════════════════════════════
# Test Doubles
# ══════════════════════════════════════════════════════════════════════════

class InMemoryProfilePictureRepository(ProfilePictureRepository):
    """
    Owner store backed by a dict, with the same compare-and-swap contract
    as SqlUserRepository.

    Failure injection:
        fail_swap:    exception raised by the next swap_reference calls
        before_swap:  callable run inside swap_reference before the compare,
                      to simulate a concurrent writer
    """

    def __init__(self) -> None:
        self.references: Dict[uuid.UUID, Optional[ProfilePictureReference]] = {}
        self.fail_swap: Optional[Exception] = None
        self.before_swap: Optional[Callable[[], None]] = None
        self.swap_calls: List[uuid.UUID] = []

    def add_owner(
        self,
        owner_id: Optional[uuid.UUID] = None,
        reference: Optional[ProfilePictureReference] = None,
    ) -> uuid.UUID:
        owner_id = owner_id or uuid.uuid4()
        self.references[owner_id] = reference
        return owner_id

    async def get_reference(self, owner_id: uuid.UUID) -> Optional[ProfilePictureReference]:
        if owner_id not in self.references:
            raise NotFoundError(resource="user", resource_id=str(owner_id))
        return self.references[owner_id]

    async def swap_reference(
        self,
        owner_id: uuid.UUID,
        expected_path: Optional[str],
        reference: Optional[ProfilePictureReference],
    ) -> None:
        self.swap_calls.append(owner_id)
        if self.fail_swap is not None:
            raise self.fail_swap
        if self.before_swap is not None:
            self.before_swap()
        if owner_id not in self.references:
            raise NotFoundError(resource="user", resource_id=str(owner_id))
        current = self.references[owner_id]
        current_path = current.path if current else None
        if current_path != expected_path:
            raise StaleReferenceError(context={"user_id": str(owner_id)})
        self.references[owner_id] = reference

    async def list_referenced_paths(self) -> Set[str]:
        return {ref.path for ref in self.references.values() if ref is not None}


def stored_files(root: str) -> List[str]:
    """Every file under `root`, as sorted POSIX relative paths."""
    base = Path(root)
    if not base.exists():
        return []
    return sorted(p.relative_to(base).as_posix() for p in base.rglob("*") if p.is_file())


# ══════════════════════════════════════════════════════════════════════════
# Function-Scoped Fixtures (created fresh for each test)
# ══════════════════════════════════════════════════════════════════════════

@pytest.fixture
def temp_storage(tmp_path):
    """A fresh storage root for each test (pytest cleans tmp_path up)."""
    storage_dir = tmp_path / "storage"
    storage_dir.mkdir()
    return str(storage_dir)


@pytest.fixture
def storage_snapshot(temp_storage):
    """Call to list every file currently under the storage root."""
    return lambda: stored_files(temp_storage)


@pytest.fixture
def make_image():
    """
    Factory producing encoded image bytes.

    Usage:
        png = make_image(120, 80)
        gif = make_image(60, 60, fmt="GIF", mode="P", color=3)
    """

    def _make(width=120, height=80, fmt="PNG", mode="RGB", color=(200, 30, 30)) -> bytes:
        buf = io.BytesIO()
        Image.new(mode, (width, height), color).save(buf, format=fmt)
        return buf.getvalue()

    return _make


@pytest.fixture
def repository():
    return InMemoryProfilePictureRepository()


@pytest.fixture
def owner_id(repository):
    return repository.add_owner()


@pytest.fixture
def store(temp_storage):
    return AssetStore(storage_root=temp_storage)


@pytest.fixture
def allocator(temp_storage):
    return StoragePathAllocator(storage_root=temp_storage, public_url_prefix="/api/files")


@pytest.fixture
def service(repository, store, allocator):
    return ProfilePictureService(repository=repository, store=store, allocator=allocator)


@pytest_asyncio.fixture
async def sqlite_session_factory(tmp_path):
    """Sessions on a throwaway SQLite database with the full schema created."""
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'users.db'}")
    async with engine.begin() as conn:
        from peopledesk.models.user import User  # noqa: F401
        await conn.run_sync(Base.metadata.create_all)
    yield async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)
    await engine.dispose()


@pytest_asyncio.fixture
async def test_client(service, store):
    """
    HTTPX AsyncClient talking to the FastAPI app in-process, with the
    pipeline dependencies pointed at this test's storage and owner store.

    Usage:
        async def test_health(test_client):
            response = await test_client.get("/health")
    """
    from peopledesk.dependencies import (
        get_asset_reader,
        get_asset_store,
        get_profile_picture_service,
    )
    from peopledesk.main import app
    from peopledesk.services.asset_reader import AssetReader

    app.dependency_overrides[get_profile_picture_service] = lambda: service
    app.dependency_overrides[get_asset_reader] = lambda: AssetReader(store)
    app.dependency_overrides[get_asset_store] = lambda: store

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        yield client

    app.dependency_overrides.clear()
