"""
PeopleDesk Backend — Service Dependencies
===========================================

What:  FastAPI dependency providers for the profile-picture services.
Why:   Routes ask for services through Depends(), so tests can swap in a
       service wired to a temporary storage root and an in-memory owner
       store via `app.dependency_overrides`.
How:   Each provider builds its service once (lru_cache) from settings.
"""

from functools import lru_cache

from peopledesk.database import async_session_factory
from peopledesk.services.asset_reader import AssetReader
from peopledesk.services.asset_store import AssetStore
from peopledesk.services.profile_picture_service import ProfilePictureService
from peopledesk.services.user_repository import SqlUserRepository


@lru_cache
def get_asset_store() -> AssetStore:
    return AssetStore()


@lru_cache
def get_asset_reader() -> AssetReader:
    return AssetReader(get_asset_store())


@lru_cache
def get_profile_picture_service() -> ProfilePictureService:
    return ProfilePictureService(
        repository=SqlUserRepository(async_session_factory),
        store=get_asset_store(),
    )
