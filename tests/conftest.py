import pytest

from src.studio.images import ImageRepository
from src.studio.lyrics import LyricsRepository
from src.studio.scripts import ScriptRepository
from src.studio.storage import MemoryStore, QuotaEvents


@pytest.fixture
def events() -> QuotaEvents:
    return QuotaEvents()


@pytest.fixture
def store(events) -> MemoryStore:
    return MemoryStore(events=events)


@pytest.fixture
def lyrics(store) -> LyricsRepository:
    return LyricsRepository(store)


@pytest.fixture
def images(store) -> ImageRepository:
    return ImageRepository(store)


@pytest.fixture
def scripts(store) -> ScriptRepository:
    return ScriptRepository(store)
