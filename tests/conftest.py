from typing import Callable

import pytest
import pytest_asyncio

from mouse_bot.messenger.signature import SIGNATURE_HEADER, TIMESTAMP_HEADER, signing_key
from mouse_bot.storage.config_repo import ConfigRepository
from mouse_bot.storage.database import Database
from mouse_bot.storage.models import BotIdentity
from mouse_bot.storage.request_repo import RequestRepository

BOT_SECRET = "naOC0ocQE3shWLAfffVLB1rhYPG7"


@pytest_asyncio.fixture
async def db(tmp_path):
    """File-backed SQLite database, fresh per test."""
    database = Database(str(tmp_path / "test.db"))
    await database.initialize()
    yield database
    await database.close()


@pytest.fixture
def config_repo(db):
    return ConfigRepository(db)


@pytest.fixture
def request_repo(db):
    return RequestRepository(db)


@pytest.fixture
def bot() -> BotIdentity:
    return BotIdentity(id="bot1", name="Test Bot", app_id="102000001", app_secret=BOT_SECRET)


@pytest.fixture
def sign() -> Callable[[bytes, str], dict[str, str]]:
    """Build the signature headers the platform would send for a body."""

    def _sign(body: bytes, timestamp: str = "1725442341", secret: str = BOT_SECRET) -> dict[str, str]:
        signature = signing_key(secret).sign(timestamp.encode("utf-8") + body).signature
        return {SIGNATURE_HEADER: signature.hex(), TIMESTAMP_HEADER: timestamp}

    return _sign
