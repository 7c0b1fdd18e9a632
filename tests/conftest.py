import pytest

from .fakes import FakeChannel, make_bot_client, make_guild, make_settings


@pytest.fixture
def settings():
    return make_settings()


@pytest.fixture
def bot_client():
    return make_bot_client()


@pytest.fixture
def guild():
    return make_guild()


@pytest.fixture
def channel(guild):
    return FakeChannel(guild=guild)
