import pytest

from ezlens.config import Config
from ezlens.queries import QueryEngine
from ezlens.store import SchemaStore
from ezlens.web import create_app

EXAMPLE_LINE = (
    '10.50.3.252 - sCyGAlJG8RoCLDry3ziUL4lk7NXPtMH [15/Feb/2026:00:00:04 +0000] '
    '"GET https://www.jstor.org:443/stable/12345 HTTP/1.1" 200 251752 "US" "Mozilla/5.0 ..."'
)

CHROME_UA = (
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36"
)


def build_line(
    ts="15/Feb/2026:00:00:04 +0000",
    url="https://www.jstor.org:443/stable/12345",
    status="200",
    size="251752",
    country="US",
    user_agent=CHROME_UA,
    method="GET",
    remote_addr="10.50.3.252",
    identd="-",
    session="sCyGAlJG8RoCLDry3ziUL4lk7NXPtMH",
    version="HTTP/1.1",
):
    """Render one access-log line from its fields."""
    return (
        f'{remote_addr} {identd} {session} [{ts}] '
        f'"{method} {url} {version}" {status} {size} "{country}" "{user_agent}"'
    )


@pytest.fixture
def example_line():
    return EXAMPLE_LINE


@pytest.fixture
def make_line():
    return build_line


@pytest.fixture
def store():
    """In-memory store with the schema in place."""
    s = SchemaStore(":memory:")
    s.ensure_schema()
    yield s
    s.close()


@pytest.fixture
def engine(store):
    return QueryEngine(store)


@pytest.fixture
def app(engine):
    application = create_app(engine)
    application.config["TESTING"] = True
    return application


@pytest.fixture
def client(app):
    return app.test_client()


@pytest.fixture
def config():
    return Config()
