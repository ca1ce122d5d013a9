import json
from pathlib import Path

import pytest
import responses


@pytest.fixture(scope="session")
def fixtures_dir() -> Path:
    return Path(__file__).resolve().parent / "fixtures"


@pytest.fixture(scope="session")
def sample_export_path(fixtures_dir: Path) -> Path:
    return fixtures_dir / "mal" / "sample_export.xml"


@pytest.fixture(scope="session")
def search_attack_on_titan(fixtures_dir: Path) -> dict:
    path = fixtures_dir / "mangadex" / "search_attack_on_titan.json"
    with path.open("r", encoding="utf-8") as handle:
        return json.load(handle)


@pytest.fixture
def responses_mock():
    with responses.RequestsMock(assert_all_requests_are_fired=False) as rsps:
        yield rsps


@pytest.fixture
def sleep_calls():
    calls = []

    def fake_sleep(seconds: float) -> None:
        calls.append(seconds)

    fake_sleep.calls = calls
    return fake_sleep
