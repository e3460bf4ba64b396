import stat
from pathlib import Path

import pytest

from launch_control.db.connection import Database
from launch_control.db.repository import OperationRepo, WorkloadRepo
from launch_control.engine.tools import CandidatePathProbe, SearchPathProbe, ToolLocator


def _write_executable(path: Path, body: str) -> Path:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text("#!/bin/sh\n" + body)
    path.chmod(path.stat().st_mode | stat.S_IXUSR | stat.S_IXGRP | stat.S_IXOTH)
    return path


@pytest.fixture
def make_script():
    """Factory writing small executable shell scripts."""
    return _write_executable


@pytest.fixture
def bin_dir(tmp_path: Path) -> Path:
    """A private PATH directory for fake docker / docker-compose / conda binaries."""
    path = tmp_path / "bin"
    path.mkdir()
    return path


@pytest.fixture
def empty_locator(tmp_path: Path) -> ToolLocator:
    """Locator that finds nothing."""
    return ToolLocator([SearchPathProbe(str(tmp_path / "nowhere"))], home=tmp_path)


@pytest.fixture
def bin_locator(bin_dir: Path, tmp_path: Path) -> ToolLocator:
    """Locator restricted to ``bin_dir``."""
    return ToolLocator(
        [SearchPathProbe(str(bin_dir)), CandidatePathProbe({}, tmp_path)],
        home=tmp_path,
    )


@pytest.fixture
async def db(tmp_path: Path) -> Database:
    database = Database(tmp_path / "test.db")
    await database.connect()
    yield database
    await database.close()


@pytest.fixture
def workload_repo(db: Database) -> WorkloadRepo:
    return WorkloadRepo(db)


@pytest.fixture
def operation_repo(db: Database) -> OperationRepo:
    return OperationRepo(db)


@pytest.fixture
def clean_env(monkeypatch: pytest.MonkeyPatch) -> None:
    for var in ("LAUNCH_CONTROL_JWT_SECRET", "LAUNCH_CONTROL_REAUTH_SECRET", "LAUNCH_CONTROL_DB_PATH"):
        monkeypatch.delenv(var, raising=False)

