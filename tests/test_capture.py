"""Tests for the capture flow: driver -> snapshot -> storage."""

from pathlib import Path
from unittest.mock import AsyncMock, MagicMock, patch

import pytest
from conftest import make_snapshot

from dbsnap.capture import build_extract_params, capture_snapshot, default_key, resolve_driver
from dbsnap.config import CaptureConfig
from dbsnap.drivers.base import DriverError, DriverNotFound
from dbsnap.storage import SnapshotStorage


def _driver(snapshot=None, error: Exception | None = None) -> MagicMock:
    driver = MagicMock()
    driver.name = "sqlite"
    if error is not None:
        driver.extract_schema = AsyncMock(side_effect=error)
    else:
        if snapshot is None:
            snapshot = make_snapshot(key="", host="")
        driver.extract_schema = AsyncMock(return_value=snapshot)
    return driver


@pytest.fixture
def config(tmp_path: Path) -> CaptureConfig:
    return CaptureConfig(
        db_type="sqlite",
        host="db.internal",
        database="shop.db",
        output_dir=str(tmp_path / "snapshots"),
        verify_data=True,
        workers=3,
    )


class TestExtractParams:
    """Verify capture settings map onto driver params."""

    def test_mapping(self, config: CaptureConfig) -> None:
        params = build_extract_params(config)
        assert params.host == "db.internal"
        assert params.database == "shop.db"
        assert params.connection_string == "shop.db"
        assert params.verify_data is True
        assert params.verify_row_counts is True
        assert params.workers == 3

    def test_default_key(self) -> None:
        assert default_key(make_snapshot()) == "snapshot_20250101_120000"


class TestCaptureSnapshot:
    """Verify capture assigns key and host and saves the result."""

    async def test_saves_with_key(self, config: CaptureConfig) -> None:
        driver = _driver()

        result = await capture_snapshot(config, key="before", driver=driver)

        assert result.snapshot.key == "before"
        assert result.snapshot.host == "db.internal"
        assert result.path.name == "before_20250101_120000.json"
        assert SnapshotStorage(config.output_dir).load("before") == result.snapshot
        driver.extract_schema.assert_awaited_once()

    async def test_default_key_from_timestamp(self, config: CaptureConfig) -> None:
        result = await capture_snapshot(config, driver=_driver())
        assert result.snapshot.key == "snapshot_20250101_120000"

    async def test_driver_host_is_kept(self, config: CaptureConfig) -> None:
        driver = _driver(make_snapshot(key="", host="replica-1"))
        result = await capture_snapshot(config, key="k", driver=driver)
        assert result.snapshot.host == "replica-1"

    async def test_driver_failure_saves_nothing(self, config: CaptureConfig) -> None:
        driver = _driver(error=DriverError("access denied"))

        with pytest.raises(DriverError, match="access denied"):
            await capture_snapshot(config, key="k", driver=driver)

        assert not Path(config.output_dir).exists()

    async def test_database_required(self, config: CaptureConfig) -> None:
        config = config.model_copy(update={"database": ""})
        driver = _driver()
        with pytest.raises(ValueError, match="Database name is required"):
            await capture_snapshot(config, driver=driver)
        driver.extract_schema.assert_not_awaited()

    async def test_custom_storage(self, config: CaptureConfig, tmp_path: Path) -> None:
        storage = SnapshotStorage(tmp_path / "elsewhere")
        result = await capture_snapshot(config, key="k", driver=_driver(), storage=storage)
        assert result.path.parent == tmp_path / "elsewhere"


class TestResolveDriver:
    """Verify driver resolution with and without auto-install."""

    async def test_found_locally(self, config: CaptureConfig) -> None:
        driver = MagicMock()
        with patch("dbsnap.capture.PluginDriver.create", new=AsyncMock(return_value=driver)) as create:
            assert await resolve_driver(config) is driver
        create.assert_awaited_once_with("sqlite", timeout=config.timeout)

    async def test_not_found_without_auto_install(self, config: CaptureConfig) -> None:
        config = config.model_copy(update={"auto_install": False})
        registry = MagicMock()
        registry.install_driver = AsyncMock()
        with patch(
            "dbsnap.capture.PluginDriver.create",
            new=AsyncMock(side_effect=DriverNotFound("sqlite", "dbsnap-driver-sqlite")),
        ):
            with pytest.raises(DriverNotFound):
                await resolve_driver(config, registry=registry)
        registry.install_driver.assert_not_awaited()

    async def test_auto_install_then_retry(self, config: CaptureConfig, tmp_path: Path) -> None:
        driver = MagicMock()
        registry = MagicMock()
        registry.drivers_dir = tmp_path / "drivers"
        registry.install_driver = AsyncMock()
        create = AsyncMock(side_effect=[DriverNotFound("sqlite", "dbsnap-driver-sqlite"), driver])

        with patch("dbsnap.capture.PluginDriver.create", new=create):
            assert await resolve_driver(config, registry=registry) is driver

        registry.install_driver.assert_awaited_once_with("sqlite")
        assert create.await_args.kwargs["drivers_dir"] == tmp_path / "drivers"
