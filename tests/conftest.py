"""Shared pytest fixtures and utilities for inventory tracker tests."""

from __future__ import annotations

import argparse
import sys
import uuid
from dataclasses import dataclass
from datetime import UTC, datetime
from decimal import Decimal
from pathlib import Path
from typing import Callable, Iterator
from unittest.mock import Mock

import pytest

# Ensure source packages are importable without installation.
PROJECT_ROOT = Path(__file__).resolve().parents[1]
SRC_DIR = PROJECT_ROOT / "src"

if str(SRC_DIR) not in sys.path:
    sys.path.insert(0, str(SRC_DIR))

from inventory_tracker import cli, constants, core_logic, data_manager, setup_db  # noqa: E402

DEFAULT_SCHEMA_VERSION = constants.EXPECTED_SCHEMA_VERSION
DEFAULT_STORE_NAME = "Test Store"


@dataclass(frozen=True)
class ConfigBundle:
    """Container bundling together config metadata for tests."""

    directory: Path
    config_path: Path
    database_path: Path
    schema_version: str
    store_name: str


@pytest.fixture(scope="session", autouse=True)
def _restore_sys_path() -> Iterator[None]:
    """Ensure sys.path modifications are undone after the test session."""

    original = sys.path.copy()
    try:
        yield
    finally:
        sys.path[:] = original


@pytest.fixture(autouse=True)
def _isolate_database_env(monkeypatch: pytest.MonkeyPatch) -> None:
    """Keep a developer's INVENTORY_DB_URL from leaking into tests."""

    monkeypatch.delenv(constants.DATABASE_URL_ENV, raising=False)


@pytest.fixture(scope="session")
def project_root() -> Path:
    """Return the repository root path."""

    return PROJECT_ROOT


@pytest.fixture
def config_factory(tmp_path: Path) -> Callable[..., ConfigBundle]:
    """Provide a callable that creates config/database bundles on demand."""

    def _create_config(
        *,
        make_relative: bool = False,
        store_name: str = DEFAULT_STORE_NAME,
        schema_version: str = DEFAULT_SCHEMA_VERSION,
        create_tables: bool = True,
        busy_timeout: float = 30.0,
    ) -> ConfigBundle:
        bundle_dir = tmp_path / f"bundle_{uuid.uuid4().hex}"
        bundle_dir.mkdir(parents=True, exist_ok=True)
        database_path = bundle_dir / "inventory.db"
        database_entry = database_path.name if make_relative else str(database_path)
        config_path = bundle_dir / "config.ini"
        config_path.write_text(
            setup_db.CONFIG_TEMPLATE.format(
                database_url=f"sqlite:///{database_entry}",
                busy_timeout=busy_timeout,
                store_name=store_name,
                schema_version=schema_version,
            ),
            encoding="utf-8",
        )
        if create_tables:
            setup_db.run_from_config(config_path)
        return ConfigBundle(
            directory=bundle_dir,
            config_path=config_path,
            database_path=database_path,
            schema_version=schema_version,
            store_name=store_name,
        )

    return _create_config


@pytest.fixture
def config_file(config_factory: Callable[..., ConfigBundle]) -> Path:
    """Convenience fixture returning only the config path."""

    return config_factory().config_path


@pytest.fixture
def runtime_context(config_file: Path) -> Iterator[core_logic.RuntimeContext]:
    """Load the runtime context for tests through the public API."""

    context = core_logic.load_runtime_context(config_file)
    core_logic.ensure_schema_version(context)
    try:
        yield context
    finally:
        core_logic.close_context(context)


@pytest.fixture
def product_factory(runtime_context: core_logic.RuntimeContext) -> Callable[..., data_manager.ProductRow]:
    """Create products through the business layer with sensible defaults."""

    def _create(
        name: str = "Widget",
        *,
        price: str | Decimal = "99.99",
        quantity: int = 10,
        low_stock_threshold: int = 2,
        category: str | None = "General",
    ) -> data_manager.ProductRow:
        return core_logic.add_product(
            runtime_context,
            name=name,
            price=price,
            quantity=quantity,
            low_stock_threshold=low_stock_threshold,
            category=category,
        )

    return _create


# ---------------------------------------------------------------------------
# CLI layer fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def cli_parser() -> argparse.ArgumentParser:
    """Return a fresh CLI parser instance for tests."""

    return argparse.ArgumentParser(prog="inventory-tracker", description="Inventory CLI")


@pytest.fixture
def subparsers_action(
    cli_parser: argparse.ArgumentParser,
) -> argparse._SubParsersAction[argparse.ArgumentParser]:
    """Return the subparser action used to register commands."""

    return cli_parser.add_subparsers(dest="command")


@pytest.fixture
def command_spec_iterable() -> list[cli.CommandSpec]:
    """Provide a list of command specs for indexing tests."""

    def _make_spec(name: str) -> cli.CommandSpec:
        return cli.CommandSpec(
            name,
            f"{name} help",
            lambda subparsers: subparsers.add_parser(name),
            lambda *_: 0,
        )

    return [_make_spec("alpha"), _make_spec("beta"), _make_spec("gamma")]


# ---------------------------------------------------------------------------
# Core logic fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def settings(tmp_path: Path) -> data_manager.ConfigSettings:
    """Provide default configuration settings for runtime context tests."""

    return data_manager.ConfigSettings(
        database_url=f"sqlite:///{tmp_path / 'inventory.db'}",
        store_name=DEFAULT_STORE_NAME,
        schema_version=constants.EXPECTED_SCHEMA_VERSION,
    )


@pytest.fixture
def mock_context(settings: data_manager.ConfigSettings) -> core_logic.RuntimeContext:
    """Assemble a runtime context whose engine and stores are mocks."""

    return core_logic.RuntimeContext(
        settings=settings,
        engine=Mock(name="engine"),
        products=Mock(name="products"),
        sales=Mock(name="sales"),
    )


@pytest.fixture
def set_fixed_datetime(monkeypatch: pytest.MonkeyPatch) -> Callable[[datetime], datetime]:
    """Patch ``core_logic.datetime`` to return a predetermined moment."""

    def _apply(moment: datetime) -> datetime:
        class _FixedDateTime:
            @staticmethod
            def now(tz=None):
                assert tz is UTC
                return moment

        monkeypatch.setattr(core_logic, "datetime", _FixedDateTime)
        return moment

    return _apply
