import logging

import pytest

from tuning.facts import Facts


@pytest.fixture
def bin_dir(tmp_path):
    """A search path containing a single executable named `tuning`."""
    d = tmp_path / "bin"
    d.mkdir()
    exe = d / "tuning"
    exe.write_text("#!/bin/sh\nexit 0\n")
    exe.chmod(0o755)
    return d


@pytest.fixture
def facts(tmp_path, bin_dir):
    return Facts(
        cache_dir=tmp_path / "cache",
        config_dir=tmp_path / "config",
        home_dir=tmp_path / "home",
        os_name="linux",
        search_path=str(bin_dir),
    )


@pytest.fixture
def empty_facts(tmp_path):
    """Facts whose search path finds nothing."""
    empty = tmp_path / "empty-bin"
    empty.mkdir()
    return Facts(
        cache_dir=tmp_path / "cache",
        config_dir=tmp_path / "config",
        home_dir=tmp_path / "home",
        os_name="linux",
        search_path=str(empty),
    )


@pytest.fixture
def write_config(tmp_path):
    def _write(text, name="main.toml"):
        path = tmp_path / name
        path.write_text(text)
        return path
    return _write


@pytest.fixture(autouse=True)
def restore_tuning_logger():
    """CLI tests configure the `tuning` logger; put it back afterwards."""
    logger = logging.getLogger("tuning")
    handlers, level = list(logger.handlers), logger.level
    yield
    logger.handlers = handlers
    logger.setLevel(level)
