"""Pytest configuration file."""

from collections.abc import Generator
import logging

import numpy as np
import pytest

from lnapath.model import LNAModel
from lnapath.testing import sir_config


@pytest.fixture(autouse=True)
def _docdir(request: pytest.FixtureRequest) -> Generator[None, None, None]:
    # Doctests run inside a temporary directory so written files do not leak.
    doctest_plugin = request.config.pluginmanager.getplugin("doctest")
    if isinstance(request.node, doctest_plugin.DoctestItem):
        with request.getfixturevalue("tmpdir").as_cwd():
            yield
    else:
        yield


@pytest.fixture(autouse=True)
def _reset_script_loggers() -> Generator[None, None, None]:
    # CLI commands configure the package loggers, undo that so caplog sees records.
    yield
    for name in list(logging.root.manager.loggerDict):
        if name == "lnapath" or name.startswith("lnapath."):
            logger = logging.getLogger(name)
            for handler in list(logger.handlers):
                logger.removeHandler(handler)
            logger.setLevel(logging.NOTSET)
            logger.propagate = True


@pytest.fixture
def rng() -> np.random.Generator:
    return np.random.default_rng(20240601)


@pytest.fixture
def sir_model() -> LNAModel:
    return LNAModel(sir_config())
