import functools
import logging

import click.testing
import pytest

from kinformer._core.reactor.dispatching import DispatchStats
from kinformer.cli import main


@pytest.fixture(autouse=True)
def _restore_root_logging():
    logger = logging.getLogger()
    handlers = logger.handlers[:]
    level = logger.level
    yield
    logger.handlers[:] = handlers
    logger.setLevel(level)


@pytest.fixture()
def runner():
    runner = click.testing.CliRunner()
    return runner


@pytest.fixture()
def invoke(runner):
    return functools.partial(runner.invoke, main)


@pytest.fixture()
def real_run(mocker):
    return mocker.patch('kinformer._core.reactor.running.run', return_value=DispatchStats())


@pytest.fixture()
def login(mocker):
    from kinformer._cogs.structs.credentials import ConnectionInfo
    info = ConnectionInfo(server='https://localhost', token='tkn', default_namespace='default')
    return mocker.patch('kinformer._core.intents.piggybacking.login', return_value=info)
