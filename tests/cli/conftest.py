import functools

import click.testing
import pytest

from kinformer.cli import main


@pytest.fixture()
def runner():
    runner = click.testing.CliRunner()
    return runner


@pytest.fixture()
def invoke(runner):
    return functools.partial(runner.invoke, main)


@pytest.fixture()
def real_execute(mocker):
    return mocker.patch('kinformer._core.engines.sequencing.execute')


@pytest.fixture()
def real_watch(mocker):
    return mocker.patch('kinformer._core.engines.sequencing.watch')
