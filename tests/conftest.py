import pathlib
import sys
import typing

import click.testing
import pytest

import sopswatch.cli
from sopswatch.classify import Classifier
from sopswatch.dispatcher import Dispatcher, DispatcherConfig
from sopswatch.sops import Sops
from sopswatch.tracker import Tracker

ROOT = pathlib.Path(__file__).parent

PLAINTEXT = b'key: value\npassword: hunter2\n'
CIPHERTEXT = (
    b'key: ENC[AES256_GCM,data:eulav,type:str]\n'
    b'password: ENC[AES256_GCM,data:2retnuh,type:str]\n'
    b'sops:\n'
    b'    version: 3.8.1\n'
)


@pytest.fixture()
def fake_sops(tmp_path: pathlib.Path) -> pathlib.Path:
    """An executable named sops that runs tests/fake_sops.py."""
    directory = tmp_path / 'bin'
    directory.mkdir()
    binary = directory / 'sops'
    binary.write_text(f"#!/bin/sh\nexec '{sys.executable}' '{ROOT / 'fake_sops.py'}' \"$@\"\n")
    binary.chmod(0o755)
    return binary


@pytest.fixture()
def sops(fake_sops: pathlib.Path) -> Sops:
    return Sops(fake_sops)


@pytest.fixture()
def calls(tmp_path: pathlib.Path, monkeypatch) -> typing.Callable[[], typing.List[str]]:
    """Returns the sops invocations made so far, as '<verb> <name>' strings."""
    log = tmp_path / 'sops.log'
    monkeypatch.setenv('FAKE_SOPS_LOG', str(log))

    def read() -> typing.List[str]:
        if not log.exists():
            return []
        return [
            f"{verb} {pathlib.Path(path).name}"
            for verb, path in (line.split(' ', 1) for line in log.read_text().splitlines())
        ]

    return read


@pytest.fixture()
def fail(monkeypatch):
    """Make the fake sops fail for a verb, optionally only for some paths."""
    def fail_func(verb: str, path: str = '', corrupt: bool = False):
        monkeypatch.setenv('FAKE_SOPS_FAIL', verb)
        monkeypatch.setenv('FAKE_SOPS_FAIL_PATH', path)
        if corrupt:
            monkeypatch.setenv('FAKE_SOPS_CORRUPT', '1')

    return fail_func


@pytest.fixture()
def workspace(tmp_path: pathlib.Path) -> pathlib.Path:
    directory = tmp_path / 'workspace'
    directory.mkdir()
    return directory


@pytest.fixture()
def secret(workspace: pathlib.Path) -> pathlib.Path:
    path = workspace / 'secrets.sops.yaml'
    path.write_bytes(CIPHERTEXT)
    return path


@pytest.fixture()
def tracker(sops: Sops) -> Tracker:
    return Tracker(sops=sops, classifier=Classifier())


@pytest.fixture()
def dispatcher(tracker: Tracker):
    dispatcher = Dispatcher(tracker, DispatcherConfig(quiet_period=0, seal_on_exit=False))
    yield dispatcher
    dispatcher.executor.shutdown(wait=True)


@pytest.fixture()
def invoke(workspace: pathlib.Path, fake_sops: pathlib.Path):
    def invoke_func(arguments: typing.Sequence[str], exit_code: int = 0):
        assert all(isinstance(arg, str) for arg in arguments)
        runner = click.testing.CliRunner()
        result = runner.invoke(
            sopswatch.cli.main,
            ['--path', str(workspace), '--sops', str(fake_sops), *arguments])
        if result.exit_code != exit_code:
            message = f"Command sopswatch {' '.join(arguments)} exited with {result.exit_code}"
            raise Exception(message) from result.exception
        return result.output.splitlines()

    return invoke_func
