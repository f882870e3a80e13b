import functools
import logging
import os.path
import pathlib
import signal
import threading
import typing

import attr
import click

from . import __doc__, __version__
from .api import Session
from .classify import DEFAULT_SUFFIXES, Classification, Classifier
from .dispatcher import DispatcherConfig
from .sops import Sops
from .utils import SopswatchError, walk

log = logging.getLogger(__name__)

# Commands that can run without the sops binary.
OFFLINE_COMMANDS = frozenset({'version', 'ls'})


@functools.lru_cache()
def rel(path: pathlib.Path) -> str:
    """
    Convert a path to a relative Path.

    Returns a string as these should only be used for presentation.
    """
    return os.path.relpath(path.as_posix(), pathlib.Path.cwd().as_posix())


def styled(path: pathlib.Path, classification: Classification) -> str:
    """Style a path by whether it is currently encrypted."""
    colour = 'green' if classification is Classification.CIPHERTEXT else 'red'
    return click.style(rel(path), fg=colour)


class PathType(click.Path):
    def convert(self, value, param, ctx):
        return pathlib.Path(super().convert(value, param, ctx))


@attr.s(frozen=True)
class Settings:
    directory: pathlib.Path = attr.ib()
    classifier: Classifier = attr.ib()
    sops: typing.Optional[Sops] = attr.ib(default=None)

    def managed(self, classification: Classification) -> typing.Iterator[pathlib.Path]:
        """Yield the managed files below the directory in a given form."""
        for path in walk(self.directory):
            if self.classifier.classify(path) is classification:
                yield path

    def select(
            self,
            paths: typing.Sequence[pathlib.Path],
            classification: Classification) -> typing.Sequence[pathlib.Path]:
        if not paths:
            return list(self.managed(classification))
        for path in paths:
            if not self.classifier.classify(path).managed:
                raise SopswatchError(f"{rel(path)} is not a SOPS managed file")
        return paths


paths_argument = click.argument(
    'paths',
    type=PathType(exists=True, dir_okay=False),
    required=False,
    nargs=-1)


@click.group(help=__doc__)
@click.option(
    '-p', '--path',
    type=PathType(
        file_okay=False,
        dir_okay=True,
        exists=True),
    envvar='SOPSWATCH_PATH',
    default=pathlib.Path.cwd,
    required=True,
    help="Directory to manage. Defaults to the current directory.")
@click.option(
    '--sops', 'sops_name',
    metavar='COMMAND',
    envvar='SOPSWATCH_SOPS',
    default='sops',
    show_default=True,
    help="Name or path of the sops binary.")
@click.option(
    '--timeout',
    type=click.FloatRange(min=0, min_open=True),
    envvar='SOPSWATCH_TIMEOUT',
    default=None,
    help="Give up on a sops command after this many seconds.")
@click.option(
    '-s', '--suffix', 'suffixes',
    metavar='SUFFIX',
    envvar='SOPSWATCH_SUFFIXES',
    multiple=True,
    type=click.STRING,
    help=f"File name suffix marking a managed file (default: {' '.join(DEFAULT_SUFFIXES)}).")
@click.option(
    '-d', '--debug', 'debug',
    default=False,
    is_flag=True,
    help="Enable debug logging.")
@click.option(
    '-v', '--verbose', 'verbose',
    default=False,
    is_flag=True,
    help="Log each file that is decrypted or encrypted.")
@click.pass_context
def main(
        ctx,
        path: pathlib.Path,
        sops_name: str,
        timeout: typing.Optional[float],
        suffixes: typing.Sequence[str],
        debug: bool,
        verbose: bool):
    level = logging.DEBUG if debug else (logging.INFO if verbose else logging.WARNING)
    logging.basicConfig(level=level, format='%(asctime)s %(levelname)s %(name)s: %(message)s')

    classifier = Classifier(suffixes=suffixes or DEFAULT_SUFFIXES)
    sops = None
    if ctx.invoked_subcommand not in OFFLINE_COMMANDS:
        sops = Sops.locate(sops_name, timeout=timeout, classifier=classifier)
    ctx.obj = Settings(directory=path.resolve(), classifier=classifier, sops=sops)


@main.command()
def version():
    """Show the application version."""
    click.echo(f"sopswatch {__version__}")


@main.command()
@click.pass_obj
def ls(settings: Settings):
    """List all managed files, green if encrypted and red if not."""
    for path in walk(settings.directory):
        classification = settings.classifier.classify(path)
        if classification.managed:
            click.echo(f"{styled(path, classification)} ({classification})")


@main.command()
@click.argument(
    'paths',
    type=PathType(exists=True, dir_okay=False),
    required=True,
    nargs=-1)
@click.pass_obj
def cat(settings: Settings, paths: typing.Sequence[pathlib.Path]):
    """Print the decrypted contents of encrypted files without writing them."""
    for path in paths:
        click.echo(settings.sops.contents(path), nl=False)


@main.command()
@paths_argument
@click.pass_obj
def decrypt(settings: Settings, paths: typing.Sequence[pathlib.Path]):
    """
    Decrypt managed files in place.

    If no paths are provided, decrypts every encrypted file.
    """
    for path in settings.select(paths, Classification.CIPHERTEXT):
        settings.sops.decrypt(path)
        click.echo(f"Decrypted {styled(path, Classification.PLAINTEXT)}")


@main.command()
@paths_argument
@click.pass_obj
def encrypt(settings: Settings, paths: typing.Sequence[pathlib.Path]):
    """
    Encrypt managed files in place.

    If no paths are provided, encrypts every managed file that has been left
    as plaintext. Files that are already encrypted are skipped.
    """
    for path in settings.select(paths, Classification.PLAINTEXT):
        settings.sops.encrypt(path)
        click.echo(f"Encrypted {styled(path, Classification.CIPHERTEXT)}")


@main.command()
@click.option(
    '-w', '--workers',
    type=click.IntRange(min=1),
    default=attr.fields(DispatcherConfig).workers.default,
    show_default=True,
    help="Number of files that can be decrypted or encrypted at once.")
@click.option(
    '--queue-size',
    type=click.IntRange(min=1),
    default=attr.fields(DispatcherConfig).queue_size.default,
    show_default=True,
    help="Number of events to buffer before the watcher waits.")
@click.option(
    '--quiet-period',
    type=click.FloatRange(min=0),
    default=attr.fields(DispatcherConfig).quiet_period.default,
    show_default=True,
    help="Seconds after handling a file during which its own echoes are ignored.")
@click.option(
    '--seal-on-exit/--no-seal-on-exit',
    default=True,
    help="Encrypt files that are still decrypted when stopping.")
@click.pass_obj
def watch(
        settings: Settings,
        workers: int,
        queue_size: int,
        quiet_period: float,
        seal_on_exit: bool):
    """Decrypt managed files when opened and encrypt them when closed."""
    config = DispatcherConfig(
        workers=workers,
        queue_size=queue_size,
        quiet_period=quiet_period,
        seal_on_exit=seal_on_exit)

    stopping = threading.Event()

    def on_signal(signum, frame):
        log.info(f"Received {signal.Signals(signum).name}, stopping")
        stopping.set()

    signal.signal(signal.SIGINT, on_signal)
    signal.signal(signal.SIGTERM, on_signal)

    with Session(settings.directory, settings.sops, config):
        click.echo(f"Watching {settings.directory} for SOPS files")
        while not stopping.wait(timeout=1):
            pass
    click.echo("Stopped")
