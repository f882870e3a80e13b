import hashlib
import os
import pathlib
import shutil
import tempfile
import typing

import click

Fingerprint = typing.Tuple[int, int, int]

IGNORED_DIRECTORIES = frozenset({'.git', '.hg', '.svn'})
TEMPORARY_SUFFIX = '.sopswatch'


class SopswatchError(click.ClickException):
    pass


class ToolNotFound(SopswatchError):
    pass


class WatchSetupError(SopswatchError):
    pass


class FileIOError(SopswatchError):
    def __init__(self, path: pathlib.Path, reason: str) -> None:
        super().__init__(f"Could not access {path}: {reason}")
        self.path = path


class ToolInvocationError(SopswatchError):
    def __init__(self, invocation) -> None:
        super().__init__(
            f"sops {invocation.verb} failed for {invocation.path} "
            f"(exit status {invocation.status}): {invocation.stderr.strip()}")
        self.invocation = invocation

    @property
    def verb(self) -> str:
        return self.invocation.verb

    @property
    def path(self) -> pathlib.Path:
        return self.invocation.path

    @property
    def stderr(self) -> str:
        return self.invocation.stderr


def digest(data: bytes) -> str:
    return hashlib.sha256(data).hexdigest()


def fingerprint(path: pathlib.Path) -> typing.Optional[Fingerprint]:
    """Identify the current on-disk version of a file without opening it."""
    try:
        stat = path.stat()
    except OSError:
        return None
    return stat.st_ino, stat.st_size, stat.st_mtime_ns


def read_bytes(path: pathlib.Path) -> bytes:
    try:
        return path.read_bytes()
    except OSError as error:
        raise FileIOError(path, error.strerror or str(error)) from error


def atomic_write(path: pathlib.Path, data: bytes) -> None:
    """
    Replace the contents of a file without exposing a partial write.

    The data is written to a temporary file in the same directory, which is
    then renamed over the target. The target's permissions are preserved.
    """
    descriptor, temporary = tempfile.mkstemp(
        dir=path.parent,
        prefix=f'.{path.name}.',
        suffix=TEMPORARY_SUFFIX)
    try:
        with os.fdopen(descriptor, 'wb') as stream:
            stream.write(data)
        if path.exists():
            shutil.copymode(path, temporary)
        os.replace(temporary, path)
    except OSError as error:
        pathlib.Path(temporary).unlink(missing_ok=True)
        raise FileIOError(path, error.strerror or str(error)) from error


def in_directory(path: pathlib.Path, directory: pathlib.Path) -> bool:
    """Check if a path is a subpath of a directory."""
    try:
        path.relative_to(directory)
    except ValueError:
        return False
    else:
        return True


def is_ignored(path: pathlib.Path) -> bool:
    """Version control metadata and our own temporary files are never managed."""
    if path.name.endswith(TEMPORARY_SUFFIX):
        return True
    return any(part in IGNORED_DIRECTORIES for part in path.parts)


def walk(directory: pathlib.Path) -> typing.Iterator[pathlib.Path]:
    """Yield every regular file below a directory, skipping VCS metadata."""
    for path in sorted(directory.rglob('*')):
        if path.is_file() and not is_ignored(path.relative_to(directory)):
            yield path
