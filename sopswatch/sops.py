import logging
import pathlib
import shutil
import subprocess
import typing

import attr

from .classify import Classifier
from .utils import (
    FileIOError,
    SopswatchError,
    ToolInvocationError,
    ToolNotFound,
    atomic_write,
    read_bytes,
)

log = logging.getLogger(__name__)


@attr.s(frozen=True, kw_only=True)
class ToolInvocation:
    verb: str = attr.ib()
    path: pathlib.Path = attr.ib()
    status: typing.Optional[int] = attr.ib()
    stdout: bytes = attr.ib(default=b'', repr=False)
    stderr: str = attr.ib(default='')

    @property
    def ok(self) -> bool:
        return self.status == 0


@attr.s(frozen=True)
class Sops:
    """
    Run the sops binary against files on disk.

    The binary is only ever called as 'sops -d <path>' to decrypt to
    stdout and 'sops -e -i <path>' to encrypt in place.
    """

    binary: pathlib.Path = attr.ib(converter=pathlib.Path)
    timeout: typing.Optional[float] = attr.ib(default=None)
    classifier: Classifier = attr.ib(factory=Classifier)

    @classmethod
    def locate(cls, name: str = 'sops', **kwargs) -> 'Sops':
        """Resolve the binary on the search path, once, at startup."""
        found = shutil.which(name)
        if found is None:
            raise ToolNotFound(f"Could not find the {name!r} binary on PATH")
        log.debug(f"Found sops at {found}")
        return cls(pathlib.Path(found), **kwargs)

    def command(self, arguments: typing.Sequence[str]) -> typing.Tuple[str, ...]:
        return (str(self.binary), *arguments)

    def run(self, verb: str, arguments: typing.Sequence[str], path: pathlib.Path) -> ToolInvocation:
        command = self.command([*arguments, str(path)])
        log.debug(f"Running {' '.join(command)}")
        try:
            result = subprocess.run(
                command,
                stdout=subprocess.PIPE,
                stderr=subprocess.PIPE,
                timeout=self.timeout)
        except subprocess.TimeoutExpired:
            invocation = ToolInvocation(
                verb=verb, path=path, status=None,
                stderr=f"timed out after {self.timeout} seconds")
        except OSError as error:
            invocation = ToolInvocation(
                verb=verb, path=path, status=None,
                stderr=f"could not run {self.binary}: {error}")
        else:
            invocation = ToolInvocation(
                verb=verb, path=path, status=result.returncode,
                stdout=result.stdout,
                stderr=result.stderr.decode('utf-8', errors='replace'))

        if not invocation.ok:
            for line in invocation.stderr.splitlines():
                log.error(line)
            raise ToolInvocationError(invocation)
        return invocation

    def contents(self, path: pathlib.Path) -> bytes:
        """Decrypt a file to memory, writing nothing to disk."""
        log.debug(f"Reading contents of {path}")
        if not path.is_file():
            raise FileIOError(path, "no such file")
        return self.run('decrypt', ['-d'], path).stdout

    def decrypt(self, path: pathlib.Path) -> bytes:
        """
        Replace an encrypted file with its plaintext, and return the plaintext.

        A file that is already plaintext is returned unchanged, without
        running sops.
        """
        current = read_bytes(path)
        if not self.classifier.is_ciphertext(current):
            log.debug(f"{path} is already plaintext, not decrypting")
            return current

        log.debug(f"Decrypting {path}")
        plaintext = self.run('decrypt', ['-d'], path).stdout
        atomic_write(path, plaintext)
        return plaintext

    def encrypt(self, path: pathlib.Path) -> None:
        """
        Encrypt a plaintext file in place.

        A file that is already ciphertext is left alone, without running
        sops. If sops fails, or leaves something that isn't ciphertext, the
        original plaintext is put back.
        """
        original = read_bytes(path)
        if self.classifier.is_ciphertext(original):
            log.debug(f"{path} is already encrypted, not encrypting")
            return

        log.debug(f"Encrypting {path}")
        try:
            self.run('encrypt', ['-e', '-i'], path)
            if not self.classifier.is_ciphertext(read_bytes(path)):
                raise ToolInvocationError(ToolInvocation(
                    verb='encrypt', path=path, status=0,
                    stderr="sops exited successfully but the file is not encrypted"))
        except SopswatchError:
            self.rollback(path, original)
            raise

    @staticmethod
    def rollback(path: pathlib.Path, original: bytes) -> None:
        try:
            current = path.read_bytes()
        except OSError:
            current = None
        if current != original:
            log.warning(f"Restoring the original contents of {path}")
            atomic_write(path, original)
