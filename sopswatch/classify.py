"""
Decide whether a file is a SOPS managed secret, and which form it is in.

Files are selected by name first, and by content when the name doesn't
follow one of the usual conventions:

    * 'secrets.sops.yaml', 'secrets.enc.json' and 'secrets.sops' are managed.
    * Any file holding a SOPS metadata block and 'ENC[' values is managed.
    * Any file using the 'encrypted_suffix' convention is managed.

A managed file is ciphertext when it holds 'ENC[' values, else plaintext.
"""

import enum
import logging
import pathlib
import typing

import attr

log = logging.getLogger(__name__)

DEFAULT_SUFFIXES: typing.Tuple[str, ...] = (
    '.sops.yaml',
    '.sops.json',
    '.enc.yaml',
    '.enc.json',
    '.sops',
)

HEADER_MARKERS: typing.Tuple[bytes, ...] = (
    b'sops:',
    b'"sops":',
    b'[sops]',
    b'sops_version=',
)
CIPHERTEXT_MARKER = b'ENC['
ENCRYPTED_SUFFIX_MARKER = b'encrypted_suffix'


class Classification(enum.Enum):
    UNKNOWN = 'unknown'
    PLAINTEXT = 'plaintext'
    CIPHERTEXT = 'ciphertext'
    NOT_MANAGED = 'not-managed'

    def __str__(self):
        return self.value

    @property
    def managed(self) -> bool:
        return self in (Classification.PLAINTEXT, Classification.CIPHERTEXT)


def sample(path: pathlib.Path, limit: int) -> bytes:
    """
    Read at most `limit` bytes of a file.

    Large files are sampled from both ends, as SOPS writes its metadata
    block after the encrypted values.
    """
    with path.open('rb') as stream:
        head = stream.read(limit + 1)
        if len(head) <= limit:
            return head
        half = limit // 2
        stream.seek(-half, 2)
        return head[:limit - half] + stream.read(half)


@attr.s(frozen=True)
class Classifier:
    suffixes: typing.Tuple[str, ...] = attr.ib(default=DEFAULT_SUFFIXES, converter=tuple)
    sample_limit: int = attr.ib(default=256 * 1024)

    def matches_suffix(self, path: pathlib.Path) -> bool:
        # A bare '.sops.yaml' is the sops configuration, not a secret.
        return any(path.name != suffix and path.name.endswith(suffix) for suffix in self.suffixes)

    @staticmethod
    def has_sops_markers(content: bytes) -> bool:
        if ENCRYPTED_SUFFIX_MARKER in content:
            return True
        return CIPHERTEXT_MARKER in content and any(m in content for m in HEADER_MARKERS)

    @staticmethod
    def is_ciphertext(content: bytes) -> bool:
        return CIPHERTEXT_MARKER in content

    def classify(
            self,
            path: pathlib.Path,
            content: typing.Optional[bytes] = None) -> Classification:
        """Classify a path, reading a sample of it unless `content` is given."""
        if not path.is_file():
            return Classification.NOT_MANAGED

        if content is None:
            try:
                content = sample(path, self.sample_limit)
            except OSError as error:
                log.debug(f"Could not read {path}: {error}")
                return Classification.NOT_MANAGED

        if not self.matches_suffix(path) and not self.has_sops_markers(content):
            return Classification.NOT_MANAGED

        if self.is_ciphertext(content):
            return Classification.CIPHERTEXT
        return Classification.PLAINTEXT
