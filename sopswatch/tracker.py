"""
The per-file state machine.

    unknown   --(ciphertext on disk)-->  at-rest
    unknown   --(plaintext on disk)--->  active
    at-rest   --(opened, created)----->  active     decrypts, keeps a snapshot
    active    --(modified)------------>  active     unless re-encrypted elsewhere
    active    --(closed, saved)------->  at-rest    restores snapshot or encrypts

Every transition starts by classifying the file again, so notifications that
arrive late or twice settle on whatever is actually on disk.
"""

import enum
import logging

import attr

from .classify import Classification, Classifier
from .events import EventKind
from .sops import Sops
from .state import ManagedFile, State
from .utils import SopswatchError, atomic_write, digest, read_bytes

log = logging.getLogger(__name__)


class Transition(enum.Enum):
    NOTHING = 'nothing'
    IGNORED = 'ignored'
    EVICTED = 'evicted'
    RECLASSIFIED = 'reclassified'
    DECRYPTED = 'decrypted'
    ENCRYPTED = 'encrypted'
    RESTORED = 'restored'

    def __str__(self):
        return self.value

    @property
    def wrote(self) -> bool:
        return self in (Transition.DECRYPTED, Transition.ENCRYPTED, Transition.RESTORED)


@attr.s(frozen=True)
class Tracker:
    sops: Sops = attr.ib()
    classifier: Classifier = attr.ib(factory=Classifier)

    def apply(self, managed: ManagedFile, kind: EventKind) -> Transition:
        """Move a file to the state an event calls for. The caller holds its lock."""
        if not managed.path.is_file():
            return Transition.EVICTED

        classification = self.classifier.classify(managed.path)
        if classification is Classification.NOT_MANAGED:
            if managed.state is not State.ACTIVE:
                managed.classification = classification
                return Transition.IGNORED
            # Files found by their content lose their markers once decrypted.
            classification = Classification.PLAINTEXT
        managed.classification = classification

        if managed.state is State.UNKNOWN:
            managed.state = State.AT_REST if classification is Classification.CIPHERTEXT else State.ACTIVE
            log.info(f"Found {managed}")

        if kind in (EventKind.OPENED, EventKind.CREATED):
            return self.open(managed)
        if kind is EventKind.MODIFIED:
            return self.modify(managed)
        if kind in (EventKind.CLOSED, EventKind.SAVED):
            return self.seal(managed)
        return Transition.NOTHING

    def open(self, managed: ManagedFile) -> Transition:
        if managed.state is State.ACTIVE:
            if managed.classification is not Classification.CIPHERTEXT:
                return Transition.NOTHING
            log.info(f"{managed.path} was encrypted by something else")
            self.settle(managed)

        if managed.classification is Classification.PLAINTEXT:
            return self.modify(managed)

        return self.decrypt(managed)

    def modify(self, managed: ManagedFile) -> Transition:
        ciphertext = managed.classification is Classification.CIPHERTEXT
        if managed.state is State.ACTIVE and ciphertext:
            log.info(f"{managed.path} was encrypted by something else")
            self.settle(managed)
            return Transition.RECLASSIFIED
        if managed.state is State.AT_REST and not ciphertext:
            log.info(f"{managed.path} was replaced with plaintext")
            managed.state = State.ACTIVE
            return Transition.RECLASSIFIED
        return Transition.NOTHING

    def decrypt(self, managed: ManagedFile) -> Transition:
        snapshot = read_bytes(managed.path)
        plaintext = self.sops.decrypt(managed.path)

        managed.snapshot = snapshot
        managed.plaintext_digest = digest(plaintext)
        managed.classification = Classification.PLAINTEXT
        managed.state = State.ACTIVE
        log.info(f"Decrypted {managed.path}")
        return Transition.DECRYPTED

    def seal(self, managed: ManagedFile) -> Transition:
        if managed.state is not State.ACTIVE:
            return Transition.NOTHING
        if managed.classification is Classification.CIPHERTEXT:
            return self.modify(managed)

        try:
            current = read_bytes(managed.path)
            if managed.snapshot is not None and digest(current) == managed.plaintext_digest:
                atomic_write(managed.path, managed.snapshot)
                transition = Transition.RESTORED
            else:
                self.sops.encrypt(managed.path)
                transition = Transition.ENCRYPTED
        except SopswatchError:
            log.critical(f"Could not encrypt {managed.path}, it has been left as PLAINTEXT on disk")
            raise

        self.settle(managed)
        log.info(f"Encrypted {managed.path} ({transition})")
        return transition

    @staticmethod
    def settle(managed: ManagedFile) -> None:
        """Record that the file on disk is ciphertext again."""
        try:
            managed.snapshot = managed.path.read_bytes()
        except OSError:
            managed.snapshot = None
        managed.plaintext_digest = None
        managed.classification = Classification.CIPHERTEXT
        managed.state = State.AT_REST
