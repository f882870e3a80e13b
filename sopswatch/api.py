import logging
import pathlib
import typing

import attr

from .classify import Classifier
from .dispatcher import Dispatcher, DispatcherConfig
from .hooks import LifecycleHooks
from .sops import Sops
from .tracker import Tracker
from .watcher import Watcher

log = logging.getLogger(__name__)


@attr.s
class Session:
    """A watcher feeding a dispatcher, started and stopped together."""

    directory: pathlib.Path = attr.ib(converter=lambda p: pathlib.Path(p).resolve())
    sops: Sops = attr.ib()
    config: DispatcherConfig = attr.ib(factory=DispatcherConfig)

    dispatcher: Dispatcher = attr.ib(init=False, repr=False)
    watcher: Watcher = attr.ib(init=False, repr=False)

    def __attrs_post_init__(self):
        self.dispatcher = Dispatcher(
            tracker=Tracker(sops=self.sops, classifier=self.sops.classifier),
            config=self.config)
        self.watcher = Watcher(self.directory, self.dispatcher.events)

    @property
    def hooks(self) -> LifecycleHooks:
        return LifecycleHooks(self.dispatcher)

    def start(self) -> None:
        self.dispatcher.start()
        try:
            self.watcher.start()
        except Exception:
            self.dispatcher.stop()
            raise

    def stop(self) -> None:
        self.watcher.stop()
        self.dispatcher.stop()

    def __enter__(self) -> 'Session':
        self.start()
        return self

    def __exit__(self, *exc_info) -> None:
        self.stop()


def watch(
        directory: pathlib.Path,
        sops: typing.Optional[Sops] = None,
        classifier: typing.Optional[Classifier] = None,
        **config) -> Session:
    """Start watching a directory, returning the running session."""
    if sops is None:
        sops = Sops.locate(classifier=classifier or Classifier())
    session = Session(directory, sops, DispatcherConfig(**config))
    session.start()
    return session
