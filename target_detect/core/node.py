from __future__ import annotations

"""
target_detect.core.node
-----------------------

Process lifecycle for the target detector node.

Startup order matters: the config document is loaded and the target finder is built
*before* any bus channel is opened, so a bad config never leaves half-open outputs.
"""

import logging
import signal
import threading
from pathlib import Path
from typing import Any, Dict, Mapping, Optional, Union

from ..backends import build_target_finder
from .bus import FrameBus
from .config import DEFAULT_NODE_OPTIONS, load_config, node_options, resolve_config_path
from .pipeline import FramePipeline, FrameStats
from .schema import BaseTargetFinder

logger = logging.getLogger(__name__)


class TargetDetectorNode:
    """Subscribes to raw frames and republishes detected + annotated frames."""

    def __init__(
        self,
        bus: FrameBus,
        target_finder: BaseTargetFinder,
        *,
        input_topic: str = DEFAULT_NODE_OPTIONS["input_topic"],
        detected_topic: str = DEFAULT_NODE_OPTIONS["detected_topic"],
        annotated_topic: str = DEFAULT_NODE_OPTIONS["annotated_topic"],
        queue_size: int = DEFAULT_NODE_OPTIONS["queue_size"],
    ) -> None:
        self.bus = bus
        self.target_finder = target_finder

        self.detected_pub = bus.advertise(detected_topic)
        self.annotated_pub = bus.advertise(annotated_topic)
        self.pipeline = FramePipeline(target_finder, self.detected_pub, self.annotated_pub)
        self.subscription = bus.subscribe(input_topic, self.pipeline.on_frame, queue_size=queue_size)

        logger.info(
            "Target detector node up: %s -> %s, %s (finder=%s)",
            input_topic,
            detected_topic,
            annotated_topic,
            target_finder.name,
        )

    @property
    def stats(self) -> FrameStats:
        return self.pipeline.stats

    def spin(self, stop_event: Optional[threading.Event] = None) -> None:
        """Dispatch frames until `stop_event` is set or the bus shuts down."""
        self.bus.spin(stop_event)

    def spin_once(self, timeout: Optional[float] = 0.0) -> int:
        return self.bus.spin_once(timeout=timeout)

    def shutdown(self) -> None:
        self.subscription.shutdown()
        self.detected_pub.shutdown()
        self.annotated_pub.shutdown()
        s = self.stats
        logger.info(
            "Target detector node stopped (received=%d published=%d dropped=%d partial=%d).",
            s.received,
            s.published,
            s.dropped,
            s.partial,
        )


def create_node(
    bus: FrameBus,
    config_file: Optional[Union[str, Path]] = None,
    *,
    config: Optional[Mapping[str, Any]] = None,
) -> TargetDetectorNode:
    """Build a node from a config file path (or an already-loaded document).

    Raises ConfigError on any startup problem; nothing is advertised in that case.
    """
    if config is None:
        path = resolve_config_path(config_file)
        config = load_config(path)
        logger.info("Loaded config from %s", path)

    opts: Dict[str, Any] = node_options(config)
    target_finder = build_target_finder(config)
    return TargetDetectorNode(bus, target_finder, **opts)


def install_signal_handlers(stop_event: threading.Event) -> None:
    """Set `stop_event` on SIGINT/SIGTERM. Must be called from the main thread."""

    def _handler(signum, _frame) -> None:
        logger.info("Received signal %d; shutting down.", signum)
        stop_event.set()

    signal.signal(signal.SIGINT, _handler)
    signal.signal(signal.SIGTERM, _handler)


def run_node(config_file: Optional[Union[str, Path]] = None, *, bus: Optional[FrameBus] = None) -> FrameStats:
    """Start a node and spin until SIGINT/SIGTERM, then shut the bus down."""
    bus = bus or FrameBus()
    node = create_node(bus, config_file)
    stop = threading.Event()
    install_signal_handlers(stop)
    try:
        node.spin(stop)
    finally:
        node.shutdown()
        bus.shutdown()
    return node.stats


__all__ = [
    "TargetDetectorNode",
    "create_node",
    "install_signal_handlers",
    "run_node",
]
