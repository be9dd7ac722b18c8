"""3DS hunt bot: main entry point.

Wires together: frame source -> screen locator/rectifier -> state tracker
-> anomaly classifier -> soft-reset strategy -> input transport.
"""

from __future__ import annotations

import argparse
import json
import logging
import logging.handlers
import signal
import sys
from pathlib import Path
from typing import Optional

from src.analysis import build_state_graph, create_classifier, StateTracker, TemplateMatcher
from src.automation import MockInputTransport, SoftResetStrategy, StopHotkeyListener, UdpInputTransport
from src.capture import (
    DirectoryFrameSource,
    FrameRectifier,
    FrameSource,
    ScreenCaptureSource,
    ScreenLocator,
    VideoFrameSource,
    list_monitors,
)
from src.models import AppConfig, ConfigError, SourceConfig
from src.pipeline import Orchestrator

logger = logging.getLogger(__name__)

CONFIG_PATH = Path(__file__).parent.parent / "config" / "default_config.json"
LOG_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"

EXIT_OK = 0
EXIT_FAILED = 1
EXIT_CONFIG = 2

_LEVELS = {
    "trace": logging.DEBUG,
    "debug": logging.DEBUG,
    "info": logging.INFO,
    "warn": logging.WARNING,
    "warning": logging.WARNING,
    "error": logging.ERROR,
    "critical": logging.CRITICAL,
}


def parse_log_level(name: str) -> int:
    level = _LEVELS.get((name or "").strip().lower())
    if level is None:
        logger.warning("Unknown log level '%s'; using info", name)
        return logging.INFO
    return level


def setup_logging(level: str = "info", log_file: str = "", rotation_mb: int = 50, max_files: int = 5) -> None:
    """Console logging plus an optional size-rotated log file."""
    handlers: list[logging.Handler] = [logging.StreamHandler()]
    if log_file:
        path = Path(log_file)
        path.parent.mkdir(parents=True, exist_ok=True)
        handlers.append(
            logging.handlers.RotatingFileHandler(
                path,
                maxBytes=max(1, rotation_mb) * 1024 * 1024,
                backupCount=max(0, max_files),
                encoding="utf-8",
            )
        )
    logging.basicConfig(level=parse_log_level(level), format=LOG_FORMAT, handlers=handlers, force=True)


def load_config(path: Path = CONFIG_PATH) -> AppConfig:
    """Read a JSON config file. Raises ConfigError for missing, malformed or invalid files."""
    try:
        with open(path, encoding="utf-8") as f:
            data = json.load(f)
    except FileNotFoundError as e:
        raise ConfigError(f"config file not found: {path}") from e
    except json.JSONDecodeError as e:
        raise ConfigError(f"invalid JSON in {path}: {e}") from e
    if not isinstance(data, dict):
        raise ConfigError(f"{path}: top level must be a JSON object")
    return AppConfig.from_dict(data)


def create_frame_source(config: SourceConfig) -> FrameSource:
    if config.kind == "directory":
        return DirectoryFrameSource(config.path, config.playback_fps, config.loop)
    if config.kind == "video":
        return VideoFrameSource(config.path, config.playback_fps, config.loop)
    return ScreenCaptureSource(config.monitor_index, config.bounding_box)


def template_paths(config: AppConfig) -> list[str]:
    return [
        params.template_path
        for state in config.fsm.states.values()
        for params in (state.top, state.bottom)
        if params is not None and params.method == "template_match"
    ]


def build_orchestrator(config: AppConfig, source: Optional[FrameSource] = None) -> Orchestrator:
    """Build every pipeline stage from ``config``. Setup errors surface here as ConfigError."""
    matcher = TemplateMatcher()
    graph = build_state_graph(config.fsm, config.hunt.profile, matcher)
    missing = matcher.preload(template_paths(config))
    if missing:
        logger.warning("%d template image(s) could not be loaded; those states will not match", len(missing))
    tracker = StateTracker(
        graph,
        debounce_frames=config.fsm.debounce_frames,
        allow_any_transition=config.fsm.allow_any_transition,
    )
    check_states = [sid for sid in graph.ids() if graph[sid].anomaly_check]
    strategy = SoftResetStrategy(config.hunt, check_states=check_states)
    classifier = create_classifier(config.classifier)

    rectifier = FrameRectifier(
        config.rois.values(),
        top_corners=config.screens.top,
        bottom_corners=config.screens.bottom,
    )
    locator = ScreenLocator(config.locator) if config.locator.enabled else None
    if locator is None and config.screens.top is None:
        raise ConfigError("locator is disabled but screens.top corners are not configured")

    if config.orchestrator.dry_run or not config.console.host:
        transport = MockInputTransport()
    else:
        transport = UdpInputTransport(default_port=config.console.port)

    return Orchestrator(
        source=source or create_frame_source(config.source),
        rectifier=rectifier,
        tracker=tracker,
        strategy=strategy,
        transport=transport,
        config=config.orchestrator,
        locator=locator,
        classifier=classifier,
        console_address=f"{config.console.host}:{config.console.port}" if config.console.host else "",
    )


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="sh3ds-hunt", description="Automated soft-reset hunting for the 3DS")
    parser.add_argument("--config", default=str(CONFIG_PATH), help="Path to the JSON config file")
    parser.add_argument("--source", default="", help="Override source.path (image directory or video file)")
    parser.add_argument("--fps", type=float, default=0.0, help="Override orchestrator.target_fps")
    parser.add_argument("--dry-run", action="store_true", help="Decide actions but never send input")
    parser.add_argument("--log-level", default="", help="trace, debug, info, warn, error or critical")
    parser.add_argument("--max-frames", type=int, default=0, help="Stop after this many ticks (0 = no limit)")
    parser.add_argument("--check-config", action="store_true", help="Validate the config and exit")
    parser.add_argument("--list-monitors", action="store_true", help="Print monitor geometry and exit")
    return parser


def apply_overrides(config: AppConfig, args: argparse.Namespace) -> None:
    if args.source:
        config.source.path = args.source
    if args.fps:
        config.orchestrator.target_fps = args.fps
    if args.dry_run:
        config.orchestrator.dry_run = True
    if args.log_level:
        config.orchestrator.log_level = args.log_level
    if args.max_frames:
        config.orchestrator.max_frames = args.max_frames


def main(argv: Optional[list[str]] = None) -> int:
    args = build_parser().parse_args(argv)

    if args.list_monitors:
        for index, monitor in enumerate(list_monitors()):
            print(f"{index}: {monitor}")
        return EXIT_OK

    try:
        config = load_config(Path(args.config))
        apply_overrides(config, args)
        setup_logging(
            config.orchestrator.log_level,
            config.orchestrator.log_file,
            config.orchestrator.log_rotation_mb,
            config.orchestrator.log_max_files,
        )
        orchestrator = build_orchestrator(config)
    except ConfigError as e:
        logging.basicConfig(format=LOG_FORMAT)
        logger.error("Configuration error: %s", e)
        return EXIT_CONFIG

    if args.check_config:
        logger.info("Config OK: %s", args.config)
        return EXIT_OK

    def handle_signal(signum, _frame) -> None:
        logger.info("Signal %d received; stopping", signum)
        orchestrator.stop()

    signal.signal(signal.SIGINT, handle_signal)
    if hasattr(signal, "SIGTERM"):
        signal.signal(signal.SIGTERM, handle_signal)

    hotkey = StopHotkeyListener(config.console.stop_hotkey, orchestrator.stop)
    hotkey.start()
    try:
        stats = orchestrator.run()
    finally:
        hotkey.stop()

    print(json.dumps({"stop_reason": orchestrator.stop_reason.value, **stats.to_dict()}, indent=2))
    return EXIT_OK if orchestrator.stop_reason.is_success else EXIT_FAILED


if __name__ == "__main__":
    sys.exit(main())
