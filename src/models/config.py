from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Optional

from src.models.screen import ScreenCorners

logger = logging.getLogger(__name__)

DETECTION_METHODS = ("color_histogram", "pixel_ratio", "template_match")
SCREEN_NAMES = ("top", "bottom")
SCREEN_MODES = ("single", "dual")
WATCHDOG_POLICIES = ("abort", "recover")
SOURCE_KINDS = ("directory", "video", "screen")


class ConfigError(ValueError):
    """Raised when a configuration cannot produce a runnable pipeline."""


def _hsv_triplet(value, name: str) -> tuple[int, int, int]:
    if value is None:
        raise ConfigError(f"{name} is required")
    try:
        items = [int(v) for v in value]
    except (TypeError, ValueError) as e:
        raise ConfigError(f"{name} must be a list of three integers") from e
    if len(items) != 3:
        raise ConfigError(f"{name} must have exactly 3 values, got {len(items)}")
    return items[0], items[1], items[2]


def _number(data: dict, key: str, default, cast=float, where: str = ""):
    value = data.get(key, default)
    try:
        return cast(value)
    except (TypeError, ValueError) as e:
        raise ConfigError(f"{where}{key} must be a number, got {value!r}") from e


def _section(data: dict, key: str) -> dict:
    value = data.get(key) or {}
    if not isinstance(value, dict):
        raise ConfigError(f"{key} must be an object, got {type(value).__name__}")
    return value


def _button_combo(value, where: str) -> str:
    from src.automation.buttons import parse_buttons

    combo = str(value or "").strip()
    try:
        parse_buttons(combo, strict=True)
    except ValueError as e:
        raise ConfigError(f"{where}: {e}") from e
    return combo


@dataclass
class RoiDefinition:
    """Named sub-area of a rectified screen, in fractions of that screen's size."""
    name: str
    screen: str = "top"
    x: float = 0.0
    y: float = 0.0
    w: float = 1.0
    h: float = 1.0

    @classmethod
    def from_dict(cls, name: str, data: dict) -> RoiDefinition:
        screen = str(data.get("screen", "top") or "top").strip().lower()
        if screen not in SCREEN_NAMES:
            raise ConfigError(f"roi '{name}': screen must be 'top' or 'bottom', got '{screen}'")
        return cls(
            name=name,
            screen=screen,
            x=_number(data, "x", 0.0, float, f"roi '{name}': "),
            y=_number(data, "y", 0.0, float, f"roi '{name}': "),
            w=_number(data, "w", 1.0, float, f"roi '{name}': "),
            h=_number(data, "h", 1.0, float, f"roi '{name}': "),
        )

    def to_dict(self) -> dict:
        return {"screen": self.screen, "x": self.x, "y": self.y, "w": self.w, "h": self.h}


@dataclass
class DetectionParams:
    """Raw detection settings for one screen of one state."""
    method: str
    roi: str
    threshold: float = 0.7
    hsv_lower: tuple[int, int, int] = (0, 0, 0)
    hsv_upper: tuple[int, int, int] = (179, 255, 255)
    pixel_ratio_min: float = 0.0
    pixel_ratio_max: float = 1.0
    template_path: str = ""

    @classmethod
    def from_dict(cls, data: dict, context: str = "") -> DetectionParams:
        where = f"{context}: " if context else ""
        method = str(data.get("method", "") or "").strip().lower()
        if method not in DETECTION_METHODS:
            raise ConfigError(
                f"{where}unknown detection method '{method}' "
                f"(expected one of {', '.join(DETECTION_METHODS)})"
            )
        roi = str(data.get("roi", "") or "").strip()
        if not roi:
            raise ConfigError(f"{where}roi is required")
        threshold = _number(data, "threshold", 0.7, float, where)
        if not 0.0 < threshold <= 1.0:
            raise ConfigError(f"{where}threshold must be in (0, 1], got {threshold}")
        params = cls(method=method, roi=roi, threshold=threshold)
        if method == "template_match":
            params.template_path = (data.get("template_path", "") or "").strip()
            if not params.template_path:
                raise ConfigError(f"{where}template_match requires template_path")
            return params

        params.hsv_lower = _hsv_triplet(data.get("hsv_lower"), f"{where}hsv_lower")
        params.hsv_upper = _hsv_triplet(data.get("hsv_upper"), f"{where}hsv_upper")
        for channel, (lo, hi) in enumerate(zip(params.hsv_lower, params.hsv_upper)):
            if lo > hi:
                raise ConfigError(f"{where}hsv_lower[{channel}]={lo} exceeds hsv_upper[{channel}]={hi}")
        params.pixel_ratio_min = _number(data, "pixel_ratio_min", 0.0, float, where)
        params.pixel_ratio_max = _number(data, "pixel_ratio_max", 1.0, float, where)
        for key, value in (
            ("pixel_ratio_min", params.pixel_ratio_min),
            ("pixel_ratio_max", params.pixel_ratio_max),
        ):
            if not 0.0 <= value <= 1.0:
                raise ConfigError(f"{where}{key} must be in [0, 1], got {value}")
        if params.pixel_ratio_min > params.pixel_ratio_max:
            raise ConfigError(f"{where}pixel_ratio_min exceeds pixel_ratio_max")
        return params

    def to_dict(self) -> dict:
        out = {"method": self.method, "roi": self.roi, "threshold": self.threshold}
        if self.method == "template_match":
            out["template_path"] = self.template_path
        else:
            out.update(
                {
                    "hsv_lower": list(self.hsv_lower),
                    "hsv_upper": list(self.hsv_upper),
                    "pixel_ratio_min": self.pixel_ratio_min,
                    "pixel_ratio_max": self.pixel_ratio_max,
                }
            )
        return out


@dataclass
class StateConfig:
    id: str
    top: Optional[DetectionParams] = None
    bottom: Optional[DetectionParams] = None
    max_dwell_s: Optional[float] = None
    next_states: list[str] = field(default_factory=list)
    anomaly_check: bool = False

    @classmethod
    def from_dict(cls, state_id: str, data: dict) -> StateConfig:
        top = data.get("top")
        bottom = data.get("bottom")
        dwell = data.get("max_dwell_s")
        return cls(
            id=state_id,
            top=DetectionParams.from_dict(top, f"state '{state_id}' top") if top else None,
            bottom=DetectionParams.from_dict(bottom, f"state '{state_id}' bottom") if bottom else None,
            max_dwell_s=_number(data, "max_dwell_s", None, float, f"state '{state_id}': ")
            if dwell is not None
            else None,
            next_states=[str(s) for s in data.get("next_states", [])],
            anomaly_check=bool(data.get("anomaly_check", False)),
        )

    @property
    def has_detection(self) -> bool:
        return self.top is not None or self.bottom is not None

    def to_dict(self) -> dict:
        out: dict = {"next_states": list(self.next_states), "anomaly_check": self.anomaly_check}
        if self.max_dwell_s is not None:
            out["max_dwell_s"] = self.max_dwell_s
        if self.top is not None:
            out["top"] = self.top.to_dict()
        if self.bottom is not None:
            out["bottom"] = self.bottom.to_dict()
        return out


@dataclass
class FsmConfig:
    screen_mode: str = "dual"
    debounce_frames: int = 3
    initial_state: str = "unknown"
    allow_any_transition: bool = False
    states: dict[str, StateConfig] = field(default_factory=dict)

    @classmethod
    def from_dict(cls, data: dict) -> FsmConfig:
        mode = str(data.get("screen_mode", "dual") or "dual").strip().lower()
        if mode not in SCREEN_MODES:
            raise ConfigError(f"screen_mode must be 'single' or 'dual', got '{mode}'")
        debounce = _number(data, "debounce_frames", 3, int)
        if debounce < 1:
            logger.warning("debounce_frames=%d is below 1; using 1", debounce)
            debounce = 1
        states = {
            str(sid): StateConfig.from_dict(str(sid), sdata or {})
            for sid, sdata in _section(data, "states").items()
        }
        if mode == "single":
            for state in states.values():
                if state.top is not None and state.bottom is not None:
                    raise ConfigError(
                        f"state '{state.id}': single screen mode allows only one of top/bottom"
                    )
        return cls(
            screen_mode=mode,
            debounce_frames=debounce,
            initial_state=str(data.get("initial_state", "unknown")),
            allow_any_transition=bool(data.get("allow_any_transition", False)),
            states=states,
        )

    def to_dict(self) -> dict:
        return {
            "screen_mode": self.screen_mode,
            "debounce_frames": self.debounce_frames,
            "initial_state": self.initial_state,
            "allow_any_transition": self.allow_any_transition,
            "states": {sid: s.to_dict() for sid, s in self.states.items()},
        }


@dataclass
class InputAction:
    """One step of a per-state action list. No buttons means a pure wait of ``wait_ms``."""
    buttons: str = ""
    hold_ms: int = 120
    wait_after_ms: int = 200
    repeat: bool = False
    wait_ms: int = 0

    @classmethod
    def from_dict(cls, data: dict, context: str = "action") -> InputAction:
        buttons = data.get("buttons", "")
        if isinstance(buttons, (list, tuple)):
            buttons = "+".join(str(b) for b in buttons)
        return cls(
            buttons=_button_combo(buttons, context),
            hold_ms=_number(data, "hold_ms", 120, int),
            wait_after_ms=_number(data, "wait_after_ms", 200, int),
            repeat=bool(data.get("repeat", False)),
            wait_ms=_number(data, "wait_ms", 0, int),
        )

    @property
    def is_wait(self) -> bool:
        return not self.buttons

    def to_dict(self) -> dict:
        if self.is_wait:
            return {"wait_ms": self.wait_ms}
        return {
            "buttons": self.buttons,
            "hold_ms": self.hold_ms,
            "wait_after_ms": self.wait_after_ms,
            "repeat": self.repeat,
        }


@dataclass
class RecoveryPolicy:
    max_retries: int = 5
    combo: str = "L+R+START"
    hold_ms: int = 500

    @classmethod
    def from_dict(cls, data: dict) -> RecoveryPolicy:
        return cls(
            max_retries=_number(data, "max_retries", 5, int),
            combo=_button_combo(data.get("combo", "L+R+START") or "L+R+START", "recovery.combo"),
            hold_ms=_number(data, "hold_ms", 500, int),
        )

    def to_dict(self) -> dict:
        return {"max_retries": self.max_retries, "combo": self.combo, "hold_ms": self.hold_ms}


@dataclass
class HuntConfig:
    # Built-in state graph to use; empty means fsm.states is the whole graph
    profile: str = ""
    actions: dict[str, list[InputAction]] = field(default_factory=dict)
    recovery: RecoveryPolicy = field(default_factory=RecoveryPolicy)
    shiny_check_delay_ms: int = 1500

    @classmethod
    def from_dict(cls, data: dict) -> HuntConfig:
        actions = {
            str(state): [
                InputAction.from_dict(a or {}, f"hunt.actions.{state}[{i}]")
                for i, a in enumerate(steps or [])
            ]
            for state, steps in _section(data, "actions").items()
        }
        return cls(
            profile=str(data.get("profile", "") or "").strip(),
            actions=actions,
            recovery=RecoveryPolicy.from_dict(_section(data, "recovery")),
            shiny_check_delay_ms=_number(data, "shiny_check_delay_ms", 1500, int),
        )

    def to_dict(self) -> dict:
        return {
            "profile": self.profile,
            "actions": {s: [a.to_dict() for a in steps] for s, steps in self.actions.items()},
            "recovery": self.recovery.to_dict(),
            "shiny_check_delay_ms": self.shiny_check_delay_ms,
        }


@dataclass
class LocatorConfig:
    enabled: bool = True
    brightness_threshold: int = 80  # 0-255 floor applied when Otsu picks a lower threshold
    min_area_fraction: float = 0.02
    max_area_fraction: float = 0.5
    aspect_tolerance: float = 0.25
    smoothing_window: int = 10
    morph_kernel_size: int = 5
    poly_epsilon: float = 0.02
    calibration_frames: int = 15

    @classmethod
    def from_dict(cls, data: dict) -> LocatorConfig:
        return cls(
            enabled=bool(data.get("enabled", True)),
            brightness_threshold=_number(data, "brightness_threshold", 80, int),
            min_area_fraction=_number(data, "min_area_fraction", 0.02, float),
            max_area_fraction=_number(data, "max_area_fraction", 0.5, float),
            aspect_tolerance=_number(data, "aspect_tolerance", 0.25, float),
            smoothing_window=max(1, _number(data, "smoothing_window", 10, int)),
            morph_kernel_size=max(1, _number(data, "morph_kernel_size", 5, int)),
            poly_epsilon=_number(data, "poly_epsilon", 0.02, float),
            calibration_frames=max(1, _number(data, "calibration_frames", 15, int)),
        )

    def to_dict(self) -> dict:
        return {
            "enabled": self.enabled,
            "brightness_threshold": self.brightness_threshold,
            "min_area_fraction": self.min_area_fraction,
            "max_area_fraction": self.max_area_fraction,
            "aspect_tolerance": self.aspect_tolerance,
            "smoothing_window": self.smoothing_window,
            "morph_kernel_size": self.morph_kernel_size,
            "poly_epsilon": self.poly_epsilon,
            "calibration_frames": self.calibration_frames,
        }


@dataclass
class BoundingBox:
    """Monitor-relative capture region for live screen grabbing."""
    top: int = 0
    left: int = 0
    width: int = 800
    height: int = 600

    @classmethod
    def from_dict(cls, data: dict) -> BoundingBox:
        unknown = sorted(set(data) - {"top", "left", "width", "height"})
        if unknown:
            raise ConfigError(f"bounding_box: unknown key(s) {', '.join(unknown)}")
        return cls(
            top=_number(data, "top", 0, int, "bounding_box."),
            left=_number(data, "left", 0, int, "bounding_box."),
            width=_number(data, "width", 800, int, "bounding_box."),
            height=_number(data, "height", 600, int, "bounding_box."),
        )

    def as_mss_region(self, monitor_offset_x: int = 0, monitor_offset_y: int = 0) -> dict:
        return {
            "top": self.top + monitor_offset_y,
            "left": self.left + monitor_offset_x,
            "width": self.width,
            "height": self.height,
        }

    def to_dict(self) -> dict:
        return {"top": self.top, "left": self.left, "width": self.width, "height": self.height}


@dataclass
class SourceConfig:
    kind: str = "directory"
    path: str = ""
    playback_fps: float = 0.0  # <= 0 means as fast as the loop asks
    loop: bool = False
    monitor_index: int = 1
    bounding_box: BoundingBox = field(default_factory=BoundingBox)

    @classmethod
    def from_dict(cls, data: dict) -> SourceConfig:
        kind = str(data.get("kind", "directory") or "directory").strip().lower()
        if kind not in SOURCE_KINDS:
            raise ConfigError(f"source kind must be one of {', '.join(SOURCE_KINDS)}, got '{kind}'")
        return cls(
            kind=kind,
            path=str(data.get("path", "") or ""),
            playback_fps=_number(data, "playback_fps", 0.0, float),
            loop=bool(data.get("loop", False)),
            monitor_index=_number(data, "monitor_index", 1, int),
            bounding_box=BoundingBox.from_dict(_section(data, "bounding_box")),
        )

    def to_dict(self) -> dict:
        return {
            "kind": self.kind,
            "path": self.path,
            "playback_fps": self.playback_fps,
            "loop": self.loop,
            "monitor_index": self.monitor_index,
            "bounding_box": self.bounding_box.to_dict(),
        }


@dataclass
class ScreensConfig:
    """Fixed screen corners used when automatic location is disabled."""
    top: Optional[ScreenCorners] = None
    bottom: Optional[ScreenCorners] = None

    @classmethod
    def from_dict(cls, data: dict) -> ScreensConfig:
        def corners(key: str) -> Optional[ScreenCorners]:
            value = data.get(key)
            if not value:
                return None
            try:
                return ScreenCorners.from_list(value)
            except (TypeError, ValueError, IndexError) as e:
                raise ConfigError(f"screens.{key} must be four [x, y] points") from e

        return cls(top=corners("top"), bottom=corners("bottom"))

    def to_dict(self) -> dict:
        out = {}
        if self.top is not None:
            out["top"] = self.top.to_list()
        if self.bottom is not None:
            out["bottom"] = self.bottom.to_list()
        return out


@dataclass
class OrchestratorConfig:
    target_fps: float = 12.0
    dry_run: bool = False
    log_level: str = "info"
    log_file: str = ""
    log_rotation_mb: int = 50
    log_max_files: int = 5
    anomaly_roi: str = "pokemon_sprite"
    watchdog_policy: str = "abort"
    max_frames: int = 0  # 0 = unlimited

    @classmethod
    def from_dict(cls, data: dict) -> OrchestratorConfig:
        policy = str(data.get("watchdog_policy", "abort") or "abort").strip().lower()
        if policy not in WATCHDOG_POLICIES:
            raise ConfigError(f"watchdog_policy must be 'abort' or 'recover', got '{policy}'")
        return cls(
            target_fps=_number(data, "target_fps", 12.0, float),
            dry_run=bool(data.get("dry_run", False)),
            log_level=str(data.get("log_level", "info") or "info"),
            log_file=str(data.get("log_file", "") or ""),
            log_rotation_mb=_number(data, "log_rotation_mb", 50, int),
            log_max_files=_number(data, "log_max_files", 5, int),
            anomaly_roi=str(data.get("anomaly_roi", "pokemon_sprite") or ""),
            watchdog_policy=policy,
            max_frames=_number(data, "max_frames", 0, int),
        )

    def to_dict(self) -> dict:
        return {
            "target_fps": self.target_fps,
            "dry_run": self.dry_run,
            "log_level": self.log_level,
            "log_file": self.log_file,
            "log_rotation_mb": self.log_rotation_mb,
            "log_max_files": self.log_max_files,
            "anomaly_roi": self.anomaly_roi,
            "watchdog_policy": self.watchdog_policy,
            "max_frames": self.max_frames,
        }


@dataclass
class ClassifierConfig:
    method: str = "dominant_color"
    normal_hsv_lower: tuple[int, int, int] = (0, 0, 0)
    normal_hsv_upper: tuple[int, int, int] = (179, 255, 255)
    shiny_hsv_lower: tuple[int, int, int] = (0, 0, 0)
    shiny_hsv_upper: tuple[int, int, int] = (179, 255, 255)
    normal_ratio_threshold: float = 0.12
    shiny_ratio_threshold: float = 0.12

    @classmethod
    def from_dict(cls, data: dict) -> ClassifierConfig:
        method = str(data.get("method", "dominant_color") or "dominant_color").strip().lower()
        if method != "dominant_color":
            raise ConfigError(f"unknown classifier method '{method}'")
        return cls(
            method=method,
            normal_hsv_lower=_hsv_triplet(data.get("normal_hsv_lower", (0, 0, 0)), "normal_hsv_lower"),
            normal_hsv_upper=_hsv_triplet(data.get("normal_hsv_upper", (179, 255, 255)), "normal_hsv_upper"),
            shiny_hsv_lower=_hsv_triplet(data.get("shiny_hsv_lower", (0, 0, 0)), "shiny_hsv_lower"),
            shiny_hsv_upper=_hsv_triplet(data.get("shiny_hsv_upper", (179, 255, 255)), "shiny_hsv_upper"),
            normal_ratio_threshold=_number(data, "normal_ratio_threshold", 0.12, float),
            shiny_ratio_threshold=_number(data, "shiny_ratio_threshold", 0.12, float),
        )

    def to_dict(self) -> dict:
        return {
            "method": self.method,
            "normal_hsv_lower": list(self.normal_hsv_lower),
            "normal_hsv_upper": list(self.normal_hsv_upper),
            "shiny_hsv_lower": list(self.shiny_hsv_lower),
            "shiny_hsv_upper": list(self.shiny_hsv_upper),
            "normal_ratio_threshold": self.normal_ratio_threshold,
            "shiny_ratio_threshold": self.shiny_ratio_threshold,
        }


@dataclass
class ConsoleConfig:
    host: str = ""
    port: int = 4950
    # Global key that stops the loop (e.g. "f10"); empty = disabled
    stop_hotkey: str = ""

    @classmethod
    def from_dict(cls, data: dict) -> ConsoleConfig:
        return cls(
            host=str(data.get("host", "") or ""),
            port=_number(data, "port", 4950, int),
            stop_hotkey=str(data.get("stop_hotkey", "") or ""),
        )

    def to_dict(self) -> dict:
        return {"host": self.host, "port": self.port, "stop_hotkey": self.stop_hotkey}


@dataclass
class AppConfig:
    """Complete runtime configuration."""
    orchestrator: OrchestratorConfig = field(default_factory=OrchestratorConfig)
    source: SourceConfig = field(default_factory=SourceConfig)
    locator: LocatorConfig = field(default_factory=LocatorConfig)
    screens: ScreensConfig = field(default_factory=ScreensConfig)
    rois: dict[str, RoiDefinition] = field(default_factory=dict)
    fsm: FsmConfig = field(default_factory=FsmConfig)
    hunt: HuntConfig = field(default_factory=HuntConfig)
    classifier: ClassifierConfig = field(default_factory=ClassifierConfig)
    console: ConsoleConfig = field(default_factory=ConsoleConfig)

    @classmethod
    def from_dict(cls, data: dict) -> AppConfig:
        config = cls(
            orchestrator=OrchestratorConfig.from_dict(_section(data, "orchestrator")),
            source=SourceConfig.from_dict(_section(data, "source")),
            locator=LocatorConfig.from_dict(_section(data, "locator")),
            screens=ScreensConfig.from_dict(_section(data, "screens")),
            rois={
                str(name): RoiDefinition.from_dict(str(name), rdata or {})
                for name, rdata in _section(data, "rois").items()
            },
            fsm=FsmConfig.from_dict(_section(data, "fsm")),
            hunt=HuntConfig.from_dict(_section(data, "hunt")),
            classifier=ClassifierConfig.from_dict(_section(data, "classifier")),
            console=ConsoleConfig.from_dict(_section(data, "console")),
        )
        config._check_roi_references()
        return config

    def _check_roi_references(self) -> None:
        for state in self.fsm.states.values():
            for screen, params in (("top", state.top), ("bottom", state.bottom)):
                if params is None:
                    continue
                roi = self.rois.get(params.roi)
                if roi is None:
                    raise ConfigError(f"state '{state.id}' {screen}: unknown roi '{params.roi}'")
                if roi.screen != screen:
                    raise ConfigError(
                        f"state '{state.id}' {screen}: roi '{params.roi}' belongs to the {roi.screen} screen"
                    )

    def to_dict(self) -> dict:
        """Serialize to dict for JSON config file (round-trip with from_dict)."""
        return {
            "orchestrator": self.orchestrator.to_dict(),
            "source": self.source.to_dict(),
            "locator": self.locator.to_dict(),
            "screens": self.screens.to_dict(),
            "rois": {name: roi.to_dict() for name, roi in self.rois.items()},
            "fsm": self.fsm.to_dict(),
            "hunt": self.hunt.to_dict(),
            "classifier": self.classifier.to_dict(),
            "console": self.console.to_dict(),
        }
