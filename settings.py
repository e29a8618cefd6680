"""
CineVoz Sync Settings Manager
Handles dynamic configuration management using settings.json
"""

import ast
import json
import os
import shutil
import sys
import uuid
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, Optional

from logging_config import get_logger

logger = get_logger(__name__)

if "__compiled__" in globals() or getattr(sys, 'frozen', False):
    ROOT_DIR = Path(sys.executable).parent
else:
    ROOT_DIR = Path(__file__).parent

SETTINGS_FILE = Path(os.getenv("CINEVOZ_SETTINGS_FILE", str(ROOT_DIR / "settings.json")))


@dataclass
class Setting:
    """Represents a single configurable setting"""
    name: str
    type: type
    default: Any
    requires_restart: bool = False
    category: Optional[str] = None
    description: Optional[str] = None
    min_val: Optional[float] = None
    max_val: Optional[float] = None
    options: Optional[list] = None

    def validate_and_convert(self, value: Any) -> Any:
        try:
            if self.type == bool and isinstance(value, str):
                return value.lower() in ('true', '1', 'yes', 'on')

            if self.type == list:
                if isinstance(value, list):
                    return value
                if isinstance(value, str):
                    try:
                        parsed = ast.literal_eval(value.strip())
                        if isinstance(parsed, list):
                            return parsed
                    except (ValueError, SyntaxError):
                        pass
                return self.default

            converted = self.type(value)
            # Clamp numeric values into the declared range
            if self.min_val is not None and converted < self.min_val:
                return self.type(self.min_val)
            if self.max_val is not None and converted > self.max_val:
                return self.type(self.max_val)
            return converted
        except (ValueError, TypeError):
            return self.default


class SettingsManager:
    def __init__(self, settings_file: Optional[Path] = None):
        self._settings: Dict[str, Any] = {}
        self._file = Path(settings_file) if settings_file else SETTINGS_FILE

        # Define all available settings
        self._definitions = {
            # Debug
            "debug.log_file": Setting("Log File", str, "cinevoz.log", True, "Debug", "Log file name"),
            "debug.log_level": Setting("Log Level", str, "INFO", True, "Debug", "Console logging verbosity",
                                       options=["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]),
            "debug.log_to_console": Setting("Log to Console", bool, True, True, "Debug", "Print logs to terminal"),
            "debug.log_detailed": Setting("Detailed Logging", bool, False, True, "Debug", "DEBUG level in the log file"),
            "debug.log_matcher": Setting("Log Matcher", bool, True, False, "Debug", "Log every correlation scan"),
            "debug.log_rotation.max_bytes": Setting("Max Log Size", int, 1048576, True, "Debug", "Max log file size (bytes)"),
            "debug.log_rotation.backup_count": Setting("Log Backups", int, 10, True, "Debug", "Number of backups to keep"),

            # Matcher
            "matcher.min_live_seconds": Setting("Min Live Length", float, 2.0, False, "Matcher", "Shortest live window worth scanning (s)", 0.5, 30.0),
            "matcher.energy_floor": Setting("Energy Floor", float, 0.005, False, "Matcher", "Minimum live RMS (silence gate)", 0.0, 1.0),
            "matcher.variance_floor": Setting("Variance Floor", float, 0.0005, False, "Matcher", "Minimum live variance (flatness gate)", 0.0, 1.0),

            # Sync controller
            "sync.tick_interval": Setting("Tick Interval", float, 2.0, False, "Sync", "Seconds between sync ticks", 0.25, 30.0),
            "sync.latency_compensation": Setting("Latency Compensation", float, 0.5, False, "Sync", "Capture pipeline delay (s)", -5.0, 5.0),
            "sync.stabilize_seconds": Setting("Stabilize Window", float, 5.0, False, "Sync", "No matching after a seek (s)", 0.0, 60.0),
            "sync.drift_threshold": Setting("Drift Threshold", float, 3.0, False, "Sync", "Drift that requires re-verification (s)", 0.1, 60.0),
            "sync.verify_tolerance": Setting("Verify Tolerance", float, 2.0, False, "Sync", "Max disagreement between confirmations (s)", 0.1, 30.0),
            "sync.verifications_required": Setting("Verifications", int, 2, False, "Sync", "Consistent hits needed to lock", 1, 10),
            "sync.global_min_confidence": Setting("Global Min Confidence", float, 30.0, False, "Sync", "Acceptance threshold for full scans (%)", 0.0, 100.0),
            "sync.local_min_confidence": Setting("Local Min Confidence", float, 40.0, False, "Sync", "Acceptance threshold for local scans (%)", 0.0, 100.0),
            "sync.local_scan_width": Setting("Local Scan Width", float, 120.0, False, "Sync", "Half-width of a local scan (s)", 1.0, 3600.0),

            # Live buffer
            "buffer.max_chunks": Setting("Max Chunks", int, 90, False, "Buffer", "Chunks kept in the rolling buffer", 1, 10000),
            "buffer.min_chunks": Setting("Min Chunks", int, 30, False, "Buffer", "Chunks required before matching", 1, 10000),

            # Subtitles
            "subtitles.cue_window": Setting("Cue Window", float, 0.3, False, "Subtitles", "Tolerance for firing a cue (s)", 0.05, 5.0),
        }

        self.load_settings()

    def load_settings(self) -> None:
        """Load settings from JSON, fall back to defaults"""
        self._settings = {key: definition.default for key, definition in self._definitions.items()}

        if not self._file.exists():
            return

        try:
            with open(self._file, 'r', encoding='utf-8') as f:
                saved = json.load(f)
            for key, val in saved.items():
                if key in self._definitions:
                    self._settings[key] = self._definitions[key].validate_and_convert(val)
                else:
                    # Unknown keys are kept so newer files survive a downgrade
                    self._settings[key] = val
        except (OSError, ValueError) as e:
            logger.error(f"Failed to load {self._file.name}: {e} - using defaults")
            backup_path = self._file.with_suffix('.json.corrupted')
            try:
                shutil.copy2(self._file, backup_path)
                logger.info(f"Backed up corrupted settings to {backup_path}")
            except OSError as copy_error:
                logger.warning(f"Could not back up corrupted settings: {copy_error}")

    def get(self, key: str, default: Any = None) -> Any:
        """
        Get a setting value.
        Priority:
        1. Loaded value (from JSON or Schema Default)
        2. Schema Default (if key in definitions but not in settings dict yet)
        3. Provided 'default' argument (if key unknown)
        """
        if key in self._settings:
            return self._settings[key]

        if key in self._definitions:
            return self._definitions[key].default

        return default

    def set(self, key: str, value: Any) -> bool:
        """Set a known setting. Returns True if the change needs a restart."""
        if key not in self._definitions:
            raise KeyError(f"Unknown setting: {key}")

        setting = self._definitions[key]
        self._settings[key] = setting.validate_and_convert(value)
        return setting.requires_restart

    def save_to_config(self) -> None:
        """Save current memory settings to JSON file"""
        temp_path = self._file.parent / f"settings_{uuid.uuid4().hex}.json.tmp"
        try:
            with open(temp_path, 'w', encoding='utf-8') as f:
                json.dump(self._settings, f, indent=4, sort_keys=True)
            # Atomic replace (works on both Windows and Unix)
            os.replace(temp_path, self._file)
        except OSError as e:
            logger.error(f"Failed to save settings: {e}")
            if temp_path.exists():
                temp_path.unlink()
            raise

    def get_all(self) -> Dict:
        """Return settings grouped by category"""
        result: Dict[str, Dict[str, Any]] = {}
        for key, val in self._settings.items():
            defin = self._definitions.get(key)
            if not defin:
                continue

            cat = defin.category or "Misc"
            result.setdefault(cat, {})[key] = {
                "value": val,
                "name": defin.name,
                "description": defin.description,
                "type": defin.type.__name__,
                "requires_restart": defin.requires_restart,
                "options": defin.options,
                "min": defin.min_val,
                "max": defin.max_val,
            }
        return result

    def reset_to_defaults(self):
        if self._file.exists():
            os.remove(self._file)
        self.load_settings()


settings = SettingsManager()
