"""
CineVoz Sync Configuration Loader
Loads values from settings.json via the settings manager.
"""
import os
import sys
from pathlib import Path

from dotenv import load_dotenv

from settings import settings

# ==========================================
# Path Configuration
# ==========================================
if "__compiled__" in globals() or getattr(sys, 'frozen', False):
    ROOT_DIR = Path(sys.executable).parent
else:
    ROOT_DIR = Path(__file__).parent

# ==========================================
# Version
# ==========================================
VERSION = "0.4.0"

env_file = ROOT_DIR / '.env'
if env_file.exists():
    load_dotenv(env_file)


# Helper to prefer Env Var > Settings JSON > Default
def conf(key, default=None):
    # 1. Check Env Var (Highest Priority - good for docker/dev)
    env_val = os.getenv(key.upper().replace('.', '_'))
    if env_val is not None:
        return env_val

    # 2. Check Settings JSON
    json_val = settings.get(key)
    if json_val is not None:
        return json_val

    # 3. Default
    return default


def _as_bool(value) -> bool:
    if isinstance(value, str):
        return value.lower() in ('true', '1', 'yes', 'on')
    return bool(value)


# ==========================================
# EXPORTED CONFIG DICTS
# ==========================================

# Envelope rate shared by every fingerprint. Changing it invalidates the
# scan-width and minimum-length arithmetic, so it is not user configurable.
ENVELOPE_RATE_HZ = 20

DEBUG = {
    "log_file": conf("debug.log_file", "cinevoz.log"),
    "log_level": conf("debug.log_level", "WARNING" if getattr(sys, 'frozen', False) else "INFO"),
    "log_to_console": _as_bool(conf("debug.log_to_console", not getattr(sys, 'frozen', False))),
    "log_detailed": _as_bool(conf("debug.log_detailed", False)),
    "log_matcher": _as_bool(conf("debug.log_matcher", True)),
    "log_rotation": {
        "max_bytes": int(conf("debug.log_rotation.max_bytes", 1048576)),
        "backup_count": int(conf("debug.log_rotation.backup_count", 10)),
    },
}

MATCHER = {
    "rate_hz": ENVELOPE_RATE_HZ,
    "min_live_seconds": float(conf("matcher.min_live_seconds", 2.0)),
    "energy_floor": float(conf("matcher.energy_floor", 0.005)),
    "variance_floor": float(conf("matcher.variance_floor", 0.0005)),
}

SYNC = {
    "tick_interval": float(conf("sync.tick_interval", 2.0)),
    "latency_compensation": float(conf("sync.latency_compensation", 0.5)),
    "stabilize_seconds": float(conf("sync.stabilize_seconds", 5.0)),
    "drift_threshold": float(conf("sync.drift_threshold", 3.0)),
    "verify_tolerance": float(conf("sync.verify_tolerance", 2.0)),
    "verifications_required": int(conf("sync.verifications_required", 2)),
    "global_min_confidence": float(conf("sync.global_min_confidence", 30.0)),
    "local_min_confidence": float(conf("sync.local_min_confidence", 40.0)),
    "local_scan_width": float(conf("sync.local_scan_width", 120.0)),
}

BUFFER = {
    # ~8 s of audio at 4096-sample callbacks and 44.1-48 kHz
    "max_chunks": int(conf("buffer.max_chunks", 90)),
    "min_chunks": int(conf("buffer.min_chunks", 30)),
}

SUBTITLES = {
    "cue_window": float(conf("subtitles.cue_window", 0.3)),
}
