"""
Central configuration for bitlab.

Flat-constant interface.  Every value is derived from the structured
config singleton in ``config_structured.py`` so there is a single source
of truth.

Config Status Legend
====================
  ACTIVE      — Imported and used by running code.
  PLACEHOLDER — Defined for future use.

Search for ``# STATUS:`` to locate all annotations.
"""
from pathlib import Path

from .config_structured import get_config as _get_config

_cfg = _get_config()

# ── Paths ──────────────────────────────────────────────────────────────
ROOT_DIR = Path(__file__).parent                  # STATUS: ACTIVE — package directory
RESULTS_FILE = _cfg.storage.results_file          # STATUS: ACTIVE — engine/results.py history file
JOB_DB_PATH = _cfg.storage.job_db_path            # STATUS: ACTIVE — jobs/store.py sqlite file

# ── Engine ─────────────────────────────────────────────────────────────
DEFAULT_OPERATION_COST = _cfg.engine.default_operation_cost       # STATUS: ACTIVE — cost of ops absent from the scoring table
DEFAULT_MAX_OPERATIONS = _cfg.engine.default_max_operations       # STATUS: ACTIVE — step cap when no policy declares one
DEFAULT_INITIAL_BUDGET = _cfg.engine.default_initial_budget       # STATUS: ACTIVE — budget when neither caller nor scoring sets one
FALLBACK_OPERATION_COUNT = _cfg.engine.fallback_operation_count   # STATUS: ACTIVE — enabled ops used when a strategy names none
STEP_INTERVAL_S = _cfg.engine.step_interval_s                     # STATUS: ACTIVE — pause between steps
BITS_SAMPLE_LENGTH = _cfg.engine.bits_sample_length               # STATUS: ACTIVE — bits_before/bits_after sample size
RESULT_HISTORY_LIMIT = _cfg.storage.result_history_limit          # STATUS: ACTIVE — results kept in history

# ── Windows ────────────────────────────────────────────────────────────
LUA_WINDOW_STRIDE = _cfg.windows.lua_stride       # STATUS: ACTIVE
LUA_WINDOW_WIDTH = _cfg.windows.lua_width         # STATUS: ACTIVE
DEFAULT_WINDOW_STRIDE = _cfg.windows.default_stride  # STATUS: ACTIVE — python and cpp backends
DEFAULT_WINDOW_WIDTH = _cfg.windows.default_width    # STATUS: ACTIVE — python and cpp backends

# ── Runtimes ───────────────────────────────────────────────────────────
CPP_SERVER_URL = _cfg.runtimes.cpp_server_url                 # STATUS: ACTIVE — local C++ execution server
CPP_HEALTH_TIMEOUT_S = _cfg.runtimes.cpp_health_timeout_s     # STATUS: ACTIVE
CPP_EXECUTE_TIMEOUT_S = _cfg.runtimes.cpp_execute_timeout_s   # STATUS: ACTIVE

# ── Scheduler ──────────────────────────────────────────────────────────
DEFAULT_MAX_PARALLEL = _cfg.scheduler.default_max_parallel    # STATUS: ACTIVE — batch parallel bound
EVENT_QUEUE_SIZE = _cfg.scheduler.event_queue_size            # STATUS: ACTIVE — per-subscriber event buffer
STALL_TIMEOUT_S = _cfg.scheduler.stall_timeout_s              # STATUS: ACTIVE — jobs/watchdog.py; 0 disables stall detection
STALL_CHECK_INTERVAL_S = _cfg.scheduler.stall_check_interval_s   # STATUS: ACTIVE — watchdog poll period

# ── Logging ────────────────────────────────────────────────────────────
LOG_LEVEL = _cfg.logging.level                    # STATUS: ACTIVE — api/main.py lifespan
LOG_FORMAT = _cfg.logging.format                  # STATUS: ACTIVE — "structured" or "json"
LOG_BUFFER_SIZE = _cfg.logging.buffer_size        # STATUS: ACTIVE — api/routers/logs.py ring buffer


def validate_config() -> list:
    """Check config for common misconfigurations.

    Returns a list of dicts: [{"level": "WARNING"|"ERROR", "message": str}].
    Called on server startup.
    """
    issues = []

    if STEP_INTERVAL_S < 0:
        issues.append({
            "level": "ERROR",
            "message": f"STEP_INTERVAL_S is negative ({STEP_INTERVAL_S}).",
        })

    if DEFAULT_INITIAL_BUDGET < DEFAULT_OPERATION_COST:
        issues.append({
            "level": "WARNING",
            "message": (
                f"DEFAULT_INITIAL_BUDGET ({DEFAULT_INITIAL_BUDGET}) is below "
                f"DEFAULT_OPERATION_COST ({DEFAULT_OPERATION_COST}); runs without a "
                "scoring budget will stop before the first step."
            ),
        })

    if DEFAULT_MAX_PARALLEL < 1:
        issues.append({
            "level": "ERROR",
            "message": f"DEFAULT_MAX_PARALLEL must be >= 1, got {DEFAULT_MAX_PARALLEL}.",
        })

    if 0 < STALL_TIMEOUT_S < STALL_CHECK_INTERVAL_S:
        issues.append({
            "level": "WARNING",
            "message": (
                f"STALL_TIMEOUT_S ({STALL_TIMEOUT_S}) is shorter than STALL_CHECK_INTERVAL_S "
                f"({STALL_CHECK_INTERVAL_S}); stalls will be reported late."
            ),
        })

    if RESULT_HISTORY_LIMIT < 1:
        issues.append({
            "level": "WARNING",
            "message": "RESULT_HISTORY_LIMIT < 1: execution results will not be retained.",
        })

    if LOG_FORMAT not in ("structured", "json"):
        issues.append({
            "level": "WARNING",
            "message": f"LOG_FORMAT={LOG_FORMAT!r} is not recognised; using 'structured'.",
        })

    if not CPP_SERVER_URL.startswith(("http://", "https://")):
        issues.append({
            "level": "WARNING",
            "message": f"CPP_SERVER_URL={CPP_SERVER_URL!r} is not an http(s) URL; C++ strategies will fail.",
        })

    return issues
