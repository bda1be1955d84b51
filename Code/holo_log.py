# holo_log.py
#
# Console + file logging shared by the holography modules.
#   - log():         tagged debug lines, mirrored to LOG_DIR/LOG_FILENAME
#   - array_stats(): one-line quantile summary of a field
#   - field_stats(): min/max/mean dict attached to stage events

import os

import numpy as np


# ===========================
# LOGGING CONFIG
# ===========================
DEBUG = True
DEBUG_LOG_TO_FILE = False
LOG_DIR = "./Holography/output"
LOG_FILENAME = "debug_log.txt"

STATS_QUANTILES = (0.0, 0.01, 0.5, 0.99, 1.0)

_sink = None      # open text handle while file mirroring is active


def ensure_output_dir(path):
    if path:
        os.makedirs(path, exist_ok=True)


def log_path():
    return os.path.join(LOG_DIR, LOG_FILENAME)


def log(msg):
    global _sink
    if not DEBUG:
        return
    line = str(msg)
    print(line)
    if not DEBUG_LOG_TO_FILE:
        return
    if _sink is None:
        ensure_output_dir(LOG_DIR)
        _sink = open(log_path(), "w", encoding="utf-8")
    _sink.write(line + "\n")
    _sink.flush()


def close_log():
    global _sink
    sink, _sink = _sink, None
    if sink is not None:
        sink.close()


def configure(debug=None, log_to_file=None, log_dir=None):
    """Switch logging on/off or redirect the log file (closes any open handle)."""
    global DEBUG, DEBUG_LOG_TO_FILE, LOG_DIR
    close_log()
    if debug is not None:
        DEBUG = bool(debug)
    if log_to_file is not None:
        DEBUG_LOG_TO_FILE = bool(log_to_file)
    if log_dir is not None:
        LOG_DIR = log_dir
    # file mirroring only ever runs alongside console output
    DEBUG_LOG_TO_FILE = DEBUG_LOG_TO_FILE and DEBUG


def _finite(arr, mask=None):
    a = np.asarray(arr, dtype=np.float64)
    picked = a.ravel() if mask is None else a[np.asarray(mask, dtype=bool)]
    return picked[np.isfinite(picked)]


def field_stats(arr, mask=None):
    vals = _finite(arr, mask)
    if not vals.size:
        nan = float("nan")
        return {"min": nan, "max": nan, "mean": nan}
    return {"min": float(vals.min()), "max": float(vals.max()), "mean": float(vals.mean())}


def array_stats(name, arr, mask=None):
    a = np.asarray(arr)
    vals = _finite(a, mask)
    label = f"{name} (masked)" if mask is not None else name
    if not vals.size:
        log(f"[STATS] {label}: no finite values")
        return
    lo, p1, med, p99, hi = np.quantile(vals, STATS_QUANTILES)
    log(f"[STATS] {label}: shape={a.shape} min={lo:.6g} p1={p1:.6g} median={med:.6g} "
        f"p99={p99:.6g} max={hi:.6g} mean={vals.mean():.6g} std={vals.std():.6g}")
