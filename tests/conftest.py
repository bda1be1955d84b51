import numpy as np
import pytest

import holo_log


@pytest.fixture(autouse=True)
def quiet_log():
    """Keep the debug console quiet during tests; restore module defaults afterwards."""
    saved = (holo_log.DEBUG, holo_log.DEBUG_LOG_TO_FILE, holo_log.LOG_DIR)
    holo_log.configure(debug=False)
    yield
    holo_log.close_log()
    holo_log.DEBUG, holo_log.DEBUG_LOG_TO_FILE, holo_log.LOG_DIR = saved


@pytest.fixture
def cosine_hologram():
    def make(n=256, freq=10):
        xx = np.arange(n)[None, :] * np.ones((n, 1))
        return 0.5 + 0.5 * np.cos(2 * np.pi * freq * xx / n)
    return make
