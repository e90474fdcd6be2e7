"""
Pytest configuration and fixtures for gpuhisto tests.

Kernels run on the numba CUDA simulator unless GPUHISTO_USE_GPU=1 is set.
"""

import logging
import os
import sys

# Must be set before numba is imported anywhere
if os.environ.get("GPUHISTO_USE_GPU", "0") != "1":
    os.environ.setdefault("NUMBA_ENABLE_CUDASIM", "1")

os.environ.setdefault("NUMBA_CUDA_LOG_LEVEL", "ERROR")
os.environ.setdefault("NUMBA_DISABLE_PERFORMANCE_WARNINGS", "1")

import pytest
from numba import config as numba_config

# Add project root to path
sys.path.insert(0, os.path.abspath(os.path.join(os.path.dirname(__file__), "..")))

from gpuhisto.sizing import clear_plan_cache
from gpuhisto.types import HardwareDescriptor

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)


def pytest_configure(config):
    """Register custom markers."""
    config.addinivalue_line("markers", "gpu: marks tests that require a real GPU")
    config.addinivalue_line("markers", "integration: marks integration tests")
    config.addinivalue_line("markers", "slow: marks slow tests")
    if numba_config.ENABLE_CUDASIM:
        logger.info("Running kernels on the numba CUDA simulator")
    else:
        logger.info("Running kernels on GPU %s", os.environ.get("GPUHISTO_GPU_ID", "0"))


def pytest_collection_modifyitems(config, items):
    """Skip real-GPU tests when running on the CUDA simulator."""
    if not numba_config.ENABLE_CUDASIM:
        return
    skip_gpu = pytest.mark.skip(reason="requires a real GPU (running on the CUDA simulator)")
    for item in items:
        if "gpu" in item.keywords:
            item.add_marker(skip_gpu)


@pytest.fixture(scope="session")
def simulator():
    """True when kernels run on the numba CUDA simulator."""
    return bool(numba_config.ENABLE_CUDASIM)


@pytest.fixture
def small_hw():
    """A tiny device: 32-thread blocks, 64 hardware threads, 48KB shared memory."""
    return HardwareDescriptor(max_threads_per_block=32, hw_threads=64, shared_mem_per_block=48 * 1024, name="tiny")


@pytest.fixture
def rtx_hw():
    """Properties of a 68-SM, 1024-thread-per-SM device."""
    return HardwareDescriptor(
        max_threads_per_block=1024, hw_threads=68 * 1024, shared_mem_per_block=48 * 1024, name="rtx"
    )


@pytest.fixture(autouse=True)
def _isolate_config(monkeypatch):
    """Keep environment-driven configuration at its defaults."""
    for name in (
        "GPUHISTO_LOCMEMW_PERTHD",
        "GPUHISTO_DEBUG_INFO",
        "GPUHISTO_REDUCE_BLOCK",
        "GPUHISTO_GPU_RUNS",
        "GPUHISTO_GPU_ID",
    ):
        monkeypatch.delenv(name, raising=False)
    clear_plan_cache()
    yield
