"""
CUDA カーネル関連の定義
"""

from .atomic_primitives import (
    ATOMIC_PRIMITIVES,
    AtomicAdd,
    AtomicPrimitive,
    CompareAndSwapLoop,
    ExchangeLock,
    Increment,
    atomic_primitive,
)
from .histo_kernels import build_local_memory_kernel, build_reduce_kernel, compile_device_function
