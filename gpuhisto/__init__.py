"""
gpuhisto - 共有メモリ多重サブヒストグラムによるGPU汎用ヒストグラム

サブヒストグラム多重度 M とチャンク数を解析的に決定し、
チャンクごとのカーネル起動とサブヒストグラム間の縮約で
順序非依存の reduce-by-index を計算する。
"""

from .benchmark import BenchmarkResult, shmem_histo_run_valid
from .cuda_kernels.atomic_primitives import (
    AtomicAdd,
    AtomicPrimitive,
    CompareAndSwapLoop,
    ExchangeLock,
    Increment,
    atomic_primitive,
)
from .errors import (
    DeviceAllocationError,
    HistogramError,
    IndexOutOfRangeError,
    SizingInfeasibleError,
    ValidationMismatchError,
)
from .executor import ChunkedExecutor, compute_histogram
from .operators import ADD, MAX, MIN, MUL, CombineOp, HistogramProblem, combine_op, histogram_problem
from .reducer import CrossHistogramReducer
from .sizing import size_plan
from .types import HardwareDescriptor, SizingPlan
from .validation import first_mismatch, gold_seq_histo, validate

__version__ = "0.1.0"

__all__ = [
    # サイズ決定・実行
    "size_plan",
    "compute_histogram",
    "ChunkedExecutor",
    "CrossHistogramReducer",
    # 基盤
    "HardwareDescriptor",
    "SizingPlan",
    "HistogramProblem",
    "histogram_problem",
    "CombineOp",
    "combine_op",
    "ADD",
    "MUL",
    "MIN",
    "MAX",
    "AtomicPrimitive",
    "Increment",
    "AtomicAdd",
    "CompareAndSwapLoop",
    "ExchangeLock",
    "atomic_primitive",
    # 検証・計測
    "gold_seq_histo",
    "first_mismatch",
    "validate",
    "shmem_histo_run_valid",
    "BenchmarkResult",
    # エラー
    "HistogramError",
    "SizingInfeasibleError",
    "IndexOutOfRangeError",
    "DeviceAllocationError",
    "ValidationMismatchError",
]
