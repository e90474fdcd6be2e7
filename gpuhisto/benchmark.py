"""
共有メモリ版ヒストグラムの計測と検証

サイズ決定 → ドライラン → num_gpu_runs 回の計測 → 参照ヒストグラムとの検証
"""

from __future__ import annotations

import time
from dataclasses import dataclass
from typing import Optional

import numpy as np
from numba import cuda

from .cuda_kernels.memory_utils import as_device_array
from .errors import ValidationMismatchError
from .executor import ChunkedExecutor
from .operators import HistogramProblem
from .sizing import size_plan
from .types import HardwareDescriptor, SizingPlan
from .validation import EPS, first_mismatch, gold_seq_histo, to_host

CSV_HEADER = "H,N,atomic,combine,M,coop,num_chunks,shmem_bytes,micros"


@dataclass
class BenchmarkResult:
    """計測結果"""
    plan: SizingPlan
    problem: HistogramProblem
    elapsed_us: int          # 1回あたりの平均実行時間（マイクロ秒）
    histogram: np.ndarray

    def to_csv(self) -> str:
        p = self.plan
        return (
            f"{p.h},{p.n},{p.atomic_kind},{self.problem.combine.name},"
            f"{p.m},{p.coop},{p.num_chunks},{p.shared_mem_bytes},{self.elapsed_us}"
        )


def shmem_histo_run_valid(
    num_gpu_runs: int,
    h: int,
    data,
    problem: HistogramProblem,
    hardware: HardwareDescriptor,
    reference: Optional[np.ndarray] = None,
    locmem_words_per_thread: Optional[int] = None,
    eps: float = EPS,
    verbose: bool = False,
) -> BenchmarkResult:
    """
    ヒストグラムを計測・検証する

    Args:
        num_gpu_runs: 計測する実行回数
        h: ヒストグラムサイズ
        data: 入力（ホスト配列またはCUDA配列）
        problem: ヒストグラム問題
        hardware: GPU特性
        reference: 参照ヒストグラム（省略時は gold_seq_histo で計算）
        locmem_words_per_thread: スレッドあたりの共有メモリ語数
        eps: 検証の許容誤差
        verbose: 詳細表示

    Raises:
        ValidationMismatchError: 参照と一致しない場合
    """
    if num_gpu_runs <= 0:
        raise ValueError(f"num_gpu_runs は正である必要があります: {num_gpu_runs}")

    plan = size_plan(h, len(data), problem.atomic, hardware, problem.beta_dtype, locmem_words_per_thread)
    executor = ChunkedExecutor(problem, verbose=verbose)
    d_input = as_device_array(data)
    d_histos, d_histo = executor.allocate(plan)

    # ドライラン（カーネルのコンパイルを含む）
    executor.execute(plan, d_input, d_histos, d_histo)

    start = time.perf_counter()
    for _ in range(num_gpu_runs):
        executor.execute(plan, d_input, d_histos, d_histo)
    cuda.synchronize()
    elapsed_us = int((time.perf_counter() - start) * 1e6 / num_gpu_runs)

    histogram = d_histo.copy_to_host()
    if reference is None:
        reference = gold_seq_histo(problem, to_host(data), h)

    i = first_mismatch(histogram, reference, eps)
    if i is not None:
        raise ValidationMismatchError(
            f"Validation FAILS! index: {i}, GPU: {histogram[i]}, CPU: {reference[i]}, "
            f"M:{plan.m}, coop:{plan.coop}, H:{h}, atomic_kind:{plan.atomic_kind}",
            index=i,
            actual=histogram[i],
            expected=reference[i],
        )

    if verbose:
        print(f"[benchmark] {problem.name}: {elapsed_us} us/run (M={plan.m}, chunks={plan.num_chunks})")
    return BenchmarkResult(plan=plan, problem=problem, elapsed_us=elapsed_us, histogram=histogram)


__all__ = ["CSV_HEADER", "BenchmarkResult", "shmem_histo_run_valid"]
