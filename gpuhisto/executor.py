"""
チャンク分割実行
================

プランに従い、チャンクごとに共有メモリ協調カーネルを起動してから
サブヒストグラム間の縮約を行う。

処理の流れ:
1. 入力をデバイスへ（デバイス配列はそのまま）
2. ブロックごとのサブヒストグラム (num_blocks × H) と結果 (H) を確保
3. チャンク [lb, ub) ごとにカーネル起動（前のチャンク完了後に次を起動）
4. 全デバイス同期後に範囲外インデックスを検査
5. CrossHistogramReducer で縮約
"""

from __future__ import annotations

from typing import Callable, Optional, Union

import numpy as np
from numba import cuda

from . import config
from .cuda_kernels.atomic_primitives import AtomicPrimitive
from .cuda_kernels.histo_kernels import ERR_FLAGS_DTYPE, ERR_NO_POSITION, build_local_memory_kernel
from .cuda_kernels.memory_utils import as_device_array, device_empty, device_full
from .errors import IndexOutOfRangeError
from .operators import CombineOp, HistogramProblem, histogram_problem
from .reducer import CrossHistogramReducer
from .types import SizingPlan


class ChunkedExecutor:
    """ローカルメモリ多重ヒストグラムの実行器"""

    def __init__(self, problem: HistogramProblem, reduce_block: Optional[int] = None, verbose: bool = False):
        """
        Args:
            problem: ヒストグラム問題
            reduce_block: 縮約カーネルのブロックサイズ（省略時は設定値）
            verbose: チャンクごとの起動情報を表示
        """
        self.problem = problem
        self.verbose = verbose or config.debug_info()
        self.reducer = CrossHistogramReducer(problem.combine, problem.beta_dtype, reduce_block)

    def check_plan(self, plan: SizingPlan, n: int):
        """プランと問題・入力の整合性を確認"""
        if plan.atomic_kind != self.problem.atomic.name:
            raise ValueError(
                f"プランの原子的プリミティブが一致しません: {plan.atomic_kind} != {self.problem.atomic.name}"
            )
        if plan.el_size != self.problem.el_size:
            raise ValueError(f"プランの要素サイズが一致しません: {plan.el_size} != {self.problem.el_size}")
        if np.dtype(plan.beta_dtype) != self.problem.beta_dtype:
            raise ValueError(f"プランの要素型が一致しません: {plan.beta_dtype} != {self.problem.beta_dtype}")
        if plan.n != n:
            raise ValueError(f"プランの入力要素数が一致しません: {plan.n} != {n}")

    def kernel_for(self, plan: SizingPlan):
        problem = self.problem
        return build_local_memory_kernel(
            problem.map_fn,
            problem.combine.fn,
            problem.identity(),
            problem.atomic,
            problem.beta_dtype,
            plan.h,
            plan.m,
            plan.bins_per_chunk,
        )

    def allocate(self, plan: SizingPlan):
        """サブヒストグラムと結果ヒストグラムを確保（単位元で初期化）"""
        identity = self.problem.identity()
        d_histos = device_full((plan.num_blocks, plan.h), identity, self.problem.beta_dtype)
        d_histo = device_empty(plan.h, self.problem.beta_dtype)
        return d_histos, d_histo

    def execute(self, plan: SizingPlan, d_input, d_histos, d_histo):
        """確保済みバッファ上でチャンク実行と縮約を行う"""
        kernel = self.kernel_for(plan)
        err = cuda.to_device(np.array([0, ERR_NO_POSITION], dtype=ERR_FLAGS_DTYPE))

        for k, (chunk_lb, chunk_ub) in enumerate(plan.chunk_bounds()):
            if self.verbose:
                print(
                    f"[chunk {k + 1}/{plan.num_chunks}] bins [{chunk_lb}, {chunk_ub}), "
                    f"grid={plan.num_blocks}, block={plan.block_size}, M={plan.m}"
                )
            kernel[plan.num_blocks, plan.block_size](d_input, plan.n, chunk_lb, chunk_ub, d_histos, err)
        cuda.synchronize()

        count, first_position = (int(v) for v in err.copy_to_host())
        if count > 0:
            raise IndexOutOfRangeError(
                f"map関数が範囲外のインデックスを返しました: {count} 要素 (最初の要素位置: {first_position}, H={plan.h})",
                count=count,
                first_position=first_position,
            )

        self.reducer.reduce_device(d_histos, d_histo, block_size=min(self.reducer.block_size, plan.block_size))
        cuda.synchronize()

    def run(self, plan: SizingPlan, data) -> np.ndarray:
        """
        ヒストグラムを計算してホスト配列で返す

        Args:
            plan: size_plan() の結果
            data: 入力（ホスト配列またはCUDA配列）

        Returns:
            長さ H のヒストグラム
        """
        if len(data) == 0:
            return np.full(plan.h, self.problem.identity(), dtype=self.problem.beta_dtype)
        d_input = as_device_array(data)
        if len(d_input.shape) != 1:
            raise ValueError(f"入力は1次元である必要があります: shape={d_input.shape}")
        self.check_plan(plan, d_input.shape[0])

        d_histos, d_histo = self.allocate(plan)
        self.execute(plan, d_input, d_histos, d_histo)
        return d_histo.copy_to_host()


def compute_histogram(
    plan: SizingPlan,
    data,
    map_fn: Callable,
    combine: Union[str, CombineOp] = "add",
    atomic_kind: Union[str, AtomicPrimitive, None] = None,
    beta_dtype=None,
) -> np.ndarray:
    """
    プランに従ってヒストグラムを計算

    Args:
        plan: size_plan() の結果
        data: 入力配列（長さ N）
        map_fn: x -> (index, value)
        combine: 結合演算
        atomic_kind: 原子的プリミティブ（省略時はプランのもの）
        beta_dtype: ヒストグラム要素型（省略時はプランのもの）
    """
    if atomic_kind is None:
        atomic_kind = plan.atomic_kind
    if beta_dtype is None:
        beta_dtype = plan.beta_dtype
    problem = histogram_problem(map_fn, combine, atomic_kind, beta_dtype)
    return ChunkedExecutor(problem).run(plan, data)


__all__ = ["ChunkedExecutor", "compute_histogram"]
