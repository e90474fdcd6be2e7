"""
サブヒストグラム多重度の決定
============================

H, N, 共有メモリ量、原子的プリミティブから
ブロックあたりのサブヒストグラム数 M とチャンク数を解析的に求める。
GPUには触れない純粋な算術処理。
"""

from __future__ import annotations

import math
from functools import lru_cache
from typing import Optional, Union

import numpy as np

from . import config
from .cuda_kernels.atomic_primitives import AtomicPrimitive, atomic_primitive
from .errors import SizingInfeasibleError
from .types import HardwareDescriptor, SizingPlan


def local_memory_budget(hardware: HardwareDescriptor, locmem_words_per_thread: int) -> int:
    """ブロックあたりの共有メモリ予算（バイト）。デバイス上限を超えない"""
    lmem = locmem_words_per_thread * hardware.max_threads_per_block * config.WORD_SIZE
    return min(lmem, hardware.shared_mem_per_block)


def size_plan(
    h: int,
    n: int,
    atomic_kind: Union[str, AtomicPrimitive],
    hardware: HardwareDescriptor,
    beta_dtype=np.int32,
    locmem_words_per_thread: Optional[int] = None,
) -> SizingPlan:
    """
    共有メモリ版ヒストグラムのサイズ決定

    Args:
        h: ヒストグラムサイズ
        n: 入力要素数
        atomic_kind: 原子的プリミティブ（"inc", "add", "cas", "xcg"）
        hardware: GPU特性
        beta_dtype: ヒストグラム要素型
        locmem_words_per_thread: スレッドあたりの共有メモリ語数（省略時は設定値）

    Returns:
        SizingPlan

    Raises:
        SizingInfeasibleError: 多重度1でも共有メモリに収まらない場合
    """
    atomic = atomic_primitive(atomic_kind)
    beta_dtype = np.dtype(beta_dtype)
    atomic.check_beta(beta_dtype)
    if locmem_words_per_thread is None:
        locmem_words_per_thread = config.locmem_words_per_thread()
    return _size_plan(int(h), int(n), atomic, hardware, beta_dtype, int(locmem_words_per_thread))


@lru_cache(maxsize=256)
def _size_plan(h, n, atomic, hardware, beta_dtype, locmem_words_per_thread):
    if h <= 0:
        raise ValueError(f"ヒストグラムサイズは正である必要があります: {h}")
    if n <= 0:
        raise ValueError(f"入力要素数は正である必要があります: {n}")
    if locmem_words_per_thread <= 0:
        raise ValueError(f"locmem_words_per_thread は正である必要があります: {locmem_words_per_thread}")

    block = hardware.max_threads_per_block
    lmem = local_memory_budget(hardware, locmem_words_per_thread)
    num_blocks = (hardware.num_threads(n) + block - 1) // block

    # 入力が少なすぎる場合に多重度を抑える上限
    work_asymp_m_max = n // (config.Q_SMALL * num_blocks * h)

    elms_per_block = (n + num_blocks - 1) // num_blocks
    el_size = atomic.footprint(beta_dtype)
    m_prime = min(lmem / el_size, float(elms_per_block)) / h

    m = max(1, min(math.floor(m_prime), block))
    m = min(m, work_asymp_m_max)
    if m <= 0:
        raise SizingInfeasibleError(
            f"サブヒストグラム多重度が不正です: M={m}, H={h}, N={n}", h=h, m=m
        )

    chunk_len = lmem // (el_size * m)
    if chunk_len <= 0:
        raise SizingInfeasibleError(
            f"共有メモリ {lmem} バイトにビンが1つも収まりません: el_size={el_size}, M={m}", h=h, m=m
        )
    num_chunks = (h + chunk_len - 1) // chunk_len
    hchunk = (h + num_chunks - 1) // num_chunks

    plan = SizingPlan(
        h=h,
        n=n,
        m=m,
        num_chunks=num_chunks,
        bins_per_chunk=hchunk,
        shared_mem_bytes=m * hchunk * el_size,
        num_blocks=num_blocks,
        block_size=block,
        el_size=el_size,
        atomic_kind=atomic.name,
        beta_dtype=beta_dtype,
    )
    if config.debug_info():
        print(
            f"[size_plan] M: {plan.m}, num-chunks: {plan.num_chunks}, "
            f"H: {h}, Hchunk: {hchunk}, atomic_kind= {atomic.name}, shmem: {plan.shared_mem_bytes}"
        )
    return plan


def clear_plan_cache():
    """プランのキャッシュを破棄"""
    _size_plan.cache_clear()


__all__ = [
    "local_memory_budget",
    "size_plan",
    "clear_plan_cache",
]
