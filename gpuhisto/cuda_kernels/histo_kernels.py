"""
ヒストグラムCUDAカーネル
========================

ヒストグラム問題とプランの形ごとにカーネルを生成しキャッシュする。

- 共有メモリ協調カーネル: ブロック内に M 個のサブヒストグラム（1チャンク分）を持ち、
  全入力を走査してチャンク範囲のビンだけを原子的に更新した後、
  M 個をブロックのグローバルサブヒストグラム行へ畳み込む
- 縮約カーネル: 1スレッド1ビンでサブヒストグラム行を順に結合する
"""

from __future__ import annotations

from functools import lru_cache

import numba
import numpy as np
from numba import cuda

from .atomic_primitives import LOCK_DTYPE, AtomicPrimitive

# 範囲外インデックス検出用フラグ配列: [件数, 最小要素位置]
ERR_FLAGS_DTYPE = np.int64
ERR_NO_POSITION = np.iinfo(np.int64).max

# map関数・プランの形ごとにコンパイル済みカーネルを保持する上限
KERNEL_CACHE_SIZE = 64


@lru_cache(maxsize=KERNEL_CACHE_SIZE)
def compile_device_function(fn):
    """Python関数をCUDAデバイス関数としてコンパイル（関数単位でキャッシュ）"""
    return cuda.jit(device=True)(fn)


@lru_cache(maxsize=KERNEL_CACHE_SIZE)
def build_local_memory_kernel(
    map_fn,
    combine_fn,
    identity,
    atomic: AtomicPrimitive,
    beta_dtype: np.dtype,
    h: int,
    m: int,
    hchunk: int,
):
    """
    共有メモリ協調更新カーネルを生成

    Args:
        map_fn: x -> (index, value) のPython関数
        combine_fn: 結合演算のPython関数
        identity: 結合演算の単位元（共有メモリ初期値）
        atomic: ビン更新プリミティブ
        beta_dtype: ヒストグラム要素型
        h: ヒストグラムサイズ
        m: ブロックあたりのサブヒストグラム数
        hchunk: チャンクあたりのビン数
    """
    map_dev = compile_device_function(map_fn)
    combine_dev = compile_device_function(combine_fn)
    update = atomic.make_update(combine_dev, beta_dtype)

    beta_t = numba.from_dtype(np.dtype(beta_dtype))
    lock_t = numba.from_dtype(LOCK_DTYPE)
    sh_len = m * hchunk
    lock_len = sh_len if atomic.uses_locks else 1

    @cuda.jit
    def loc_mem_coop_kernel(inp, n, chunk_lb, chunk_ub, histos, err):
        sh_vals = cuda.shared.array(sh_len, dtype=beta_t)
        sh_locks = cuda.shared.array(lock_len, dtype=lock_t)
        tid = cuda.threadIdx.x
        block = cuda.blockDim.x

        # 共有メモリ初期化（チャンクごとに単位元へ戻す）
        for i in range(tid, sh_len, block):
            sh_vals[i] = identity
        for i in range(tid, lock_len, block):
            sh_locks[i] = 0
        cuda.syncthreads()

        # スレッド位置 mod M で担当サブヒストグラムを選ぶ
        offset = (tid % m) * hchunk
        gid = cuda.grid(1)
        stride = cuda.gridsize(1)
        for i in range(gid, n, stride):
            idx, val = map_dev(inp[i])
            if idx < 0 or idx >= h:
                if chunk_lb == 0:
                    cuda.atomic.add(err, 0, 1)
                    cuda.atomic.min(err, 1, i)
            elif idx >= chunk_lb and idx < chunk_ub:
                update(sh_vals, sh_locks, offset + (idx - chunk_lb), val)
        cuda.syncthreads()

        # M 個のサブヒストグラムをブロックの行 [chunk_lb, chunk_ub) へ畳み込む
        for b in range(tid, chunk_ub - chunk_lb, block):
            acc = sh_vals[b]
            for r in range(1, m):
                acc = combine_dev(acc, sh_vals[r * hchunk + b])
            histos[cuda.blockIdx.x, chunk_lb + b] = acc

    return loc_mem_coop_kernel


@lru_cache(maxsize=KERNEL_CACHE_SIZE)
def build_reduce_kernel(combine_fn):
    """サブヒストグラム間の縮約カーネルを生成"""
    combine_dev = compile_device_function(combine_fn)

    @cuda.jit
    def glbhist_reduce_kernel(histos, histo, h, num_histos):
        gid = cuda.grid(1)
        if gid < h:
            acc = histos[0, gid]
            for k in range(1, num_histos):
                acc = combine_dev(acc, histos[k, gid])
            histo[gid] = acc

    return glbhist_reduce_kernel


__all__ = [
    "ERR_FLAGS_DTYPE",
    "ERR_NO_POSITION",
    "KERNEL_CACHE_SIZE",
    "compile_device_function",
    "build_local_memory_kernel",
    "build_reduce_kernel",
]
