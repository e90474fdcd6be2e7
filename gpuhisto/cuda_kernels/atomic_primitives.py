"""
原子的更新プリミティブ
======================

ビン1つの更新方法（Increment / AtomicAdd / CAS ループ / Exchange ロック）を表す。
サイズ決定にはビンあたりのバイト数（footprint）を、カーネル生成には
デバイス関数 update(vals, locks, i, v) を提供する。
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Union

import numba
import numpy as np
from numba import cuda

# ExchangeLock のロック語
LOCK_DTYPE = np.dtype(np.int32)

# numba の atomic.add がサポートする型
_ATOMIC_ADD_DTYPES = frozenset(
    np.dtype(t) for t in (np.int32, np.uint32, np.int64, np.uint64, np.float32, np.float64)
)
# atomic.cas / atomic.exch がサポートする型
_ATOMIC_CAS_DTYPES = frozenset(np.dtype(t) for t in (np.int32, np.uint32, np.int64, np.uint64))
# 共有メモリに置けるヒストグラム要素型
_BETA_DTYPES = _ATOMIC_ADD_DTYPES


@dataclass(frozen=True)
class AtomicPrimitive:
    """ビン更新方法の基底クラス"""

    name = "base"
    uses_locks = False
    # 結合演算が加算に限られるか
    add_only = False

    def footprint(self, beta_dtype) -> int:
        """ビン1つあたりの共有メモリ使用量（バイト）"""
        size = np.dtype(beta_dtype).itemsize
        if self.uses_locks:
            size += LOCK_DTYPE.itemsize
        return size

    def check_beta(self, beta_dtype):
        dtype = np.dtype(beta_dtype)
        if dtype not in _BETA_DTYPES:
            raise TypeError(f"{self.name}: 未対応のヒストグラム要素型: {dtype}")

    def check_combine(self, combine):
        if self.add_only and combine.name != "add":
            raise ValueError(f"{self.name} は加算(add)専用です: combine={combine.name}")

    def make_update(self, combine_dev, beta_dtype):
        raise NotImplementedError


@dataclass(frozen=True)
class Increment(AtomicPrimitive):
    """bin += 1（寄与値は無視）"""

    name = "inc"
    add_only = True

    def make_update(self, combine_dev, beta_dtype):
        beta_t = numba.from_dtype(np.dtype(beta_dtype))

        @cuda.jit(device=True)
        def inc_update(vals, locks, i, v):
            cuda.atomic.add(vals, i, beta_t(1))

        return inc_update


@dataclass(frozen=True)
class AtomicAdd(AtomicPrimitive):
    """ネイティブの atomic add による bin += value"""

    name = "add"
    add_only = True

    def make_update(self, combine_dev, beta_dtype):
        beta_t = numba.from_dtype(np.dtype(beta_dtype))

        @cuda.jit(device=True)
        def add_update(vals, locks, i, v):
            cuda.atomic.add(vals, i, beta_t(v))

        return add_update


@dataclass(frozen=True)
class CompareAndSwapLoop(AtomicPrimitive):
    """読み出し → 結合 → CAS を成功するまで繰り返す"""

    name = "cas"

    def check_beta(self, beta_dtype):
        dtype = np.dtype(beta_dtype)
        if dtype not in _ATOMIC_CAS_DTYPES:
            raise TypeError(f"cas は整数型のみ対応しています: {dtype}")

    def make_update(self, combine_dev, beta_dtype):
        beta_t = numba.from_dtype(np.dtype(beta_dtype))

        @cuda.jit(device=True)
        def cas_update(vals, locks, i, v):
            x = beta_t(v)
            old = vals[i]
            assumed = old
            done = False
            while not done:
                assumed = old
                old = cuda.atomic.cas(vals, i, assumed, beta_t(combine_dev(assumed, x)))
                done = old == assumed

        return cas_update


@dataclass(frozen=True)
class ExchangeLock(AtomicPrimitive):
    """ビンごとのロック語を atomic exch で取得して更新する"""

    name = "xcg"
    uses_locks = True

    def make_update(self, combine_dev, beta_dtype):
        beta_t = numba.from_dtype(np.dtype(beta_dtype))

        # ロック取得に成功したレーンだけが更新して抜ける（ワープ内デッドロック回避）
        @cuda.jit(device=True)
        def xcg_update(vals, locks, i, v):
            x = beta_t(v)
            done = False
            while not done:
                if cuda.atomic.exch(locks, i, 1) == 0:
                    vals[i] = beta_t(combine_dev(vals[i], x))
                    cuda.threadfence_block()
                    cuda.atomic.exch(locks, i, 0)
                    done = True

        return xcg_update


ATOMIC_PRIMITIVES = {
    "inc": Increment(),
    "add": AtomicAdd(),
    "cas": CompareAndSwapLoop(),
    "xcg": ExchangeLock(),
}


def atomic_primitive(kind: Union[str, AtomicPrimitive]) -> AtomicPrimitive:
    """名前またはインスタンスからプリミティブを取得"""
    if isinstance(kind, AtomicPrimitive):
        return kind
    try:
        return ATOMIC_PRIMITIVES[str(kind).lower()]
    except KeyError:
        raise ValueError(f"未対応の原子的プリミティブ: {kind!r} (候補: {sorted(ATOMIC_PRIMITIVES)})")


__all__ = [
    "LOCK_DTYPE",
    "AtomicPrimitive",
    "Increment",
    "AtomicAdd",
    "CompareAndSwapLoop",
    "ExchangeLock",
    "ATOMIC_PRIMITIVES",
    "atomic_primitive",
]
