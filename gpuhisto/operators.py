"""
結合演算とヒストグラム問題の定義

ヒストグラム問題は (map関数, 結合演算, 原子的プリミティブ, 要素型) の組で、
カーネル生成時に一度だけディスパッチされる。
"""

from __future__ import annotations

from dataclasses import dataclass
from functools import lru_cache
from typing import Callable, Optional, Union

import numpy as np

from .cuda_kernels.atomic_primitives import AtomicPrimitive, atomic_primitive


def _add(a, b):
    return a + b


def _mul(a, b):
    return a * b


def _min(a, b):
    return a if a < b else b


def _max(a, b):
    return a if a > b else b


def _dtype_max(dtype):
    dtype = np.dtype(dtype)
    if dtype.kind == "f":
        return float("inf")
    return int(np.iinfo(dtype).max)


def _dtype_min(dtype):
    dtype = np.dtype(dtype)
    if dtype.kind == "f":
        return float("-inf")
    return int(np.iinfo(dtype).min)


@dataclass(frozen=True)
class CombineOp:
    """結合的かつ可換な二項演算と単位元"""
    name: str
    fn: Callable
    identity_fn: Callable
    # CPU参照計算用（ufunc.at が使える場合）
    ufunc: Optional[np.ufunc] = None

    def identity(self, dtype):
        return self.identity_fn(np.dtype(dtype))


ADD = CombineOp("add", _add, lambda dtype: 0, np.add)
MUL = CombineOp("mul", _mul, lambda dtype: 1, np.multiply)
MIN = CombineOp("min", _min, _dtype_max, np.minimum)
MAX = CombineOp("max", _max, _dtype_min, np.maximum)

COMBINE_OPS = {op.name: op for op in (ADD, MUL, MIN, MAX)}


def combine_op(op: Union[str, CombineOp]) -> CombineOp:
    """名前またはインスタンスから結合演算を取得"""
    if isinstance(op, CombineOp):
        return op
    try:
        return COMBINE_OPS[str(op).lower()]
    except KeyError:
        raise ValueError(f"未対応の結合演算: {op!r} (候補: {sorted(COMBINE_OPS)})")


@dataclass(frozen=True)
class HistogramProblem:
    """ヒストグラム計算1種類分の記述"""
    map_fn: Callable
    combine: CombineOp
    atomic: AtomicPrimitive
    beta_dtype: np.dtype
    name: str = "histogram"

    @property
    def el_size(self) -> int:
        return self.atomic.footprint(self.beta_dtype)

    def identity(self):
        return self.combine.identity(self.beta_dtype)


def histogram_problem(
    map_fn: Callable,
    combine: Union[str, CombineOp] = "add",
    atomic_kind: Union[str, AtomicPrimitive] = "add",
    beta_dtype=np.int32,
    name: Optional[str] = None,
) -> HistogramProblem:
    """
    ヒストグラム問題を作成し、プリミティブと要素型・結合演算の組み合わせを検証する

    Args:
        map_fn: x -> (index, value) を返す関数（CUDAデバイス関数としてコンパイルされる）
        combine: 結合演算（"add", "mul", "min", "max" または CombineOp）
        atomic_kind: 原子的プリミティブ（"inc", "add", "cas", "xcg"）
        beta_dtype: ヒストグラム要素型
        name: 表示用の名前
    """
    combine = combine_op(combine)
    atomic = atomic_primitive(atomic_kind)
    beta_dtype = np.dtype(beta_dtype)
    atomic.check_beta(beta_dtype)
    atomic.check_combine(combine)
    if name is None:
        name = getattr(map_fn, "__name__", "histogram")
    return HistogramProblem(map_fn, combine, atomic, beta_dtype, name)


@lru_cache(maxsize=256)
def modulo_count_map(h: int) -> Callable:
    """index = x % h, value = 1"""

    def modulo_count(x):
        return x % h, 1

    return modulo_count


@lru_cache(maxsize=256)
def modulo_quotient_map(h: int) -> Callable:
    """index = x % h, value = x // h"""

    def modulo_quotient(x):
        return x % h, x // h

    return modulo_quotient


__all__ = [
    "CombineOp",
    "ADD",
    "MUL",
    "MIN",
    "MAX",
    "COMBINE_OPS",
    "combine_op",
    "HistogramProblem",
    "histogram_problem",
    "modulo_count_map",
    "modulo_quotient_map",
]
