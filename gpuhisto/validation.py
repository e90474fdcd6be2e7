"""
CPU参照ヒストグラムと検証
"""

from __future__ import annotations

from typing import Optional

import numpy as np

from .errors import IndexOutOfRangeError
from .operators import HistogramProblem

EPS = 0.0000001


def to_host(data) -> np.ndarray:
    """デバイス配列ならホストへコピー"""
    if hasattr(data, "copy_to_host"):
        return data.copy_to_host()
    return np.asarray(data)


def gold_seq_histo(problem: HistogramProblem, data, h: int) -> np.ndarray:
    """
    逐次実行による参照ヒストグラム

    result[b] = 単位元から、map(x).index == b となる全要素の value を結合したもの。
    Increment は value を無視して件数を数える。
    """
    host = to_host(data)
    combine = problem.combine
    histo = np.full(h, problem.identity(), dtype=problem.beta_dtype)
    if host.size == 0:
        return histo

    pairs = [problem.map_fn(x) for x in host]
    indices = np.fromiter((p[0] for p in pairs), dtype=np.int64, count=len(pairs))
    bad = np.flatnonzero((indices < 0) | (indices >= h))
    if bad.size > 0:
        raise IndexOutOfRangeError(
            f"map関数が範囲外のインデックスを返しました: 要素位置 {int(bad[0])}, index={int(indices[bad[0]])}, H={h}",
            count=int(bad.size),
            first_position=int(bad[0]),
        )

    if problem.atomic.name == "inc":
        values = np.ones(len(pairs), dtype=problem.beta_dtype)
    else:
        values = np.array([p[1] for p in pairs]).astype(problem.beta_dtype)

    if combine.ufunc is not None:
        combine.ufunc.at(histo, indices, values)
    else:
        for idx, val in zip(indices, values):
            histo[idx] = combine.fn(histo[idx], val)
    return histo


def first_mismatch(a, b, eps: float = EPS) -> Optional[int]:
    """最初に一致しないビンの位置（全て一致すれば None）"""
    a = np.asarray(a)
    b = np.asarray(b)
    if a.shape != b.shape:
        raise ValueError(f"ヒストグラムの形状が一致しません: {a.shape} != {b.shape}")
    if a.dtype.kind in "iu" and b.dtype.kind in "iu":
        diff = a != b
    else:
        a64 = a.astype(np.float64)
        b64 = b.astype(np.float64)
        diff = (np.abs(a64 - b64) > eps) | (np.isinf(a64) != np.isinf(b64))
    positions = np.flatnonzero(diff)
    if positions.size == 0:
        return None
    return int(positions[0])


def validate(a, b, eps: float = EPS) -> bool:
    """2つのヒストグラムが許容誤差内で一致するか"""
    i = first_mismatch(a, b, eps)
    if i is not None:
        print(f"INVALID RESULT, index: {i} val_A: {np.asarray(a)[i]}, val_B: {np.asarray(b)[i]}")
        return False
    return True


__all__ = ["EPS", "to_host", "gold_seq_histo", "first_mismatch", "validate"]
