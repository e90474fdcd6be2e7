"""サブヒストグラム間の縮約（fan-in）"""

from __future__ import annotations

from typing import Optional, Union

import numpy as np
from numba import cuda

from . import config
from .cuda_kernels.histo_kernels import build_reduce_kernel
from .cuda_kernels.memory_utils import as_device_array, device_empty
from .operators import CombineOp, combine_op


class CrossHistogramReducer:
    """R 個のサブヒストグラム（R × H）を1つのヒストグラム（H）に結合する"""

    def __init__(self, combine: Union[str, CombineOp], beta_dtype=np.int32, block_size: Optional[int] = None):
        self.combine = combine_op(combine)
        self.beta_dtype = np.dtype(beta_dtype)
        self.block_size = block_size or config.reduce_block_size()
        if self.block_size <= 0:
            raise ValueError(f"block_size は正である必要があります: {self.block_size}")
        self._kernel = build_reduce_kernel(self.combine.fn)

    def reduce_device(self, d_histos, d_histo, block_size: Optional[int] = None):
        """デバイス上の d_histos (R × H) を d_histo (H) へ縮約"""
        block_size = block_size or self.block_size
        if len(d_histos.shape) != 2:
            raise ValueError(f"R × H の2次元配列が必要です: shape={d_histos.shape}")
        num_histos, h = d_histos.shape
        if num_histos <= 0:
            raise ValueError("サブヒストグラムが1つもありません")
        if d_histo.shape[0] != h:
            raise ValueError(f"出力サイズが一致しません: {d_histo.shape[0]} != {h}")
        num_blocks_red = (h + block_size - 1) // block_size
        self._kernel[num_blocks_red, block_size](d_histos, d_histo, h, num_histos)

    def reduce(self, replicas) -> np.ndarray:
        """ホストまたはデバイス上の R × H 配列を縮約してホスト配列を返す"""
        d_histos = as_device_array(replicas, dtype=self.beta_dtype)
        if len(d_histos.shape) != 2:
            raise ValueError(f"R × H の2次元配列が必要です: shape={d_histos.shape}")
        d_histo = device_empty(d_histos.shape[1], self.beta_dtype)
        self.reduce_device(d_histos, d_histo)
        cuda.synchronize()
        return d_histo.copy_to_host()


__all__ = ["CrossHistogramReducer"]
