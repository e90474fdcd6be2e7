"""ハードウェア記述子とサイズ決定プランの定義"""

from __future__ import annotations

import warnings
from dataclasses import dataclass
from typing import Iterator, Optional, Tuple

import numpy as np
from numba import cuda

from . import config

# デバイス特性取得に失敗した場合のデフォルト値
DEFAULT_DEVICE_PROPS = {
    "NAME": "Unknown",
    "MAX_THREADS_PER_BLOCK": 1024,
    "MAX_THREADS_PER_MULTI_PROCESSOR": 2048,
    "MULTIPROCESSOR_COUNT": 16,
    "MAX_SHARED_MEMORY_PER_BLOCK": 48 * 1024,
}


def get_device_properties(gpu_id: Optional[int] = None) -> dict:
    """GPU デバイス特性を取得"""
    if gpu_id is None:
        gpu_id = config.gpu_id()
    try:
        if gpu_id >= len(cuda.gpus):
            raise ValueError(f"GPU_ID が範囲外です: {gpu_id}")
        cuda.select_device(gpu_id)
        device = cuda.get_current_device()
        # シミュレータのデバイスは一部の属性を持たない
        name = getattr(device, "name", DEFAULT_DEVICE_PROPS["NAME"])
        props = {"NAME": name.decode("utf-8") if hasattr(name, "decode") else str(name)}
        for key in (
            "MAX_THREADS_PER_BLOCK",
            "MAX_THREADS_PER_MULTI_PROCESSOR",
            "MULTIPROCESSOR_COUNT",
            "MAX_SHARED_MEMORY_PER_BLOCK",
        ):
            props[key] = getattr(device, key, DEFAULT_DEVICE_PROPS[key])
        return props
    except Exception as e:
        warnings.warn(f"GPU特性取得失敗: {e}")
        return dict(DEFAULT_DEVICE_PROPS)


@dataclass(frozen=True)
class HardwareDescriptor:
    """サイズ決定に使うGPU特性（プロセス全体の状態ではなく値として渡す）"""
    max_threads_per_block: int
    hw_threads: int
    shared_mem_per_block: int
    name: str = "Unknown"

    def __post_init__(self):
        if self.max_threads_per_block <= 0:
            raise ValueError(f"max_threads_per_block は正である必要があります: {self.max_threads_per_block}")
        if self.hw_threads <= 0:
            raise ValueError(f"hw_threads は正である必要があります: {self.hw_threads}")
        if self.shared_mem_per_block <= 0:
            raise ValueError(f"shared_mem_per_block は正である必要があります: {self.shared_mem_per_block}")

    @classmethod
    def from_device_props(cls, props: dict) -> "HardwareDescriptor":
        """get_device_properties() 形式の辞書から生成"""
        block = props.get("MAX_THREADS_PER_BLOCK", DEFAULT_DEVICE_PROPS["MAX_THREADS_PER_BLOCK"])
        per_sm = props.get(
            "MAX_THREADS_PER_MULTI_PROCESSOR", DEFAULT_DEVICE_PROPS["MAX_THREADS_PER_MULTI_PROCESSOR"]
        )
        sm_count = props.get("MULTIPROCESSOR_COUNT", DEFAULT_DEVICE_PROPS["MULTIPROCESSOR_COUNT"])
        shmem = props.get("MAX_SHARED_MEMORY_PER_BLOCK", DEFAULT_DEVICE_PROPS["MAX_SHARED_MEMORY_PER_BLOCK"])
        return cls(
            max_threads_per_block=int(block),
            hw_threads=int(per_sm) * int(sm_count),
            shared_mem_per_block=int(shmem),
            name=str(props.get("NAME", "Unknown")),
        )

    @classmethod
    def from_device(cls, gpu_id: Optional[int] = None) -> "HardwareDescriptor":
        """現在のGPUから生成"""
        hw = cls.from_device_props(get_device_properties(gpu_id))
        if config.debug_info():
            hw.print_properties()
        return hw

    def num_threads(self, n: int) -> int:
        """起動するスレッド総数の上限（入力サイズとハードウェアスレッド数の小さい方）"""
        return min(n, self.hw_threads)

    def print_properties(self):
        print(f"Device name: {self.name}")
        print(f"Number of hardware threads: {self.hw_threads}")
        print(f"Block size: {self.max_threads_per_block}")
        print(f"Shared memory size: {self.shared_mem_per_block}")
        print("====")


@dataclass(frozen=True)
class SizingPlan:
    """サブヒストグラム多重度とチャンク分割の決定結果"""
    h: int
    n: int
    m: int                  # ブロックあたりのサブヒストグラム数
    num_chunks: int
    bins_per_chunk: int
    shared_mem_bytes: int
    num_blocks: int
    block_size: int
    el_size: int            # ビンあたりのバイト数（ロック語を含む）
    atomic_kind: str
    beta_dtype: np.dtype = np.dtype(np.int32)   # ヒストグラム要素型

    @property
    def coop(self) -> int:
        """同じサブヒストグラムを共有するスレッド数"""
        return (self.block_size + self.m - 1) // self.m

    @property
    def total_threads(self) -> int:
        return self.num_blocks * self.block_size

    def chunk_bounds(self) -> Iterator[Tuple[int, int]]:
        """各チャンクのビン範囲 [lb, ub) を順に返す"""
        for k in range(self.num_chunks):
            lb = k * self.bins_per_chunk
            ub = min(self.h, (k + 1) * self.bins_per_chunk)
            if lb >= ub:
                break
            yield lb, ub


__all__ = [
    "DEFAULT_DEVICE_PROPS",
    "get_device_properties",
    "HardwareDescriptor",
    "SizingPlan",
]
