"""
デバイスメモリ操作ユーティリティ
"""

import numpy as np
from numba import cuda

from ..errors import DeviceAllocationError


def as_device_array(data, dtype=None):
    """
    入力をデバイス配列として返す

    numba のデバイス配列はそのまま、__cuda_array_interface__ を持つ配列（CuPy等）は
    ゼロコピーで包み、ホスト配列は転送する。
    """
    if hasattr(data, "copy_to_host"):
        return data
    if hasattr(data, "__cuda_array_interface__"):
        return cuda.as_cuda_array(data)
    host = np.ascontiguousarray(data, dtype=dtype)
    try:
        return cuda.to_device(host)
    except Exception as e:
        raise DeviceAllocationError(f"入力転送に失敗しました ({host.nbytes} バイト): {e}") from e


def device_full(shape, value, dtype):
    """value で埋めたデバイス配列を確保"""
    host = np.full(shape, value, dtype=dtype)
    try:
        return cuda.to_device(host)
    except Exception as e:
        raise DeviceAllocationError(f"デバイスバッファの確保に失敗しました {shape} {np.dtype(dtype)}: {e}") from e


def device_empty(shape, dtype):
    """未初期化のデバイス配列を確保"""
    try:
        return cuda.device_array(shape, dtype=dtype)
    except Exception as e:
        raise DeviceAllocationError(f"デバイスバッファの確保に失敗しました {shape} {np.dtype(dtype)}: {e}") from e


__all__ = ["as_device_array", "device_full", "device_empty"]
