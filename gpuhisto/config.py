"""
実行設定
========

環境変数から読み取る設定値。テストから上書きできるよう呼び出し時に評価する。

    GPUHISTO_LOCMEMW_PERTHD: スレッドあたりの共有メモリ語数（デフォルト: 12）
    GPUHISTO_GPU_ID:         使用するGPU番号（デフォルト: 0）
    GPUHISTO_DEBUG_INFO:     デバイス特性・サイズ決定の表示（デフォルト: 0）
    GPUHISTO_REDUCE_BLOCK:   縮約カーネルのブロックサイズ（デフォルト: 256）
    GPUHISTO_GPU_RUNS:       計測時の実行回数（デフォルト: 10）
"""

import os

# 共有メモリの語サイズ（バイト）
WORD_SIZE = 4

# 作業量による多重度上限の係数
Q_SMALL = 2


def _env_int(name: str, default: int) -> int:
    value = os.environ.get(name, str(default))
    try:
        return int(value)
    except ValueError:
        raise ValueError(f"{name} は整数である必要があります: {value!r}")


def locmem_words_per_thread() -> int:
    return _env_int("GPUHISTO_LOCMEMW_PERTHD", 12)


def gpu_id() -> int:
    return _env_int("GPUHISTO_GPU_ID", 0)


def debug_info() -> bool:
    return os.environ.get("GPUHISTO_DEBUG_INFO", "0").lower() in ("1", "true")


def reduce_block_size() -> int:
    return _env_int("GPUHISTO_REDUCE_BLOCK", 256)


def gpu_runs() -> int:
    return _env_int("GPUHISTO_GPU_RUNS", 10)


__all__ = [
    "WORD_SIZE",
    "Q_SMALL",
    "locmem_words_per_thread",
    "gpu_id",
    "debug_info",
    "reduce_block_size",
    "gpu_runs",
]
