"""
gpu-histo - 共有メモリ版GPUヒストグラムの計測ツール

乱数入力に対して index = x % H のヒストグラムを計算・検証し、
結果をCSV1行で出力します。

使用例:
    # 基本的な使い方（H=256, N=1,000,000, atomic add）
    gpu-histo --hist-size 256

    # CASループで最大値ヒストグラム
    gpu-histo --hist-size 4096 --atomic cas --combine max --runs 20

環境変数:
    GPUHISTO_LOCMEMW_PERTHD: スレッドあたりの共有メモリ語数（デフォルト: 12）
    GPUHISTO_GPU_ID: 使用するGPU番号（デフォルト: 0）
    GPUHISTO_DEBUG_INFO: 1 でデバイス特性とサイズ決定を表示
"""

from __future__ import annotations

import argparse
import dataclasses
import sys

import numpy as np

from . import config
from .benchmark import CSV_HEADER, shmem_histo_run_valid
from .cuda_kernels.atomic_primitives import ATOMIC_PRIMITIVES
from .errors import HistogramError
from .operators import COMBINE_OPS, histogram_problem, modulo_count_map, modulo_quotient_map
from .types import HardwareDescriptor


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="gpu-histo",
        description="Shared-memory multi-histogram benchmark on CUDA GPUs",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
出力形式:
  H,N,atomic,combine,M,coop,num_chunks,shmem_bytes,micros
        """,
    )
    parser.add_argument("--hist-size", type=int, required=True, help="ヒストグラムサイズ H")
    parser.add_argument("--num-elements", type=int, default=1_000_000, help="入力要素数 N（デフォルト: 1000000）")
    parser.add_argument(
        "--atomic", choices=sorted(ATOMIC_PRIMITIVES), default="add", help="原子的プリミティブ（デフォルト: add）"
    )
    parser.add_argument("--combine", choices=sorted(COMBINE_OPS), default="add", help="結合演算（デフォルト: add）")
    parser.add_argument("--runs", type=int, default=None, help="計測回数（デフォルト: GPUHISTO_GPU_RUNS または 10）")
    parser.add_argument("--seed", type=int, default=0, help="乱数シード")
    parser.add_argument("--locmem-words", type=int, default=None, help="スレッドあたりの共有メモリ語数")
    parser.add_argument("--block-size", type=int, default=None, help="ブロックあたりの最大スレッド数を上書き")
    parser.add_argument("--hw-threads", type=int, default=None, help="ハードウェアスレッド総数を上書き")
    parser.add_argument("--shared-mem", type=int, default=None, help="ブロックあたりの共有メモリ（バイト）を上書き")
    parser.add_argument("--header", action="store_true", help="CSVヘッダーを出力")
    parser.add_argument("--verbose", action="store_true", help="詳細表示")
    return parser


def resolve_hardware(args) -> HardwareDescriptor:
    """デバイス特性を取得し、コマンドライン指定で上書き"""
    hw = HardwareDescriptor.from_device()
    overrides = {}
    if args.block_size is not None:
        overrides["max_threads_per_block"] = args.block_size
    if args.hw_threads is not None:
        overrides["hw_threads"] = args.hw_threads
    if args.shared_mem is not None:
        overrides["shared_mem_per_block"] = args.shared_mem
    if overrides:
        hw = dataclasses.replace(hw, **overrides)
    return hw


def main(argv=None) -> int:
    """メインエントリーポイント"""
    args = build_parser().parse_args(argv)
    runs = args.runs if args.runs is not None else config.gpu_runs()

    if args.combine == "add":
        map_fn = modulo_count_map(args.hist_size)
    else:
        map_fn = modulo_quotient_map(args.hist_size)

    try:
        problem = histogram_problem(map_fn, args.combine, args.atomic, np.int32)
        hardware = resolve_hardware(args)
    except (TypeError, ValueError) as e:
        print(f"エラー: {e}", file=sys.stderr)
        return 2

    rng = np.random.default_rng(args.seed)
    data = rng.integers(0, np.iinfo(np.int32).max, size=args.num_elements, dtype=np.int32)

    if args.verbose:
        hardware.print_properties()

    try:
        result = shmem_histo_run_valid(
            runs,
            args.hist_size,
            data,
            problem,
            hardware,
            locmem_words_per_thread=args.locmem_words,
            verbose=args.verbose,
        )
    except (HistogramError, ValueError) as e:
        print(f"エラー: {e}", file=sys.stderr)
        return 1

    if args.header:
        print(CSV_HEADER)
    print(result.to_csv())
    return 0


if __name__ == "__main__":
    sys.exit(main())
