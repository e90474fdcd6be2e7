"""ヒストグラム計算のエラー定義"""


class HistogramError(Exception):
    """gpuhisto 関連エラーの基底クラス"""
    pass


class SizingInfeasibleError(HistogramError):
    """サブヒストグラム多重度・チャンク分割が共有メモリに収まらない場合のエラー"""

    def __init__(self, message: str, h: int = None, m: int = None):
        super().__init__(message)
        self.h = h
        self.m = m


class IndexOutOfRangeError(HistogramError):
    """map関数が [0, H) の範囲外のビンを返した場合のエラー"""

    def __init__(self, message: str, count: int = 0, first_position: int = -1):
        super().__init__(message)
        self.count = count
        self.first_position = first_position


class DeviceAllocationError(HistogramError):
    """デバイスバッファの確保に失敗した場合のエラー"""
    pass


class ValidationMismatchError(HistogramError):
    """GPU結果が参照ヒストグラムと一致しない場合のエラー"""

    def __init__(self, message: str, index: int = -1, actual=None, expected=None):
        super().__init__(message)
        self.index = index
        self.actual = actual
        self.expected = expected


__all__ = [
    "HistogramError",
    "SizingInfeasibleError",
    "IndexOutOfRangeError",
    "DeviceAllocationError",
    "ValidationMismatchError",
]
