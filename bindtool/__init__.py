"""bindtool - native library binding generator

型付きIRから、ホスト言語バインディングとC ABIグルーを生成する。
"""

__version__ = "0.1.0"
