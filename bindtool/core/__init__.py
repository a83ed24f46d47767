"""bindtool.core: IRとバックエンド非依存の生成エンジン"""
