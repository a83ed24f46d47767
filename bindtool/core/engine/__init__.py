"""bindtool.core.engine: Registry構築・フィルタ・マッピング・シグネチャ・所有権・出力"""
