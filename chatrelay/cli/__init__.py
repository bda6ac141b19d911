"""chatrelay 的 CLI 模块。"""
