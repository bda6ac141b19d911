"""
chatrelay 的入口点。允许以 python -m chatrelay 运行。
"""

from chatrelay.cli.commands import app

if __name__ == "__main__":
    app()
