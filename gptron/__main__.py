"""
gptron 模块入口点 - 支持通过 `python -m gptron` 方式启动

启动链路：
python -m gptron → __main__.py → cli/commands.py 中的 Typer app
"""

from gptron.cli.commands import app

if __name__ == "__main__":
    app()
