"""
CLI 命令模块 - gptron 的所有命令行命令定义。

本模块使用 Typer 框架定义 gptron 的 CLI 命令：
- onboard：生成默认配置文件
- gateway：启动机器人（Telegram 渠道 + 编排器 + 用户信箱）
- status：查看配置与密钥状态
- users：以表格形式查看已持久化的用户表

技术栈：
- Typer：CLI 框架（基于 Click，支持类型注解自动生成帮助文档）
- Rich：终端美化输出（表格、颜色）
"""

import asyncio
import sys

import typer
from loguru import logger
from rich.console import Console
from rich.table import Table

from gptron import __logo__, __version__

app = typer.Typer(
    name="gptron",
    help=f"{__logo__} gptron - Telegram ChatGPT session manager",
    no_args_is_help=True,
)

console = Console()


def version_callback(value: bool):
    """版本号回调：当用户传入 --version 参数时，打印版本号并退出。"""
    if value:
        console.print(f"{__logo__} gptron v{__version__}")
        raise typer.Exit()


@app.callback()
def main(
    version: bool = typer.Option(
        None, "--version", callback=version_callback, is_eager=True
    ),
):
    """gptron CLI 根命令回调。"""
    pass


def _setup_logging(verbose: bool) -> None:
    """配置 loguru 的输出级别（--verbose 时输出 DEBUG）。"""
    logger.remove()
    logger.add(sys.stderr, level="DEBUG" if verbose else "INFO")


# ============================================================================
# Onboard / Setup
# ============================================================================


@app.command()
def onboard():
    """在 ~/.gptron/ 下创建默认配置文件 config.json。"""
    from gptron.config.loader import get_config_path, save_config
    from gptron.config.schema import Config

    config_path = get_config_path()

    if config_path.exists():
        console.print(f"[yellow]Config already exists at {config_path}[/yellow]")
        if not typer.confirm("Overwrite?"):
            raise typer.Exit()

    save_config(Config())
    console.print(f"[green]✓[/green] Created config at {config_path}")

    console.print(f"\n{__logo__} gptron is ready!")
    console.print("\nNext steps:")
    console.print("  1. Add your Telegram bot token, admin ID and OpenAI key to [cyan]~/.gptron/config.json[/cyan]")
    console.print("  2. Run: [cyan]gptron gateway[/cyan]")


# ============================================================================
# Gateway / Server
# ============================================================================


@app.command()
def gateway(
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Verbose output"),
):
    """
    启动 gptron 机器人（核心启动命令）。

    1. 加载并校验配置（缺少关键配置时退出码为 1）
    2. 加载用户表
    3. 创建消息总线、Telegram 渠道、信箱注册表和编排器
    4. 并发运行渠道轮询与编排器主循环
    5. 退出时排空信箱并保存用户表
    """
    from gptron.agent.context import ContextBuilder
    from gptron.agent.exchange import ExchangeService
    from gptron.agent.loop import AgentLoop
    from gptron.bus.mailbox import MailboxRegistry
    from gptron.bus.queue import MessageBus
    from gptron.channels.telegram import TelegramChannel
    from gptron.config.loader import load_config
    from gptron.errors import PersistenceError
    from gptron.providers.litellm_provider import LiteLLMProvider
    from gptron.providers.speech import ElevenLabsSpeechProvider
    from gptron.providers.transcription import WhisperTranscriptionProvider
    from gptron.session.manager import SessionManager
    from gptron.session.usage import UsageLedger

    _setup_logging(verbose)
    config = load_config()

    missing = config.missing_settings()
    if missing:
        console.print(f"[red]Error: missing required settings: {', '.join(missing)}[/red]")
        console.print("Set them in ~/.gptron/config.json or via GPTRON_* environment variables")
        raise typer.Exit(1)

    sessions = SessionManager(config.data_path, config.admin_id)
    try:
        count = sessions.load_all()
    except PersistenceError as e:
        console.print(f"[red]Error: {e}[/red]")
        raise typer.Exit(1)

    console.print(f"{__logo__} Starting gptron gateway...")
    console.print(f"[green]✓[/green] Users: {count} loaded from {sessions.path}")

    openai = config.providers.openai
    eleven = config.providers.elevenlabs
    ledger = UsageLedger(limit=config.session.usage_limit)
    exchange = ExchangeService(
        provider=LiteLLMProvider(api_key=openai.api_key, api_base=openai.api_base),
        ledger=ledger,
        context=ContextBuilder(summarize_window=config.session.summarize_window),
        transcriber=WhisperTranscriptionProvider(
            api_key=openai.api_key,
            api_url=config.transcription.api_url,
            model=config.transcription.model,
        ),
        speech=ElevenLabsSpeechProvider(
            api_key=eleven.api_key,
            voice_id=eleven.voice_id,
            model_id=eleven.model_id,
            output_format=eleven.output_format,
            api_base=eleven.api_base,
        ),
        timeout=config.session.service_timeout,
    )
    if exchange.can_speak:
        console.print("[green]✓[/green] Voice replies: ElevenLabs")
    else:
        console.print("[yellow]Voice replies disabled (no ElevenLabs key)[/yellow]")

    bus = MessageBus()
    channel = TelegramChannel(config.telegram, bus)
    mailboxes = MailboxRegistry(
        channel,
        max_retries=config.mailbox.max_retries,
        retry_delay=config.mailbox.retry_delay,
    )
    agent = AgentLoop(bus, sessions, mailboxes, exchange, ledger)

    async def run():
        try:
            await asyncio.gather(
                agent.run(),
                channel.start(),
            )
        finally:
            console.print("\nShutting down...")
            agent.stop()
            await agent.drain()
            await mailboxes.stop_all()
            await channel.stop()
            try:
                sessions.save_all()
            except PersistenceError as e:
                logger.error(f"Final save failed: {e}")

    try:
        asyncio.run(run())
    except KeyboardInterrupt:
        pass


# ============================================================================
# Status / Users
# ============================================================================


def _mark(ok: bool) -> str:
    return "[green]✓[/green]" if ok else "[dim]not set[/dim]"


@app.command()
def status():
    """显示配置文件路径、数据目录与各项密钥的配置状态。"""
    from gptron.config.loader import get_config_path, load_config

    config_path = get_config_path()
    config = load_config()

    console.print(f"{__logo__} gptron Status\n")

    console.print(f"Config: {config_path} {'[green]✓[/green]' if config_path.exists() else '[red]✗[/red]'}")
    console.print(f"Data: {config.data_path} {'[green]✓[/green]' if config.data_path.exists() else '[red]✗[/red]'}")

    console.print(f"Telegram token: {_mark(bool(config.telegram.token))}")
    console.print(f"Admin ID: {config.admin_id if config.admin_id else '[dim]not set[/dim]'}")
    console.print(f"OpenAI: {_mark(bool(config.providers.openai.api_key))}")
    console.print(f"ElevenLabs: {_mark(bool(config.providers.elevenlabs.api_key))}")
    console.print(f"Usage limit: ${config.session.usage_limit:.2f}")


@app.command()
def users():
    """列出已持久化的用户：ID、状态、会话数、token 数与费用。"""
    from gptron.config.loader import load_config
    from gptron.errors import PersistenceError
    from gptron.session.manager import SessionManager
    from gptron.session.usage import UsageLedger

    config = load_config()
    sessions = SessionManager(config.data_path, config.admin_id)
    try:
        sessions.load_all()
    except PersistenceError as e:
        console.print(f"[red]Error: {e}[/red]")
        raise typer.Exit(1)

    all_users = sessions.all()
    if not all_users:
        console.print("No users yet.")
        return

    ledger = UsageLedger(limit=config.session.usage_limit)
    table = Table(title="Users")
    table.add_column("ID", style="cyan")
    table.add_column("Status")
    table.add_column("Conversations")
    table.add_column("Tokens")
    table.add_column("Cost")

    for u in all_users:
        active = len(u.active_conversations())
        table.add_row(
            str(u.id),
            f"{u.status.emoji} {u.status.value}",
            f"{active}/{len(u.conversations)}",
            str(ledger.total_usage(u).total_tokens),
            f"${ledger.total_cost(u).total:.4f}",
        )

    console.print(table)


if __name__ == "__main__":
    app()
