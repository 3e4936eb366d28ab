"""
CLI 命令模块 - warelay 的所有命令行命令定义。

本模块使用 Typer 框架定义 warelay 的 CLI 命令：
- onboard：生成默认配置文件
- serve：启动 Socket.IO 中继服务
- status：查看配置、已保存凭证的用户和聊天快照
- logout：删除某个用户保存的凭证

技术栈：
- Typer：CLI 框架（基于 Click，支持类型注解自动生成帮助文档）
- Rich：终端美化输出（表格、颜色）
- loguru：运行日志（serve 命令按配置设置级别和文件输出）
"""

import asyncio
import sys
from datetime import datetime

import typer
from loguru import logger
from rich.console import Console
from rich.table import Table

from warelay import __logo__, __version__

# 创建 Typer 应用实例（CLI 根命令）
app = typer.Typer(
    name="warelay",
    help=f"{__logo__} warelay - WhatsApp session relay",
    no_args_is_help=True,  # 无参数时显示帮助信息
)

console = Console()


def version_callback(value: bool):
    """版本号回调：当用户传入 --version 参数时，打印版本号并退出。"""
    if value:
        console.print(f"{__logo__} warelay v{__version__}")
        raise typer.Exit()


@app.callback()
def main(
    version: bool = typer.Option(
        None, "--version", callback=version_callback, is_eager=True
    ),
):
    """warelay CLI 根命令回调。处理全局选项（如 --version）。"""
    pass


def _setup_logging(level: str, file: str = "", rotation: str = "10 MB") -> None:
    """替换 loguru 默认的 sink：终端按 level 输出，配置了 file 时另写一份轮转日志。"""
    logger.remove()
    logger.add(sys.stderr, level=level.upper())
    if file:
        from pathlib import Path

        path = Path(file).expanduser()
        path.parent.mkdir(parents=True, exist_ok=True)
        logger.add(path, level="DEBUG", rotation=rotation, enqueue=True)


# ============================================================================
# Onboard / Setup
# ============================================================================


@app.command()
def onboard():
    """
    初始化 warelay 配置。

    在 ~/.warelay/ 下创建默认配置文件 config.json，并创建数据目录。
    """
    from warelay.config.loader import get_config_path, save_config
    from warelay.config.schema import Config
    from warelay.utils.helpers import ensure_dir

    config_path = get_config_path()

    if config_path.exists():
        console.print(f"[yellow]Config already exists at {config_path}[/yellow]")
        if not typer.confirm("Overwrite?"):
            raise typer.Exit()

    config = Config()
    save_config(config)
    console.print(f"[green]✓[/green] Created config at {config_path}")

    ensure_dir(config.auth_path)
    ensure_dir(config.stores_path)
    console.print(f"[green]✓[/green] Data directory at {config.data_path}")

    console.print(f"\n{__logo__} warelay is ready!")
    console.print("\nNext steps:")
    console.print("  1. Start the WhatsApp bridge (ws://localhost:3001 by default)")
    console.print("  2. Run: [cyan]warelay serve[/cyan]")


# ============================================================================
# Serve
# ============================================================================


@app.command()
def serve(
    port: int = typer.Option(None, "--port", "-p", help="Socket.IO port (overrides config)"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Verbose output"),
):
    """
    启动 warelay 中继服务。

    1. 加载配置并按 logging 配置设置日志输出
    2. 组装注册表、缓存、凭证存储、编排器和 Socket.IO 服务
    3. 运行直到 Ctrl+C，退出时关闭所有会话并落盘缓存
    """
    from warelay.config.loader import load_config
    from warelay.relay.app import RelayApp

    config = load_config()
    if port is not None:
        config.server.port = port

    _setup_logging(
        "DEBUG" if verbose else config.logging.level,
        config.logging.file,
        config.logging.rotation,
    )

    console.print(f"{__logo__} Starting warelay on {config.server.host}:{config.server.port}...")
    console.print(f"[green]✓[/green] Bridge: {config.bridge.url}")
    console.print(f"[green]✓[/green] Data: {config.data_path}")

    relay = RelayApp(config)
    try:
        asyncio.run(relay.run())
    except KeyboardInterrupt:
        console.print("\nShutting down...")


# ============================================================================
# Status / Logout
# ============================================================================


@app.command()
def status():
    """
    显示 warelay 状态。

    展示内容：
    - 配置文件路径和数据目录
    - 服务端口与桥接地址
    - 已保存凭证的用户，以及各自聊天快照中的群组数量
    """
    from warelay.config.loader import get_config_path, load_config
    from warelay.credentials.store import FileCredentialStore
    from warelay.store.manager import UserStore, UserStoreManager

    config_path = get_config_path()
    config = load_config()
    data_path = config.data_path

    console.print(f"{__logo__} warelay Status\n")
    console.print(f"Config: {config_path} {'[green]✓[/green]' if config_path.exists() else '[red]✗[/red]'}")
    console.print(f"Data: {data_path} {'[green]✓[/green]' if data_path.exists() else '[red]✗[/red]'}")
    console.print(f"Listen: {config.server.host}:{config.server.port}")
    console.print(f"Bridge: {config.bridge.url}")

    users = FileCredentialStore(config.auth_path).list_users()
    if not users:
        console.print("\n[dim]No saved WhatsApp sessions.[/dim]")
        return

    manager = UserStoreManager(config.stores_path)
    table = Table(title="Saved sessions")
    table.add_column("User", style="cyan")
    table.add_column("Groups")
    table.add_column("Snapshot")

    for user_id in users:
        path = manager.store_path(user_id)
        store = UserStore(user_id, path)
        store.read_from_file()
        if path.exists():
            saved = datetime.fromtimestamp(path.stat().st_mtime).strftime("%Y-%m-%d %H:%M")
        else:
            saved = "[dim]none[/dim]"
        table.add_row(user_id, str(len(store.chats.list_groups())), saved)

    console.print()
    console.print(table)


@app.command()
def logout(
    user_id: str = typer.Argument(..., help="User whose saved WhatsApp credentials should be removed"),
):
    """删除用户保存的凭证，下次 auth 时需要重新扫码。"""
    from warelay.config.loader import load_config
    from warelay.credentials.store import FileCredentialStore

    config = load_config()
    store = FileCredentialStore(config.auth_path)

    if not asyncio.run(store.delete(user_id)):
        console.print(f"[yellow]No saved credentials for {user_id}[/yellow]")
        raise typer.Exit(1)
    console.print(f"[green]✓[/green] Removed credentials for {user_id}")


if __name__ == "__main__":
    app()
