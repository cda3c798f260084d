from __future__ import annotations

import argparse
import logging
import sys
import threading
from typing import Optional

from pydantic import ValidationError
from rich.console import Console
from rich.logging import RichHandler

from ragprobe.config_schema import AppConfig, load_config
from ragprobe.llm.chat_service import LangChainChatService
from ragprobe.pipeline.core import ConfigurationError, EventChannel, RichProgressReporter, RunConfig
from ragprobe.pipeline.core.progress import DONE
from ragprobe.pipeline.runner import RunEngine

logger = logging.getLogger("ragprobe")


def build_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(
        description="ragprobe: generate and replay RAG evaluation question sets against a chat model."
    )
    sub = p.add_subparsers(dest="command", required=True)

    run = sub.add_parser("run", help="Execute one run and write results under <output_dir>/result/<run_id>/")
    run.add_argument("--config", type=str, help="Path to config file (.toml/.json/.yaml)")
    run.add_argument("--knowledge-dir", type=str, help="Override [io].knowledge_dir")
    run.add_argument(
        "--test-cases",
        type=str,
        help="Stored test cases JSON; switches the run to fixed-list mode",
    )
    run.add_argument("--output-dir", type=str, help="Override [io].output_dir")
    run.add_argument("--model", type=str, help="Override [llm].model (provider:model accepted)")
    run.add_argument("--debug", action="store_true", help="Verbose logging and per-question console output")

    serve = sub.add_parser("serve", help="Serve the NDJSON run stream over HTTP")
    serve.add_argument("--config", type=str, help="Path to config file (.toml/.json/.yaml)")
    serve.add_argument("--host", type=str, help="Override [server].host")
    serve.add_argument("--port", type=int, help="Override [server].port")
    serve.add_argument("--debug", action="store_true", help="Enable verbose debug")

    return p


def setup_logging(debug: bool, console: Optional[Console] = None):
    logging.basicConfig(
        level=logging.DEBUG if debug else logging.INFO,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=console, rich_tracebacks=True, show_path=debug)],
        force=True,
    )
    # chat clients are chatty at DEBUG
    for name in ("httpx", "httpcore", "openai"):
        logging.getLogger(name).setLevel(logging.WARNING)


def apply_run_overrides(app: AppConfig, args: argparse.Namespace) -> AppConfig:
    if args.knowledge_dir:
        app.io.knowledge_dir = args.knowledge_dir
    if args.test_cases:
        app.io.test_cases = args.test_cases
        app.runtime.source_mode = "fixed_list"
    if args.output_dir:
        app.io.output_dir = args.output_dir
    if args.model:
        app.llm.model = args.model
    if args.debug:
        app.runtime.debug = True
    return app


def run_command(app: AppConfig, console: Console) -> int:
    cfg = RunConfig.from_app(app)
    engine = RunEngine.from_config(cfg, LangChainChatService(app.llm))
    ctx, store = engine.prepare()
    channel = EventChannel()

    worker = threading.Thread(target=engine.execute, args=(ctx, store, channel), name=f"run-{ctx.run_id}", daemon=True)
    worker.start()

    terminal = None
    with RichProgressReporter(console, verbose=app.runtime.debug) as ui:
        try:
            terminal = ui.consume(channel)
        except KeyboardInterrupt:
            ctx.cancel.cancel("interrupted from keyboard")
            terminal = ui.consume(channel)
    worker.join()

    console.print(f"[bold]Results:[/bold] {store.results_path}")
    return 0 if terminal is not None and terminal.type == DONE else 1


def serve_command(app: AppConfig, args: argparse.Namespace):
    import uvicorn
    from ragprobe.server import create_app

    host = args.host or app.server.host
    port = args.port or app.server.port
    uvicorn.run(create_app(app), host=host, port=port, log_level="debug" if args.debug else "info")


def main():
    parser = build_parser()
    args = parser.parse_args()

    console = Console()
    setup_logging(args.debug, console)

    try:
        app = load_config(args.config)
    except (FileNotFoundError, ValueError, ValidationError) as e:
        logger.error("Invalid configuration: %s", e)
        sys.exit(1)

    if args.command == "serve":
        serve_command(app, args)
        return

    apply_run_overrides(app, args)
    try:
        code = run_command(app, console)
    except ConfigurationError as e:
        logger.error("%s", e)
        code = 1
    sys.exit(code)


if __name__ == "__main__":
    main()
