"""CLI entrypoint for coinquery."""

import asyncio
import json
import logging
import sys
from pathlib import Path

import click
from dotenv import load_dotenv

from coinquery import __version__
from coinquery.config import CoreConfig
from coinquery.contracts import AnalysisRequest
from coinquery.errors import ValidationFault
from coinquery.llm.router import describe_routes
from coinquery.orchestrator.runtime import build_orchestrator
from coinquery.sources.tokens import TokenTable


DEFAULT_PERSONA = "You are a crypto assistant. Answer clearly and cite the figures you use."


@click.group()
@click.version_option(__version__)
@click.option(
    "--log-level",
    default="WARNING",
    type=click.Choice(["DEBUG", "INFO", "WARNING", "ERROR"], case_sensitive=False),
    help="Logging level (default: WARNING)",
)
@click.option(
    "--env-file",
    default=None,
    type=click.Path(dir_okay=False),
    help="Environment file to load (default: .env in the working directory)",
)
@click.pass_context
def main(ctx: click.Context, log_level: str, env_file: str | None):
    """coinquery - natural-language questions over crypto market and Kadena data."""
    logging.basicConfig(
        level=getattr(logging, log_level.upper()),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    load_dotenv(env_file)
    ctx.obj = CoreConfig.from_env()


@main.command()
@click.argument("question")
@click.option("--system-prompt", default=DEFAULT_PERSONA, help="Persona prompt for the analysis call")
@click.option("--model", default=None, help="Model route (see `coinquery routes`)")
@click.option("--json", "as_json", is_flag=True, help="Print the full result as JSON")
@click.pass_obj
def ask(config: CoreConfig, question: str, system_prompt: str, model: str | None, as_json: bool):
    """Answer a QUESTION end to end."""

    async def run():
        async with build_orchestrator(config) as orchestrator:
            return await orchestrator.analyze(
                AnalysisRequest(user_input=question, system_prompt=system_prompt, model=model)
            )

    result = asyncio.run(run())
    if as_json:
        click.echo(json.dumps(result.to_response(), indent=2, default=str))
    elif result.success:
        click.echo(result.data.analysis)
        if result.data.debug_info.execution_error:
            click.echo(f"\n⚠️  Data fetch degraded: {result.data.debug_info.execution_error}", err=True)
    else:
        click.echo(f"❌ {result.error.message}", err=True)

    if not result.success:
        sys.exit(1)


@main.command("exec")
@click.argument("program_file", type=click.Path(exists=True, dir_okay=False))
@click.option("--check", is_flag=True, help="Validate only; do not run")
@click.pass_obj
def exec_program(config: CoreConfig, program_file: str, check: bool):
    """Run a data-fetch program from PROGRAM_FILE through the sandbox."""
    text = Path(program_file).read_text(encoding="utf-8")

    async def run():
        async with build_orchestrator(config) as orchestrator:
            if check:
                return orchestrator.executor.validate(text)
            return await orchestrator.executor.execute(text)

    outcome = asyncio.run(run())
    if check:
        if outcome.is_valid:
            click.echo("✅ Program is valid")
            for warning in outcome.warnings or []:
                click.echo(f"⚠️  {warning}")
            return
        click.echo(f"❌ {outcome.error}", err=True)
        sys.exit(1)

    if outcome.ok:
        click.echo(json.dumps(outcome.value, indent=2, default=str))
        click.echo(f"\n({outcome.elapsed_ms:.0f}ms)", err=True)
    else:
        click.echo(f"❌ {outcome.error_message}", err=True)
        sys.exit(1)


@main.command()
@click.pass_obj
def routes(config: CoreConfig):
    """List model routes and whether each can be called."""
    for route in describe_routes(dict(config.routes)):
        ready = "✅" if route["credentials"] and route["sdk_installed"] else "❌"
        default = " (default)" if route["name"] == config.default_model else ""
        click.echo(f"{ready} {route['name']}{default}: {route['provider']} / {route['model']}")
        if route["endpoint"]:
            click.echo(f"   endpoint: {route['endpoint']}")


@main.command()
@click.option("--host", default="0.0.0.0", help="Bind address (default: 0.0.0.0)")
@click.option("--port", default=3004, type=int, help="Port (default: 3004)")
@click.pass_obj
def serve(config: CoreConfig, host: str, port: int):
    """Serve the HTTP API with uvicorn."""
    import uvicorn

    from coinquery.api.server import create_app

    uvicorn.run(create_app(config), host=host, port=port, log_level="info")


@main.command()
@click.pass_obj
def doctor(config: CoreConfig):
    """Check coinquery environment and configuration."""
    click.echo("🔍 coinquery doctor\n")
    click.echo(f"Python executable: {sys.executable}")
    click.echo(f"coinquery version: {__version__}")

    checks = [
        ("Mobula API key", bool(config.mobula_api_key)),
        ("LunarCrush API key", bool(config.lunarcrush_api_key)),
        ("Kadena indexer key", bool(config.kadena_api_key)),
        ("HTTP API keys", bool(config.api_keys)),
    ]
    click.echo("")
    for label, ok in checks:
        click.echo(f"{'✅' if ok else '❌'} {label}")
    click.echo(f"   Kadena endpoint: {config.kadena_endpoint}")

    try:
        tokens = TokenTable.load(config.coins_file)
        source = config.coins_file or "built-in"
        click.echo(f"\n✅ Coin table ({source}): {len(tokens)} lookup keys")
    except (OSError, ValueError) as e:
        click.echo(f"\n❌ Coin table {config.coins_file}: {e}")

    try:
        default_route = config.route_for(None)
        status = "✅" if default_route.has_credentials else "❌"
        click.echo(f"{status} Default model route: {default_route.name}")
    except ValidationFault as e:
        click.echo(f"❌ {e.message}")

    click.echo(f"   Wallet addresses: {', '.join(config.wallet_addresses)}")
    click.echo("\n✅ Environment check complete")


if __name__ == "__main__":
    main()
