"""Command-line interface for the MCP compliance harness."""

import asyncio
import json
import signal
import sys
from pathlib import Path
from typing import List, Optional, Tuple

import click
from dotenv import load_dotenv
from pydantic import ValidationError
from rich.console import Console
from rich.markup import escape
from rich.table import Table
from rich.text import Text

from . import __version__
from .capture import CaptureWriter, DiagnosticObserver, FanoutObserver
from .comparator import compare_captures
from .errors import ComplianceError, ConfigurationError
from .interceptors import create_interceptor
from .models import ComparisonResult, InterceptorConfig, ScenarioResult, Transport
from .runner import ScenarioRunner, generate_goldens as record_goldens, run_cross_sdk, select_scenarios
from .shared.config import Config, get_config
from .shared.logger import log_info, log_warning
from .shared.python_logger_config import setup_python_logging, silence_noisy_loggers
from .validation import describe_capture, load_scenarios, parse_capture, validate_log

console = Console()
# stdout carries protocol bytes for the stdio interceptor
err_console = Console(stderr=True)


def load_env_config():
    """Load configuration from .env file."""
    env_file = Path(".env")
    if env_file.exists():
        load_dotenv(env_file)
        err_console.print(f"[dim]Loaded configuration from {env_file}[/dim]")


def fail(message: str, code: int = 1):
    err_console.print(f"[red]Error:[/red] {escape(message)}", soft_wrap=True)
    sys.exit(code)


@click.group()
@click.version_option(version=__version__, prog_name="mcp-compliance")
@click.option("--log-level", default=None, help="Diagnostic log level (TRACE, DEBUG, INFO, ...)")
def cli(log_level: Optional[str]):
    """MCP compliance harness - record, validate and compare protocol captures."""
    load_env_config()
    setup_python_logging(log_level or Config.LOG_LEVEL)
    silence_noisy_loggers()
    try:
        get_config()
    except ValueError as e:
        fail(str(e))


# ---------------------------------------------------------------------------
# mitm
# ---------------------------------------------------------------------------

def common_mitm_options(func):
    func = click.option("--scenario-id", type=int, help="Scenario whose description heads the log")(func)
    func = click.option("--server-id", default=None, help='Server identifier (default: "server")')(func)
    func = click.option("--client-id", default=None, help='Client identifier (default: "client")')(func)
    func = click.option("--log", "log_file", type=click.Path(dir_okay=False), help="Write the capture (JSONL) here")(func)
    return func


def http_mitm_options(func):
    func = click.option("--port", type=int, help="Port to listen on (required)")(func)
    func = click.option("--host", default=None, help="Host to listen on (default: 127.0.0.1)")(func)
    return func


@cli.group()
def mitm():
    """Run a man-in-the-middle interceptor that records a capture.

    \b
    Examples:
        mcp-compliance mitm stdio --log test.jsonl -- python server.py
        mcp-compliance mitm sse --port 8080 --log test.jsonl -- http://localhost:3000
        mcp-compliance mitm streamable-http --port 8080 --log test.jsonl -- http://localhost:3000
    """


def scenario_description(scenario_id: Optional[int]) -> Optional[str]:
    """Look up a scenario description; a missing catalog only costs the comment."""
    if scenario_id is None:
        return None
    try:
        catalog = load_scenarios(Config.SCENARIOS_PATH)
    except ComplianceError as e:
        log_warning(f"Could not load scenario description: {e}", component="cli")
        return None
    scenario = catalog.get_scenario(scenario_id)
    if scenario is None:
        log_warning(f"Scenario {scenario_id} not found in {Config.SCENARIOS_PATH}", component="cli")
        return None
    return scenario.description


def build_config(transport: Transport, target: Tuple[str, ...], **options) -> InterceptorConfig:
    fields = {key: value for key, value in options.items() if value is not None}
    if transport == Transport.STDIO:
        fields["command"] = target[0] if target else None
        fields["args"] = list(target[1:])
    else:
        if len(target) > 1:
            raise ConfigurationError(f"Expected a single target URL, got: {' '.join(target)}")
        fields["target_url"] = target[0] if target else None
    try:
        config = InterceptorConfig(transport=transport, **fields)
    except ValidationError as e:
        raise ConfigurationError(str(e)) from e
    config.validate_for_start()
    return config


async def run_stdio_mitm(config: InterceptorConfig, observer) -> int:
    interceptor = create_interceptor(config, observer)
    try:
        await interceptor.start()
        return await interceptor.wait()
    finally:
        await interceptor.close()


async def run_http_mitm(config: InterceptorConfig, observer) -> int:
    stop = asyncio.Event()
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, stop.set)

    interceptor = create_interceptor(config, observer)
    try:
        await interceptor.start()
        err_console.print(
            f"[green]MITM proxy listening on http://{config.listen_host}:{interceptor.port}[/green]"
            f" -> {config.target_url}"
        )
        await stop.wait()
        log_info("Shutting down", component="cli")
    finally:
        await interceptor.close()
    return 0


def run_mitm(transport: Transport, target: Tuple[str, ...], log_file: Optional[str], **options):
    try:
        config = build_config(transport, target, log_file=log_file, **options)
    except ConfigurationError as e:
        fail(str(e))

    writer = None
    observers: List = [DiagnosticObserver()]
    if config.log_file:
        try:
            writer = CaptureWriter(config.log_file, scenario_description(config.scenario_id))
        except OSError as e:
            fail(f"Cannot open log file {config.log_file}: {e}")
        observers.insert(0, writer)

    try:
        if transport == Transport.STDIO:
            code = asyncio.run(run_stdio_mitm(config, FanoutObserver(observers)))
        else:
            code = asyncio.run(run_http_mitm(config, FanoutObserver(observers)))
    except OSError as e:
        fail(f"Failed to start {transport.value} interceptor: {e}")
    finally:
        if writer is not None:
            writer.close()
    sys.exit(code)


@mitm.command("stdio")
@common_mitm_options
@click.argument("command", nargs=-1, required=True, type=click.UNPROCESSED)
def mitm_stdio(command, log_file, client_id, server_id, scenario_id):
    """Intercept a server spoken to over stdin/stdout: -- COMMAND [ARGS...]"""
    run_mitm(
        Transport.STDIO, command, log_file,
        client_id=client_id, server_id=server_id, scenario_id=scenario_id,
    )


@mitm.command("sse")
@common_mitm_options
@http_mitm_options
@click.argument("target", nargs=-1, required=True, type=click.UNPROCESSED)
def mitm_sse(target, host, port, log_file, client_id, server_id, scenario_id):
    """Intercept an HTTP+SSE server: -- URL"""
    run_mitm(
        Transport.SSE, target, log_file,
        listen_host=host, listen_port=port,
        client_id=client_id, server_id=server_id, scenario_id=scenario_id,
    )


@mitm.command("streamable-http")
@common_mitm_options
@http_mitm_options
@click.argument("target", nargs=-1, required=True, type=click.UNPROCESSED)
def mitm_streamable_http(target, host, port, log_file, client_id, server_id, scenario_id):
    """Intercept a streamable HTTP server: -- URL"""
    run_mitm(
        Transport.STREAMABLE_HTTP, target, log_file,
        listen_host=host, listen_port=port,
        client_id=client_id, server_id=server_id, scenario_id=scenario_id,
    )


# ---------------------------------------------------------------------------
# Capture inspection
# ---------------------------------------------------------------------------

def print_comparison(result: ComparisonResult):
    if result.match:
        console.print("[green]✓ Logs match[/green]")
        return

    table = Table(title="Differences", show_lines=True)
    table.add_column("Index", justify="right")
    table.add_column("Reason", style="yellow")
    table.add_column("Expected")
    table.add_column("Actual")

    for difference in result.differences or []:
        table.add_row(
            str(difference.index),
            difference.reason.value,
            Text(json.dumps(difference.expected.to_dict(), indent=2)) if difference.expected else "-",
            Text(json.dumps(difference.actual.to_dict(), indent=2)) if difference.actual else "-",
        )
    console.print(table)
    console.print(f"[red]✗ {len(result.differences or [])} difference(s)[/red]")


@cli.command()
@click.argument("golden", type=click.Path(exists=True, dir_okay=False))
@click.argument("actual", type=click.Path(exists=True, dir_okay=False))
@click.option("--json", "as_json", is_flag=True, help="Print the comparison result as JSON")
def compare(golden: str, actual: str, as_json: bool):
    """Compare a capture against a golden capture."""
    try:
        result = compare_captures(golden, actual)
    except ComplianceError as e:
        fail(str(e))

    if as_json:
        click.echo(json.dumps(result.to_dict(), indent=2, ensure_ascii=False))
    else:
        print_comparison(result)
    sys.exit(0 if result.match else 1)


@cli.command("validate-log")
@click.argument("path", type=click.Path(exists=True, dir_okay=False))
@click.option("--verbose", "-v", is_flag=True, help="List each message")
def validate_log_command(path: str, verbose: bool):
    """Parse and validate a capture file."""
    try:
        capture = parse_capture(path)
        messages = validate_log(capture.messages)
    except ComplianceError as e:
        fail(str(e))

    if capture.description:
        console.print(f"[dim]{escape(capture.description)}[/dim]")
    if verbose:
        for line in describe_capture(capture):
            console.print(escape(line))
    console.print(f"[green]✓ {len(messages)} valid message(s)[/green] in {path}")


@cli.command("validate-scenarios")
@click.argument("path", required=False, type=click.Path(dir_okay=False))
def validate_scenarios_command(path: Optional[str]):
    """Validate the scenario catalog (default: $SCENARIOS_PATH)."""
    path = path or Config.SCENARIOS_PATH
    try:
        catalog = load_scenarios(path)
    except ComplianceError as e:
        fail(str(e))
    console.print(
        f"[green]✓ Scenarios data is valid[/green]: "
        f"{len(catalog.servers)} server(s), {len(catalog.scenarios)} scenario(s)"
    )


# ---------------------------------------------------------------------------
# Scenario runs
# ---------------------------------------------------------------------------

def print_results(results: List[ScenarioResult]):
    table = Table(title="Cross-SDK results")
    table.add_column("Scenario", justify="right")
    table.add_column("Client")
    table.add_column("Server")
    table.add_column("Transport")
    table.add_column("Status")
    table.add_column("Detail")

    for result in results:
        if result.success:
            status, detail = "[green]PASS[/green]", ""
        elif result.error:
            status, detail = "[red]ERROR[/red]", escape(result.error)
        else:
            first = result.comparison.first_difference if result.comparison else None
            status = "[red]FAIL[/red]"
            detail = f"{first.reason.value} at index {first.index}" if first else ""
        table.add_row(
            str(result.scenario_id),
            result.client_sdk,
            result.server_sdk,
            result.transport.value,
            status,
            detail,
        )
    console.print(table)


@cli.command()
@click.option("--client-sdk", required=True, help="SDK directory providing test-client")
@click.option("--server-sdk", required=True, help="SDK directory providing test-server")
@click.option("--scenario-id", "scenario_ids", type=int, multiple=True, help="Run only these scenarios")
@click.option("--scenarios", "scenarios_path", type=click.Path(dir_okay=False), help="Scenario catalog")
@click.option("--goldens", "goldens_dir", type=click.Path(file_okay=False), help="Golden captures directory")
def run(client_sdk, server_sdk, scenario_ids, scenarios_path, goldens_dir):
    """Run scenarios between two SDKs and compare against the goldens."""
    scenarios_path = scenarios_path or Config.SCENARIOS_PATH
    try:
        catalog = load_scenarios(scenarios_path)
    except ComplianceError as e:
        fail(str(e))

    scenarios = select_scenarios(catalog, scenario_ids, component="cli")
    if not scenarios:
        fail("No scenarios selected")

    async def run_all() -> List[ScenarioResult]:
        results = []
        for scenario in scenarios:
            runner = ScenarioRunner(
                client_sdk, server_sdk, scenario, goldens_dir=goldens_dir, scenarios_path=scenarios_path,
            )
            results.append(await runner.run())
        return results

    results = asyncio.run(run_all())
    print_results(results)
    sys.exit(0 if all(r.success for r in results) else 1)


@cli.command("cross-test")
@click.argument("sdks", nargs=-1, required=True)
@click.option("--scenario-id", "scenario_ids", type=int, multiple=True, help="Run only these scenarios")
@click.option("--scenarios", "scenarios_path", type=click.Path(dir_okay=False), help="Scenario catalog")
@click.option("--goldens", "goldens_dir", type=click.Path(file_okay=False), help="Golden captures directory")
@click.option("--sdk-root", type=click.Path(file_okay=False), help="Directory holding the SDK directories")
def cross_test(sdks, scenario_ids, scenarios_path, goldens_dir, sdk_root):
    """Run every client x server pairing of SDKS against the goldens.

    \b
    Example:
        mcp-compliance cross-test typescript-sdk python-sdk --scenario-id 1
    """
    scenarios_path = scenarios_path or Config.SCENARIOS_PATH
    try:
        catalog = load_scenarios(scenarios_path)
        if not select_scenarios(catalog, scenario_ids, component="cli"):
            fail("No scenarios selected")
        console.print(f"Testing SDKs: {', '.join(sdks)}")
        results = asyncio.run(
            run_cross_sdk(
                catalog, list(sdks), scenario_ids,
                goldens_dir=goldens_dir, sdk_root=sdk_root, scenarios_path=scenarios_path,
            )
        )
    except ComplianceError as e:
        fail(str(e))

    print_results(results)
    passed = sum(1 for r in results if r.success)
    console.print(f"{passed}/{len(results)} passed")
    sys.exit(0 if passed == len(results) else 1)


@cli.command("generate-goldens")
@click.option("--sdk", required=True, help="Reference SDK used as both client and server")
@click.option("--scenario-id", "scenario_ids", type=int, multiple=True, help="Record only these scenarios")
@click.option("--scenarios", "scenarios_path", type=click.Path(dir_okay=False), help="Scenario catalog")
@click.option("--goldens", "goldens_dir", type=click.Path(file_okay=False), help="Golden captures directory")
def generate_goldens(sdk, scenario_ids, scenarios_path, goldens_dir):
    """Record golden captures with a reference SDK."""
    try:
        scenarios_path = scenarios_path or Config.SCENARIOS_PATH
        catalog = load_scenarios(scenarios_path)
        written = asyncio.run(
            record_goldens(catalog, sdk, goldens_dir, scenario_ids, scenarios_path=scenarios_path)
        )
    except ComplianceError as e:
        fail(str(e))
    console.print(f"[green]✓ {len(written)} golden(s) written[/green]")


def main():
    cli()


if __name__ == "__main__":
    main()
