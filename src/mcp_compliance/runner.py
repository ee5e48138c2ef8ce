"""Scenario runner: drive an SDK client against an SDK server through an interceptor.

Each SDK directory provides two executables, ``test-client`` and
``test-server``. For pipe scenarios the client spawns this package's stdio
interceptor, which in turn spawns the server. For HTTP scenarios the server is
started on ``10000 + scenario id`` and an in-process SSE interceptor listens
on ``1000`` above that.
"""

import asyncio
import itertools
import os
import shutil
import sys
import tempfile
import time
from pathlib import Path
from typing import Dict, Iterable, List, Optional, Sequence, Union

from .capture import CaptureWriter
from .comparator import compare_logs
from .errors import ScenarioRunError
from .interceptors import SSEInterceptor
from .models import Scenario, ScenarioCatalog, ScenarioResult, Transport
from .shared.config import Config
from .shared.logger import log_debug, log_error, log_info, log_warning
from .validation import normalize_log, parse_capture, validate_log

SCENARIO_PORT_BASE = 10000
MITM_PORT_OFFSET = 1000
SERVER_HOST = "127.0.0.1"

CLIENT_BINARY = "test-client"
SERVER_BINARY = "test-server"


def golden_path(goldens_dir: Union[str, Path], scenario_id: int) -> Path:
    return Path(goldens_dir) / f"{scenario_id}.jsonl"


async def wait_for_port(host: str, port: int, timeout: float) -> None:
    """Poll until ``host:port`` accepts TCP connections."""
    deadline = time.monotonic() + timeout
    while True:
        try:
            _, writer = await asyncio.open_connection(host, port)
        except OSError:
            if time.monotonic() >= deadline:
                raise ScenarioRunError(f"Server on {host}:{port} not ready after {timeout}s")
            await asyncio.sleep(0.1)
            continue
        writer.close()
        await writer.wait_closed()
        return


async def terminate(process: asyncio.subprocess.Process, grace_period: float) -> None:
    """SIGTERM, then SIGKILL once ``grace_period`` runs out."""
    if process.returncode is not None:
        return
    try:
        process.terminate()
        await asyncio.wait_for(process.wait(), timeout=grace_period)
    except ProcessLookupError:
        pass
    except asyncio.TimeoutError:
        process.kill()
        await process.wait()


class ScenarioRunner:
    """Run one scenario for a client/server SDK pair and check it against its golden."""

    component = "runner"

    def __init__(
        self,
        client_sdk: str,
        server_sdk: str,
        scenario: Scenario,
        goldens_dir: Optional[Union[str, Path]] = None,
        sdk_root: Optional[Union[str, Path]] = None,
        python: Optional[str] = None,
        scenarios_path: Optional[Union[str, Path]] = None,
    ):
        self.client_sdk = client_sdk
        self.server_sdk = server_sdk
        self.scenario = scenario
        self.goldens_dir = Path(goldens_dir or Config.GOLDENS_DIR)
        self.sdk_root = Path(sdk_root) if sdk_root else Config.sdk_root()
        self.python = python or sys.executable
        # children run from sdk_root, so relative catalog paths are resolved here
        self.scenarios_path = Path(scenarios_path or Config.SCENARIOS_PATH).resolve()

    @property
    def transport(self) -> Transport:
        return self.scenario.transport

    @property
    def client_binary(self) -> Path:
        return self.sdk_root / self.client_sdk / CLIENT_BINARY

    @property
    def server_binary(self) -> Path:
        return self.sdk_root / self.server_sdk / SERVER_BINARY

    @property
    def golden(self) -> Path:
        return golden_path(self.goldens_dir, self.scenario.id)

    def _result(self, success: bool, **kwargs) -> ScenarioResult:
        return ScenarioResult(
            scenario_id=self.scenario.id,
            client_sdk=self.client_sdk,
            server_sdk=self.server_sdk,
            transport=self.transport,
            success=success,
            **kwargs,
        )

    async def run(self) -> ScenarioResult:
        """Run the scenario into a temporary capture and compare it with the golden."""
        started = time.monotonic()
        if not self.golden.exists():
            return self._result(False, error=f"Golden file not found: {self.golden}")

        temp_dir = tempfile.mkdtemp(prefix=f"cross-sdk-{self.client_sdk}-{self.server_sdk}-")
        log_path = Path(temp_dir) / f"{self.scenario.id}.jsonl"
        try:
            await self.record(log_path)

            captured = validate_log(parse_capture(log_path).messages)
            golden = validate_log(parse_capture(self.golden).messages)
            comparison = compare_logs(normalize_log(golden), normalize_log(captured))
        except Exception as e:
            log_error(
                f"Scenario {self.scenario.id} failed",
                component=self.component,
                error=e,
                client_sdk=self.client_sdk,
                server_sdk=self.server_sdk,
            )
            return self._result(False, error=str(e), duration_ms=(time.monotonic() - started) * 1000)
        finally:
            shutil.rmtree(temp_dir, ignore_errors=True)

        return self._result(
            comparison.match,
            captured_log=captured,
            comparison=comparison,
            duration_ms=(time.monotonic() - started) * 1000,
        )

    async def record(self, log_path: Union[str, Path]) -> None:
        """Run the scenario once, writing the capture to ``log_path``."""
        for binary in (self.client_binary, self.server_binary):
            if not binary.exists():
                raise ScenarioRunError(f"Binary not found: {binary}")

        log_info(
            f"Running scenario {self.scenario.id}: {self.scenario.description}",
            component=self.component,
            transport=self.transport.value,
            client_sdk=self.client_sdk,
            server_sdk=self.server_sdk,
        )
        if self.transport == Transport.STDIO:
            await self._run_stdio(Path(log_path))
        else:
            await self._run_sse(Path(log_path))

    def client_command(self, *transport_args: str) -> List[str]:
        return [
            str(self.client_binary),
            "--scenario-id", str(self.scenario.id),
            "--id", self.scenario.client_ids[0],
            *transport_args,
        ]

    def server_command(self, *transport_args: str) -> List[str]:
        return [
            str(self.server_binary),
            "--server-name", self.scenario.server_name,
            "--transport", *transport_args,
        ]

    async def _run_stdio(self, log_path: Path) -> None:
        interceptor = [
            self.python, "-m", "mcp_compliance",
            "mitm", "stdio",
            "--log", str(log_path),
            "--scenario-id", str(self.scenario.id),
            "--",
            *self.server_command("stdio"),
        ]
        env = {**os.environ, "SCENARIOS_PATH": str(self.scenarios_path)}
        await self._run_command(self.client_command("stdio", "--", *interceptor), env=env)

    async def _run_sse(self, log_path: Path) -> None:
        port = SCENARIO_PORT_BASE + self.scenario.id
        mitm_port = port + MITM_PORT_OFFSET

        server = await self._spawn(self.server_command("sse", "--host", SERVER_HOST, "--port", str(port)))
        try:
            await wait_for_port(SERVER_HOST, port, Config.SERVER_READY_TIMEOUT)

            with CaptureWriter(log_path, self.scenario.description) as writer:
                async with SSEInterceptor(
                    f"http://{SERVER_HOST}:{port}",
                    mitm_port,
                    client_id=Config.MITM_CLIENT_ID,
                    server_id=Config.MITM_SERVER_ID,
                    listen_host=SERVER_HOST,
                    observer=writer,
                ):
                    await self._run_command(self.client_command("sse", f"http://{SERVER_HOST}:{mitm_port}"))
        finally:
            await terminate(server, Config.SHUTDOWN_GRACE_SECONDS)
            log_debug("Scenario server stopped", component=self.component, port=port)

    async def _spawn(self, args: Sequence[str], env: Optional[Dict[str, str]] = None) -> asyncio.subprocess.Process:
        log_debug(f"Spawning {' '.join(args)}", component=self.component)
        try:
            return await asyncio.create_subprocess_exec(*args, cwd=str(self.sdk_root), env=env)
        except OSError as e:
            raise ScenarioRunError(f"Failed to start {args[0]}: {e}") from e

    async def _run_command(self, args: Sequence[str], env: Optional[Dict[str, str]] = None) -> None:
        process = await self._spawn(args, env=env)
        returncode = await process.wait()
        if returncode != 0:
            raise ScenarioRunError(f"Command exited with code {returncode}: {args[0]}")


def select_scenarios(
    catalog: ScenarioCatalog,
    scenario_ids: Optional[Iterable[int]] = None,
    component: str = "runner",
) -> List[Scenario]:
    """Scenarios in catalog order, limited to ``scenario_ids`` when given."""
    wanted = set(scenario_ids) if scenario_ids else None
    scenarios = [s for s in catalog.scenarios if wanted is None or s.id in wanted]
    if wanted:
        missing = wanted - {s.id for s in scenarios}
        if missing:
            log_warning(f"Unknown scenario ids skipped: {sorted(missing)}", component=component)
    return scenarios


def check_sdk_binaries(sdks: Iterable[str], sdk_root: Optional[Union[str, Path]] = None) -> None:
    """Raise :class:`ScenarioRunError` for the first SDK missing its client or server executable."""
    root = Path(sdk_root) if sdk_root else Config.sdk_root()
    for sdk in sdks:
        for name in (CLIENT_BINARY, SERVER_BINARY):
            binary = root / sdk / name
            if not binary.exists():
                raise ScenarioRunError(f"{sdk} {name} not found at {binary}")


async def generate_goldens(
    catalog: ScenarioCatalog,
    sdk: str,
    goldens_dir: Optional[Union[str, Path]] = None,
    scenario_ids: Optional[Iterable[int]] = None,
    sdk_root: Optional[Union[str, Path]] = None,
    scenarios_path: Optional[Union[str, Path]] = None,
) -> List[Path]:
    """Record a golden capture per scenario using one SDK as both client and server.

    Stops at the first failing scenario.
    """
    goldens_dir = Path(goldens_dir or Config.GOLDENS_DIR)
    goldens_dir.mkdir(parents=True, exist_ok=True)

    written = []
    for scenario in select_scenarios(catalog, scenario_ids, component="goldens"):
        runner = ScenarioRunner(
            sdk, sdk, scenario, goldens_dir=goldens_dir, sdk_root=sdk_root, scenarios_path=scenarios_path,
        )
        await runner.record(runner.golden)
        log_info(f"Golden written for scenario {scenario.id}", component="goldens", path=str(runner.golden))
        written.append(runner.golden)
    return written


async def run_cross_sdk(
    catalog: ScenarioCatalog,
    sdks: Sequence[str],
    scenario_ids: Optional[Iterable[int]] = None,
    goldens_dir: Optional[Union[str, Path]] = None,
    sdk_root: Optional[Union[str, Path]] = None,
    scenarios_path: Optional[Union[str, Path]] = None,
) -> List[ScenarioResult]:
    """Run the selected scenarios for every client x server pairing of ``sdks``.

    Every SDK's executables are checked before the first run.
    """
    check_sdk_binaries(sdks, sdk_root)
    scenarios = select_scenarios(catalog, scenario_ids, component="cross-sdk")

    results = []
    for client_sdk, server_sdk in itertools.product(sdks, repeat=2):
        log_info(f"{client_sdk} client -> {server_sdk} server", component="cross-sdk")
        for scenario in scenarios:
            runner = ScenarioRunner(
                client_sdk, server_sdk, scenario,
                goldens_dir=goldens_dir, sdk_root=sdk_root, scenarios_path=scenarios_path,
            )
            results.append(await runner.run())
    return results
