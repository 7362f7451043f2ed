"""
Command Line Interface for ecocompare.
"""

import logging
import sys
from typing import Optional, Tuple

import click

from . import __version__
from .core.comparator import CRITERIA_BY_NAME
from .core.config import AppConfig, ComparisonConfig, TelemetryMode
from .core.errors import ComparisonError
from .core.service import ComparisonService
from .core.session import SessionStatus
from .core.telemetry import init_feed, shutdown_feed

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)


@click.group()
@click.version_option(version=__version__, prog_name="ecocompare")
def main():
    """
    ecocompare: compare two inference models on accuracy, speed, memory
    and carbon footprint.
    """
    pass


def load_config(config: Optional[str]) -> AppConfig:
    """Load configuration from YAML or fall back to the demo defaults."""
    if config:
        click.echo(f"Loading configuration from: {config}")
        return AppConfig.from_yaml(config)
    return AppConfig.default()


@main.command()
@click.option('--model-a', '-a', required=True, help='Model A id')
@click.option('--model-b', '-b', required=True, help='Model B id')
@click.option('--workload', '-w', default='coco_val', help='Workload (test dataset) name')
@click.option('--batch-size', type=int, default=1, help='Batch size (1-32)')
@click.option('--iterations', '-n', type=int, default=100, help='Timed iterations (10-1000)')
@click.option('--carbon/--no-carbon', default=True, help='Collect energy and carbon metrics')
@click.option('--memory/--no-memory', default=True, help='Collect memory metrics')
@click.option('--timeout', type=float, default=None, help='Per-model run budget in seconds')
@click.option('--criteria', multiple=True, type=click.Choice(sorted(CRITERIA_BY_NAME)),
              help='Criteria to track (repeatable, default: all)')
@click.option('--config', '-c', type=click.Path(exists=True),
              help='Path to configuration file')
@click.option('--output-dir', '-o', type=click.Path(), default=None,
              help='Output directory for results')
@click.option('--time-scale', type=float, default=1.0,
              help='Pass-time multiplier for simulated models (0 = no sleeping)')
@click.option('--verbose', '-v', is_flag=True, help='Enable verbose output')
def compare(model_a: str, model_b: str, workload: str, batch_size: int, iterations: int,
            carbon: bool, memory: bool, timeout: Optional[float], criteria: Tuple[str, ...],
            config: Optional[str], output_dir: Optional[str], time_scale: float, verbose: bool):
    """
    Compare two registered models.

    Examples:

        ecocompare compare -a 1 -b 2

        ecocompare compare -a 1 -b 2 --iterations 200 --no-carbon

        ecocompare compare -a 3 -b 4 --criteria accuracy --criteria speed
    """
    if verbose:
        logging.getLogger().setLevel(logging.DEBUG)

    app_config = load_config(config)
    if output_dir:
        app_config.results_dir = output_dir

    comparison_config = ComparisonConfig(
        workload=workload,
        batch_size=batch_size,
        iterations=iterations,
        include_carbon_metrics=carbon,
        include_memory_metrics=memory,
        timeout_s=timeout,
    )

    try:
        service = ComparisonService.from_config(app_config, time_scale=time_scale)
    except ValueError as e:
        click.echo(f"Error: {e}")
        sys.exit(1)

    try:
        session_id = service.submit(
            comparison_config, model_a, model_b, criteria=list(criteria) or None
        )
    except ComparisonError as e:
        click.echo(f"Error: {e}")
        service.shutdown()
        shutdown_feed()
        sys.exit(1)

    session = service.get(session_id)
    click.echo(f"\n{'='*60}")
    click.echo(f"{session.model_a.label()}  vs  {session.model_b.label()}")
    click.echo(f"Workload: {workload}  Batch size: {batch_size}  Iterations: {iterations}")
    click.echo(f"{'='*60}\n")

    try:
        while not session.wait(timeout=0.5):
            pass
    except KeyboardInterrupt:
        click.echo("\nCancelling...")
        service.cancel(session_id)
        session.wait()

    try:
        print_session(session)
        results_path = service.save_results(session_id)
        click.echo(f"Results saved to: {results_path}")
    finally:
        service.shutdown()
        shutdown_feed()

    if session.status is SessionStatus.FAILED:
        sys.exit(1)


def print_session(session) -> None:
    """Print a session's results to console."""
    if session.status is SessionStatus.FAILED:
        failure = session.failure
        label = "Cancelled" if failure.cancelled else "Failed"
        click.echo(f"[{label}] {failure.message}")
        return

    result = session.result
    click.echo(f"{'Criterion':<18}{'Model A':>14}{'Model B':>14}{'A - B':>14}  Winner")
    click.echo("-" * 68)
    for r in result.criteria:
        click.echo(
            f"{r.criterion:<18}{r.value_a:>14.4g}{r.value_b:>14.4g}"
            f"{r.difference:>14.4g}  {r.winner.value}"
        )
    click.echo("-" * 68)
    click.echo(f"Overall:        {result.overall.value} ({result.wins_a}-{result.wins_b})")
    click.echo(f"Sustainability: {result.sustainability.value}")
    click.echo(f"Cost:           {result.cost.value}")

    for side, sample in (("A", session.sample_a), ("B", session.sample_b)):
        if not sample.carbon_collected:
            click.echo(f"Model {side}: carbon/energy not collected")
        if not sample.memory_collected:
            click.echo(f"Model {side}: memory not collected")
    click.echo("")


@main.command()
@click.option('--config', '-c', type=click.Path(exists=True),
              help='Path to configuration file')
def models(config: Optional[str]):
    """List registered models."""
    from .core.registry import InMemoryModelRegistry

    app_config = load_config(config)
    registry = InMemoryModelRegistry.from_catalog(app_config.models)

    click.echo(f"\n{'ID':<6}{'Name':<20}{'Framework':<12}{'Size (MB)':>10}  Engine")
    for descriptor in registry.list_models():
        click.echo(
            f"{descriptor.id:<6}{descriptor.name:<20}{descriptor.framework.value:<12}"
            f"{descriptor.size_mb:>10.1f}  {descriptor.engine}"
        )

    click.echo("\nWorkloads: " + ", ".join(sorted(app_config.workloads)))


@main.command()
@click.option('--count', '-n', type=int, default=5, help='Snapshots to print (0 = forever)')
@click.option('--interval', type=float, default=None, help='Refresh interval in seconds')
@click.option('--mode', type=click.Choice(['simulated', 'host']), default=None,
              help='Telemetry source')
@click.option('--config', '-c', type=click.Path(exists=True),
              help='Path to configuration file')
def telemetry(count: int, interval: Optional[float], mode: Optional[str], config: Optional[str]):
    """
    Stream live telemetry snapshots.

    Example:

        ecocompare telemetry --mode host --interval 1 -n 10
    """
    app_config = load_config(config)
    if interval is not None:
        app_config.telemetry.interval_s = interval
    if mode is not None:
        app_config.telemetry.mode = TelemetryMode(mode)

    feed = init_feed(app_config.telemetry, app_config.energy)
    stream = feed.subscribe()
    try:
        for printed, snapshot in enumerate(stream, start=1):
            click.echo(
                f"#{snapshot.sequence:<5} load={snapshot.system_load_pct:5.1f}%  "
                f"active={snapshot.active_comparisons:.0f}  queue={snapshot.queue_length:.0f}  "
                f"carbon={snapshot.carbon_g_per_hour:.1f} g/h  energy={snapshot.energy_kwh:.4f} kWh  "
                f"uptime={snapshot.uptime_pct:.2f}%  resp={snapshot.mean_response_ms:.0f} ms  "
                f"errors={snapshot.error_rate_pct:.2f}%"
            )
            if count and printed >= count:
                break
    except KeyboardInterrupt:
        pass
    finally:
        stream.close()
        shutdown_feed()


@main.command()
def info():
    """Show system and library information."""
    import platform

    import numpy as np
    import psutil

    click.echo("\nSystem Information:")
    click.echo(f"  Platform: {platform.platform()}")
    click.echo(f"  Python: {platform.python_version()}")
    click.echo(f"  Processor: {platform.processor()}")
    click.echo(f"  Physical cores: {psutil.cpu_count(logical=False)}")
    click.echo(f"  Logical cores: {psutil.cpu_count(logical=True)}")
    click.echo(f"  Memory: {psutil.virtual_memory().total / (1024**3):.1f} GB")

    click.echo("\nLibrary Versions:")
    click.echo(f"  NumPy: {np.__version__}")

    try:
        import openvino as ov
        click.echo(f"  OpenVINO: {ov.__version__}")
    except ImportError:
        click.echo("  OpenVINO: Not installed (simulated engine only)")

    try:
        import PIL
        click.echo(f"  Pillow: {PIL.__version__}")
    except ImportError:
        click.echo("  Pillow: Not installed")

    click.echo("\nCriteria:")
    for name, criterion in CRITERIA_BY_NAME.items():
        direction = "higher" if criterion.higher_is_better else "lower"
        click.echo(f"  - {name} ({direction} is better)")


if __name__ == "__main__":
    main()
