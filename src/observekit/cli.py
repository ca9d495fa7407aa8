"""
observekit demo entry point.

Usage:
    observekit [--url URL] [--config observekit.yaml] [--log-level INFO]
               [--log-format text|json] [--print-metrics [--metrics-format openmetrics]]

Sends one GET request inside a manually created observation and reports
the result through the handlers enabled in the configuration.
"""

from __future__ import annotations

import logging

import click
import httpx

from observekit.bootstrap import build_registry
from observekit.config import ClientSettings, Config, ObservabilitySettings
from observekit.log_correlation import JSON_LOG_FORMAT, TraceContextFilter, TraceJsonFormatter
from observekit.errors import ObservationError
from observekit.http_client import ObservedClient
from observekit.observation import Observation
from observekit.registry import ObservationRegistry

__all__ = ["LOG_FORMAT", "configure_logging", "main", "run_demo"]

log = logging.getLogger("observekit.demo")

LOG_FORMAT = "%(asctime)s %(levelname)-5s [%(trace_id)s,%(span_id)s] %(name)s: %(message)s"


def configure_logging(level: str = "INFO", log_format: str = "text") -> None:
    """Configure root logging so every record carries the current trace ids.

    ``log_format`` is ``text`` (LOG_FORMAT) or ``json`` (one object per line).
    """
    logging.basicConfig(level=level.upper(), format=LOG_FORMAT, force=True)
    for handler in logging.getLogger().handlers:
        handler.addFilter(TraceContextFilter())
        if log_format == "json":
            handler.setFormatter(TraceJsonFormatter(JSON_LOG_FORMAT))


def run_demo(registry: ObservationRegistry, client: ObservedClient, url: str) -> str:
    """Fetch *url* inside the ``my.observation`` observation and return the body."""

    def call_server() -> str:
        log.info("Will send a request to the server")
        response = client.get_text(url)
        log.info("Got response [%s]", response)
        return response

    # "my.observation" names metrics; "command-line-runner" names the span.
    return (
        Observation.create("my.observation", registry)
        .with_low_cardinality_tag("low.cardinality.key", "low cardinality value")
        .with_high_cardinality_tag("high.cardinality.key", "high cardinality value")
        .with_contextual_name("command-line-runner")
        .observe(call_server)
    )


def _load_config(config_path: str | None) -> Config:
    config = Config.load(config_path) if config_path else Config()
    return config.with_env()


@click.command()
@click.option("--url", default=None, help="URL to fetch (default: client.url from config)")
@click.option(
    "--config",
    "config_path",
    type=click.Path(exists=False, dir_okay=False),
    default=None,
    help="YAML configuration file",
)
@click.option(
    "--log-level",
    default="INFO",
    type=click.Choice(["DEBUG", "INFO", "WARNING", "ERROR"], case_sensitive=False),
    help="Root log level",
)
@click.option(
    "--log-format",
    default="text",
    type=click.Choice(["text", "json"]),
    help="Log line format",
)
@click.option("--print-metrics", is_flag=True, help="Print collected metrics after the request")
@click.option(
    "--metrics-format",
    default="prometheus",
    type=click.Choice(["prometheus", "openmetrics"]),
    help="Format for --print-metrics; openmetrics includes trace exemplars",
)
@click.pass_context
def main(
    ctx: click.Context,
    url: str | None,
    config_path: str | None,
    log_level: str,
    log_format: str,
    print_metrics: bool,
    metrics_format: str,
) -> None:
    """Send one observed HTTP request and export its telemetry."""
    configure_logging(log_level, log_format)

    try:
        config = _load_config(config_path)
        settings = ObservabilitySettings.from_config(config)
        client_settings = ClientSettings.from_config(config)
    except ObservationError as e:
        raise click.ClickException(str(e)) from e

    bundle = build_registry(settings)
    target = url or client_settings.url
    exit_code = 0
    try:
        with ObservedClient(
            bundle.registry,
            base_url=client_settings.base_url,
            timeout=client_settings.timeout,
        ) as client:
            run_demo(bundle.registry, client, target)
    except httpx.HTTPError as e:
        click.echo(f"Request to {target} failed: {e}", err=True)
        exit_code = 1
    finally:
        if print_metrics and bundle.collector is not None:
            if metrics_format == "openmetrics":
                click.echo(bundle.collector.export_openmetrics(), nl=False)
            else:
                click.echo(bundle.collector.export_prometheus(), nl=False)
        bundle.close()

    ctx.exit(exit_code)


if __name__ == "__main__":
    main()
