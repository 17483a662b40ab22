"""Main CLI entry point."""

import sys
from typing import Optional

import click
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from static_edge.config.models import SiteConfig, normalize_domain
from static_edge.config.parser import Config
from static_edge.orchestrator.pipeline import PipelineDriver, PipelineResult, PipelineStatus
from static_edge.orchestrator.publish import ContentPublisher
from static_edge.orchestrator.status import StatusReport, StatusReporter
from static_edge.provisioners.distribution import DistributionConfigurator
from static_edge.provisioners.storage import StorageManager
from static_edge.state.checkpoint import CheckpointStore
from static_edge.state.models import ResourceStatus, Stage
from static_edge.utils.aws_client import AWSClientManager
from static_edge.utils.errors import ProvisioningError
from static_edge.utils.logging import get_logger, setup_logging
from static_edge.utils.retry import RetryStrategy

console = Console()
err_console = Console(stderr=True)
logger = get_logger(__name__)

STATUS_STYLES = {
    ResourceStatus.READY: "green",
    ResourceStatus.PENDING: "yellow",
    ResourceStatus.FAILED: "red",
    ResourceStatus.MISSING: "red",
    ResourceStatus.UNKNOWN: "dim",
}


@click.group()
@click.option('--profile', help='AWS profile to use')
@click.option('--region', help='Default AWS region for regional services')
@click.option('--log-level', default='info', type=click.Choice(['debug', 'info', 'warning', 'error']))
@click.option('--config', 'config_path', default=None, help='Path to static-edge.yaml')
@click.option('--state-dir', default=None, help='Directory holding checkpoint files')
@click.pass_context
def cli(ctx, profile, region, log_level, config_path, state_dir):
    """Provision secure static-site hosting on S3, CloudFront, Route 53 and ACM."""
    ctx.ensure_object(dict)
    ctx.obj['profile'] = profile
    ctx.obj['region'] = region
    ctx.obj['log_level'] = log_level
    ctx.obj['config_path'] = config_path
    ctx.obj['state_dir'] = state_dir
    ctx.obj.setdefault('client_factory', AWSClientManager)

    setup_logging(log_level)


def site_options(func):
    """Options that describe a site without a configuration file."""
    func = click.option('--distribution-id', help='Existing CloudFront distribution to use')(func)
    func = click.option('--bucket-region', help='Region of the bucket')(func)
    func = click.option('--bucket', help='Bucket holding the site content')(func)
    return func


def fail(error: ProvisioningError) -> None:
    """Print an error to stderr and exit with status 1."""
    err_console.print(error.to_user_message(), style="red", markup=False)
    sys.exit(1)


def load_config(ctx) -> Config:
    """Load and validate the configuration file."""
    try:
        return Config(ctx.obj['config_path']).load()
    except ProvisioningError as e:
        fail(e)


def resolve_site(config: Config, domain: str, bucket, bucket_region, distribution_id) -> SiteConfig:
    try:
        return config.get_site(
            domain,
            bucket=bucket,
            bucket_region=bucket_region,
            distribution_id=distribution_id,
        )
    except ProvisioningError as e:
        fail(e)


def create_clients(ctx) -> AWSClientManager:
    return ctx.obj['client_factory'](profile=ctx.obj['profile'], region=ctx.obj['region'])


def create_store(ctx, config: Config) -> CheckpointStore:
    return CheckpointStore(ctx.obj['state_dir'] or config.state_dir)


def create_retry_strategy(config: Config) -> RetryStrategy:
    return RetryStrategy.from_config(config.retry)


def create_driver(ctx, config: Config, site: SiteConfig) -> PipelineDriver:
    def on_stage(completed: Stage, current: Stage) -> None:
        console.print(f"[green]✓[/green] {completed.value} [dim]→[/dim] {current.value}")

    return PipelineDriver(
        site=site,
        clients=create_clients(ctx),
        store=create_store(ctx, config),
        polling=config.polling,
        retry=config.retry,
        max_conflict_retries=config.max_conflict_retries,
        on_stage=on_stage,
    )


def print_result(result: PipelineResult, title: str) -> None:
    """Summarize a pipeline run, exiting non-zero if it failed."""
    if result.is_failed():
        err_console.print(
            f"[red]{title} failed[/red] at stage [bold]{result.final_stage.value}[/bold] "
            f"after {result.duration:.1f}s"
        )
        fail(result.error)

    if result.status == PipelineStatus.NO_CHANGE:
        console.print(f"[green]{result.domain} is already provisioned[/green] (stage {result.final_stage.value})")
    else:
        console.print(
            f"[green]{title} complete[/green] for {result.domain}: "
            f"{result.start_stage.value} → {result.final_stage.value} in {result.duration:.1f}s"
        )

    for warning in result.warnings:
        console.print(f"[yellow]Warning:[/yellow] {warning}")

    if result.name_servers:
        console.print(Panel(
            "\n".join(result.name_servers),
            title=f"Name servers for {result.domain}",
            subtitle="Configure these at your domain registrar",
        ))
    if result.endpoint:
        console.print(f"CloudFront endpoint: [cyan]{result.endpoint}[/cyan]")
    if result.final_stage == Stage.DONE:
        console.print(f"Website: [cyan]https://{result.domain}[/cyan]")


@cli.command()
@click.argument('domain')
@site_options
@click.pass_context
def provision(ctx, domain, bucket, bucket_region, distribution_id):
    """Run or resume provisioning for DOMAIN."""
    config = load_config(ctx)
    site = resolve_site(config, domain, bucket, bucket_region, distribution_id)

    console.print(f"[bold]Provisioning[/bold] {site.domain} (bucket s3://{site.bucket})")
    result = create_driver(ctx, config, site).run()
    print_result(result, "Provisioning")


@cli.command()
@click.argument('domain')
@site_options
@click.pass_context
def harden(ctx, domain, bucket, bucket_region, distribution_id):
    """Move DOMAIN to an access-controlled origin and lock down its bucket."""
    config = load_config(ctx)
    site = resolve_site(config, domain, bucket, bucket_region, distribution_id)

    console.print(f"[bold]Hardening[/bold] {site.domain} (bucket s3://{site.bucket})")
    result = create_driver(ctx, config, site).harden()
    print_result(result, "Hardening")


@cli.command()
@click.argument('domain')
@site_options
@click.option('--format', 'output_format', type=click.Choice(['table', 'json']), default='table',
              help='Output format')
@click.pass_context
def status(ctx, domain, bucket, bucket_region, distribution_id, output_format):
    """Show the checkpoint stage and live resource status for DOMAIN."""
    config = load_config(ctx)
    site: Optional[SiteConfig] = None
    if bucket or config.find_site(domain):
        site = resolve_site(config, domain, bucket, bucket_region, distribution_id)

    reporter = StatusReporter(
        clients=create_clients(ctx),
        store=create_store(ctx, config),
        site=site,
        retry_strategy=create_retry_strategy(config),
    )
    try:
        report = reporter.report(site.domain if site else normalize_domain(domain))
    except ProvisioningError as e:
        fail(e)

    if output_format == 'json':
        _status_json(report)
    else:
        _status_table(report)


def _status_table(report: StatusReport) -> None:
    stage = report.stage.value if report.stage else "not provisioned"
    console.print(Panel(f"Stage: [bold]{stage}[/bold]", title=report.domain, style="bold blue"))

    table = Table(show_header=True, header_style="bold")
    table.add_column("Resource", style="cyan")
    table.add_column("Identifier")
    table.add_column("Status")
    table.add_column("Details", style="dim")

    for resource in report.resources:
        style = STATUS_STYLES.get(resource.status, "white")
        details = ", ".join(
            f"{key}={', '.join(value) if isinstance(value, list) else value}"
            for key, value in resource.details.items()
        )
        table.add_row(
            resource.kind.value,
            resource.identifier or "-",
            f"[{style}]{resource.status.value}[/{style}]",
            details,
        )

    console.print(table)


def _status_json(report: StatusReport) -> None:
    console.print_json(data={
        'domain': report.domain,
        'stage': report.stage.value if report.stage else None,
        'resources': [resource.model_dump(mode='json') for resource in report.resources],
    })


@cli.command()
@click.argument('domain')
@click.argument('directory', type=click.Path(exists=True, file_okay=False))
@site_options
@click.option('--no-invalidate', is_flag=True, help='Skip the CloudFront cache invalidation')
@click.pass_context
def publish(ctx, domain, directory, bucket, bucket_region, distribution_id, no_invalidate):
    """Upload DIRECTORY to the bucket of DOMAIN and invalidate the CDN cache."""
    config = load_config(ctx)
    site = resolve_site(config, domain, bucket, bucket_region, distribution_id)
    store = create_store(ctx, config)
    clients = create_clients(ctx)

    retry_strategy = create_retry_strategy(config)
    publisher = ContentPublisher(
        storage=StorageManager(clients, site.bucket_region, retry_strategy),
        distribution=DistributionConfigurator(clients, retry_strategy=retry_strategy),
    )

    try:
        checkpoint = store.load(site.domain)
        target = None
        if not no_invalidate:
            target = (checkpoint.distribution_id if checkpoint else None) or site.distribution_id
        result = publisher.publish(site, directory, distribution_id=target)
    except ProvisioningError as e:
        fail(e)

    console.print(f"[green]Published {len(result.uploaded)} file(s)[/green] to s3://{result.bucket}")
    if result.invalidation_id:
        console.print(f"Invalidation: [cyan]{result.invalidation_id}[/cyan]")


def main():
    """Main entry point."""
    cli(obj={})


if __name__ == '__main__':
    main()
