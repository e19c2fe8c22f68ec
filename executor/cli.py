"""Command-line client for the executor's task contract."""

import asyncio
import json
import sys

import click
import httpx

from common.config import ConfigProvider
from common.errors import ConfigError
from common.logger import setup_logger
from executor.blockchain.xchain_client import XchainClient

logger = setup_logger(__name__)


@click.group()
@click.option(
    "--conf",
    "conf_path",
    default="./conf/config.toml",
    show_default=True,
    type=click.Path(dir_okay=False),
    help="Configuration file with a [blockchain] or [executor] section.",
)
@click.pass_context
def cli(ctx, conf_path):
    """Query the executor task contract."""
    ctx.obj = conf_path


def _blockchain_conf(conf_path):
    try:
        return ConfigProvider.for_cli(conf_path).get_cli_conf()
    except ConfigError as e:
        raise click.ClickException(str(e))


@cli.command("get-task")
@click.option("--id", "task_id", required=True, help="Task ID to look up.")
@click.pass_obj
def get_task_cmd(conf_path, task_id):
    """Print the on-chain record of a task."""
    blockchain_conf = _blockchain_conf(conf_path)

    async def query():
        async with XchainClient(blockchain_conf.xchain) as client:
            return await client.get_task(task_id)

    try:
        record = asyncio.run(query())
    except (httpx.HTTPError, ValueError) as e:
        logger.error(f"get-task {task_id} failed: {str(e)}")
        raise click.ClickException(f"failed to query task {task_id}: {str(e)}")
    click.echo(json.dumps(record, indent=2, sort_keys=True))


@cli.command("health")
@click.pass_obj
def health_cmd(conf_path):
    """Check whether the chain gateway is reachable."""
    blockchain_conf = _blockchain_conf(conf_path)

    async def check():
        async with XchainClient(blockchain_conf.xchain) as client:
            return await client.health_check()

    address = blockchain_conf.xchain.chain_address
    if asyncio.run(check()):
        click.echo(f"chain gateway {address} is healthy")
        return
    click.echo(f"chain gateway {address} is unreachable", err=True)
    sys.exit(1)


def main():
    cli()


if __name__ == "__main__":
    main()
