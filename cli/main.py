# cli/main.py
import asyncio
import sys

import click
from rich import print
from rich.table import Table

from cli.console import IceConsole
from nat.stun_client import discover_candidates
from net.bootstrap import attach_runtime
from util import log as logsink
from util.config import MAX_COMPONENTS, IceConfig, parse_server
from util.log import log


def _build_config(comp_cnt, stun_srv, log_file=None, ipv6=False, nego_timeout=60.0,
                  turn_srv=None, turn_tcp=False, turn_username=None, turn_password=None) -> IceConfig:
    try:
        return IceConfig(
            comp_cnt=comp_cnt,
            stun_server=parse_server(stun_srv) if stun_srv else None,
            use_ipv6=ipv6,
            turn_server=parse_server(turn_srv) if turn_srv else None,
            turn_tcp=turn_tcp,
            turn_username=turn_username,
            turn_password=turn_password,
            negotiation_timeout_ms=int(nego_timeout * 1000),
            log_file=log_file,
        ).validate()
    except ValueError as e:
        raise click.BadParameter(str(e))


def turn_options(f):
    """--turn-srv/-t, --turn-tcp/-T, --turn-username/-u, --turn-password/-p"""
    f = click.option("--turn-password", "-p", help="TURN password")(f)
    f = click.option("--turn-username", "-u", help="TURN username")(f)
    f = click.option("--turn-tcp", "-T", is_flag=True, help="Use TCP to connect to the TURN server")(f)
    f = click.option("--turn-srv", "-t", metavar="HOST[:PORT]", help="Enable relayed candidates with this TURN server")(f)
    return f


@click.group()
def cli():
    """[bold green]ICE demo[/bold green] - drive an ICE negotiation by copy-pasting SDP"""
    pass


@cli.command()
@click.option("--comp-cnt", "-c", type=click.IntRange(1, MAX_COMPONENTS), default=1, show_default=True,
              help="Component count")
@click.option("--stun-srv", "-s", metavar="HOST[:PORT]",
              help="Enable srflx candidates by resolving to this STUN server")
@click.option("--log-file", "-L", type=click.Path(dir_okay=False), help="Also append output to this log file")
@click.option("--ipv6/--no-ipv6", default=False, help="Gather IPv6 host candidates too")
@click.option("--nego-timeout", type=click.FloatRange(min=0, min_open=True), default=60.0, show_default=True,
              help="Seconds before a running negotiation is declared failed")
@turn_options
def run(comp_cnt, stun_srv, log_file, ipv6, nego_timeout, turn_srv, turn_tcp, turn_username, turn_password):
    """Start the interactive ICE console"""
    config = _build_config(comp_cnt, stun_srv, log_file, ipv6, nego_timeout,
                           turn_srv, turn_tcp, turn_username, turn_password)
    logsink.configure(config.log_file)

    try:
        runtime = attach_runtime(config)
    except (OSError, RuntimeError) as e:
        log("fatal", error=str(e))
        print(f"[red]Error initializing runtime: {e}[/red]")
        logsink.close()
        sys.exit(1)

    status = 0
    try:
        IceConsole(runtime.controller, fatal_error=lambda: runtime.worker.error).run()
    except KeyboardInterrupt:
        pass
    except Exception as e:
        log("fatal", error=str(e))
        status = 1
    finally:
        log("shutting_down", name=config.name)
        runtime.shutdown()
        logsink.close()
    sys.exit(status)


@cli.command()
@click.option("--comp-cnt", "-c", type=click.IntRange(1, MAX_COMPONENTS), default=1, show_default=True)
@click.option("--stun-srv", "-s", metavar="HOST[:PORT]")
@click.option("--ipv6/--no-ipv6", default=False)
@turn_options
def candidates(comp_cnt, stun_srv, ipv6, turn_srv, turn_tcp, turn_username, turn_password):
    """Gather and list local candidates, then exit"""
    config = _build_config(comp_cnt, stun_srv, ipv6=ipv6, turn_srv=turn_srv, turn_tcp=turn_tcp,
                           turn_username=turn_username, turn_password=turn_password)
    found = asyncio.run(discover_candidates(config))
    table = Table(title="Local candidates")
    for column in ("comp", "type", "address", "priority", "foundation"):
        table.add_column(column)
    for c in found:
        table.add_row(str(c.component_id), c.type.value, str(c.address), str(c.priority), c.foundation)
    print(table)
    if not found:
        print("[yellow]No candidates gathered[/yellow]")


if __name__ == "__main__":
    cli()
