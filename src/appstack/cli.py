"""
appstack CLI - inspect the resource graph of a stage without deploying it.
"""

import click
import yaml

import appstack.app_graph
import appstack.junkdrawer
import appstack.paths
import appstack.stage
from appstack.deferred import SECRET_MASK
from appstack.errors import AppStackError
from appstack.provisioning import LocalProvisioner


@click.group()
def cli():
    """
    appstack - one parameterized application topology for every stage.

    Stage configuration is read from $APPSTACK_ROOT.
    """


@cli.command()
def steps():
    """List the declaration steps in the order they run."""
    appstack.junkdrawer.print_steps(list(appstack.app_graph.AppGraphBuilder.STEPS))


@cli.command()
@click.argument("stage")
@click.option("--describe", is_flag=True, help="Dump the full graph description as YAML")
@click.option("--resolve", is_flag=True, help="Resolve outputs with the local provisioner")
def plan(stage: str, describe: bool, resolve: bool):
    """
    Declare the resource graph for STAGE and print it.

    Example:
        appstack plan development
        appstack plan production --describe
    """
    try:
        ctx = appstack.stage.StageContext.from_source(appstack.stage.YamlConfigSource(stage, appstack.paths.Paths()))
        graph = appstack.app_graph.build_app_graph(ctx)
    except AppStackError as e:
        raise click.ClickException(str(e)) from e

    signature = graph.signature()

    if describe:
        click.echo(yaml.safe_dump(graph.describe(), sort_keys=False))
        return

    click.secho(f"{graph.name}: {len(graph)} resources", fg="white", bold=True)
    for node in graph.nodes:
        deps = ", ".join(sorted(dep.name for dep in node.depends_on))
        click.echo(f"  {node.kind:<20} {node.name}" + (f" <- {deps}" if deps else ""))

    resolved = {}
    if resolve:
        try:
            resolved = LocalProvisioner().provision(graph)
        except AppStackError as e:
            raise click.ClickException(str(e)) from e

        click.secho(f"{len(graph)} resources after expansions", fg="white", bold=True)
        for node in graph.nodes:
            if node.deferred:
                click.echo(f"  {node.kind:<20} {node.name}")

    click.secho("outputs", fg="white", bold=True)
    for name, value in graph.outputs.items():
        shown = value.describe()
        if resolve:
            shown = SECRET_MASK if value.secret else str(resolved[name])
        click.echo(f"  {name}: {shown}")

    click.secho(f"signature: {signature}", fg="green")
