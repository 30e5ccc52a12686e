# Copyright 2024 Michael Maillet, Damien Davison, Sacha Davison
#
# Licensed under the Apache License, Version 2.0 (the "License");
# you may not use this file except in compliance with the License.
# You may obtain a copy of the License at
#
#     http://www.apache.org/licenses/LICENSE-2.0
#
# Unless required by applicable law or agreed to in writing, software
# distributed under the License is distributed on an "AS IS" BASIS,
# WITHOUT WARRANTIES OR CONDITIONS OF ANY KIND, either express or implied.
# See the License for the specific language governing permissions and
# limitations under the License.

"""
Command Line Interface for brave.
"""
import functools
import logging
import os

import click
from dotenv import load_dotenv

from ..CONFIG.settings import BravePaths, default_settings, load_settings
from ..errors import BraveError, ConfigError
from ..MANAGERS.host import BraveHost
from ..PARSERS.bravefile_parser import BravefileParser
from ..PARSERS.compose_parser import ComposeParser, service_from_bravefile
from ..RUNTIME.remotes import Remote


def handle_errors(f):
    """Reports brave errors as ``Error: ...`` and exits with status 1."""
    @functools.wraps(f)
    def wrapper(*args, **kwargs):
        try:
            return f(*args, **kwargs)
        except BraveError as e:
            click.echo(f"Error: {e}", err=True)
            raise SystemExit(1)
    return wrapper


def get_host(ctx) -> BraveHost:
    """The host of the current invocation, built from the saved settings on first use."""
    if ctx.obj.get('host') is None:
        paths = ctx.obj['paths']
        ctx.obj['host'] = BraveHost(load_settings(paths), paths)
    return ctx.obj['host']


@click.group()
@click.option('--verbose', '-v', is_flag=True, help='Enable debug logging')
@click.pass_context
def cli(ctx, verbose):
    """
    brave - build, deploy and manage LXD system containers.
    """
    logging.basicConfig(level=logging.DEBUG if verbose else logging.WARNING,
                        format="%(levelname)s %(name)s: %(message)s")
    ctx.ensure_object(dict)
    ctx.obj.setdefault('paths', BravePaths())


@cli.command()
@click.option('--name', default='brave', help='Name of the host and its profile')
@click.option('--backend', type=click.Choice(['lxd', 'multipass']), default=None,
              help='Backend type. Defaults to lxd on Linux, multipass elsewhere')
@click.option('--cpu', default=None, help='Multipass VM CPU count')
@click.option('--ram', default=None, help='Multipass VM memory, e.g. 4GB')
@click.option('--disk', default=None, help='Multipass VM disk size, e.g. 50GB')
@click.pass_context
@handle_errors
def init(ctx, name, backend, cpu, ram, disk):
    """Provision the brave host."""
    paths = ctx.obj['paths']
    if paths.config_file.exists():
        raise ConfigError(f"brave is already initialised in {paths.home}")

    settings = default_settings(name)
    if backend:
        settings.backend.type = backend
    resources = settings.backend.resources
    resources.cpu = cpu or resources.cpu
    resources.ram = ram or resources.ram
    resources.hd = disk or resources.hd

    host = ctx.obj.get('host') or BraveHost(settings, paths)
    ctx.obj['host'] = host
    host.init()
    click.echo(f"brave host {name!r} initialised with {settings.backend.type} backend")


@cli.command()
@click.option('--short', is_flag=True, help='Only print the host address')
@click.pass_context
@handle_errors
def info(ctx, short):
    """Show information about the brave host."""
    data = get_host(ctx).host_info(short=short)
    if short:
        click.echo(data.ipv4)
        return
    click.echo(f"{'NAME':15} {'STATE':10} {'IPV4':16} {'DISK':22} {'MEMORY':22} {'CPU':5}")
    click.echo(f"{data.name:15} {data.state:10} {data.ipv4:16} "
               f"{data.disk.used + ' of ' + data.disk.total:22} "
               f"{data.memory.used + ' of ' + data.memory.total:22} {data.cpu:5}")


@cli.group()
def remote():
    """Manage remotes."""


@remote.command('add')
@click.argument('name')
@click.argument('url')
@click.option('--protocol', type=click.Choice(['lxd', 'unix']), default='lxd')
@click.option('--password', default=None, help='Trust password of the remote')
@click.option('--profile', default='', help='Default profile for units deployed to the remote')
@click.option('--network', default='', help='Default network for units deployed to the remote')
@click.option('--storage', default='', help='Default storage pool for units deployed to the remote')
@click.pass_context
@handle_errors
def remote_add(ctx, name, url, protocol, password, profile, network, storage):
    """Add an LXD server as a remote."""
    get_host(ctx).add_remote(Remote(name=name, url=url, protocol=protocol, profile=profile,
                                    network=network, storage=storage), password)


@remote.command('list')
@click.pass_context
@handle_errors
def remote_list(ctx):
    """List remotes."""
    for name in get_host(ctx).remotes.list():
        click.echo(name)


@remote.command('remove')
@click.argument('name')
@click.pass_context
@handle_errors
def remote_remove(ctx, name):
    """Remove a remote."""
    get_host(ctx).remotes.delete(name)


@cli.command()
@click.pass_context
@handle_errors
def images(ctx):
    """List images in the local image store."""
    stored = get_host(ctx).list_images()
    if not stored:
        click.echo("No local images")
        return
    click.echo(f"{'IMAGE':30} {'VERSION':15} {'ARCH':10} {'CREATED':14} {'SIZE':10} HASH")
    for image in stored:
        click.echo(f"{image.image.name:30} {image.image.version:15} {image.image.architecture:10} "
                   f"{image.created:14} {image.human_size:10} {image.hash}")


@cli.command('import')
@click.argument('path', type=click.Path(exists=True, dir_okay=False))
@click.pass_context
@handle_errors
def import_image(ctx, path):
    """Import an image archive into the local image store."""
    get_host(ctx).import_image(path)


@cli.command()
@click.argument('image')
@click.option('--legacy', is_flag=True, help='IMAGE is in the legacy NAME-VERSION form')
@click.pass_context
@handle_errors
def rmi(ctx, image, legacy):
    """Remove an image from the local image store."""
    get_host(ctx).delete_image(image, legacy=legacy)
    click.echo(f"Image {image!r} removed")


@cli.command()
@click.argument('image')
@click.option('--output', '-o', default=None, help='Output directory')
@click.pass_context
@handle_errors
def export(ctx, image, output):
    """Copy an image archive out of the local image store."""
    get_host(ctx).export_image(image, output)


@cli.command()
@click.option('--file', '-f', 'path', default='Bravefile', help='Bravefile path')
@click.pass_context
@handle_errors
def build(ctx, path):
    """Build an image from a Bravefile."""
    bravefile = BravefileParser().parse(path)
    get_host(ctx).build_image(bravefile, context_dir=os.path.dirname(os.path.abspath(path)))


@cli.command()
@click.option('--file', '-f', 'path', default='Bravefile', help='Bravefile path')
@click.option('--name', default=None, help='Unit name, optionally REMOTE:NAME')
@click.option('--ip', default=None, help='Static IP address')
@click.option('--port', '-p', 'ports', multiple=True, help='Port forwarding rule UNIT_PORT:HOST_PORT')
@click.pass_context
@handle_errors
def deploy(ctx, path, name, ip, ports):
    """Deploy a unit from a Bravefile."""
    service = service_from_bravefile(BravefileParser().parse(path), name)
    if ip:
        service.ip = ip
    if ports:
        service.ports = list(ports)
    get_host(ctx).deploy_unit(service)


@cli.command()
@click.option('--file', '-f', 'path', default='brave-compose.yml', help='Compose file path')
@click.pass_context
@handle_errors
def compose(ctx, path):
    """Build and deploy every service of a compose file."""
    deployed = get_host(ctx).compose(ComposeParser().parse(path))
    click.echo(f"Deployed units: {', '.join(deployed)}")


@cli.command()
@click.option('--remote', 'remote_name', default=None, help='Only list units on this remote')
@click.pass_context
@handle_errors
def units(ctx, remote_name):
    """List units."""
    click.echo(f"{'NAME':25} {'STATUS':10} {'IPV4':16} {'MOUNTS':40} PORTS")
    for unit in get_host(ctx).list_units(remote_name):
        mounts = ", ".join(f"{m.source}->{m.path}" for m in unit.mounts)
        ports = ", ".join(f"{p.unit_port}:{p.host_port}" for p in unit.ports)
        click.echo(f"{unit.name:25} {unit.status:10} {unit.address:16} {mounts:40} {ports}")


@cli.command()
@click.argument('names', nargs=-1, required=True)
@click.pass_context
@handle_errors
def start(ctx, names):
    """Start units."""
    for name in names:
        get_host(ctx).start_unit(name)


@cli.command()
@click.argument('names', nargs=-1, required=True)
@click.pass_context
@handle_errors
def stop(ctx, names):
    """Stop units."""
    for name in names:
        get_host(ctx).stop_unit(name)


@cli.command()
@click.argument('names', nargs=-1, required=True)
@click.pass_context
@handle_errors
def delete(ctx, names):
    """Delete units and their records."""
    for name in names:
        get_host(ctx).delete_unit(name)


@cli.command()
@click.argument('name')
@click.option('--image', default=None, help='Image identity NAME[/VERSION[/ARCH]]')
@click.option('--output', '-o', default='.', help='Output directory')
@click.pass_context
@handle_errors
def publish(ctx, name, image, output):
    """Publish a unit as an image archive."""
    path = get_host(ctx).publish_unit(name, image, output)
    click.echo(f"Published {path}")


@cli.command()
@click.argument('source')
@click.argument('destination')
@click.pass_context
@handle_errors
def mount(ctx, source, destination):
    """Mount SOURCE ([UNIT:]PATH) at DESTINATION (UNIT:PATH)."""
    get_host(ctx).mount(source, destination)


@cli.command()
@click.argument('destination')
@click.pass_context
@handle_errors
def umount(ctx, destination):
    """Unmount DESTINATION (UNIT:PATH)."""
    unit, sep, target = destination.rpartition(":")
    if not sep or not unit:
        raise click.BadParameter("expected UNIT:PATH", param_hint="destination")
    get_host(ctx).umount(unit, target)


@cli.command()
@click.argument('unit', required=False)
@click.pass_context
@handle_errors
def mounts(ctx, unit):
    """List mounts of a unit, or of every local unit."""
    host = get_host(ctx)
    if unit:
        for m in host.list_mounts(unit):
            click.echo(str(m))
        return
    for name, unit_mounts in host.list_all_mounts().items():
        click.echo(f"Mounts for {name}:")
        for m in unit_mounts:
            click.echo(str(m))


def main():
    """
    Main entry point for the CLI.
    """
    load_dotenv()
    cli(obj={})


if __name__ == '__main__':
    main()
