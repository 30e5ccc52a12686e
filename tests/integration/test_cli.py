import pytest
import yaml
from click.testing import CliRunner

from brave.CLI.main import cli
from brave.CONFIG.settings import save_settings

BRAVEFILE = {
    'image': 'alpine-python/1.0',
    'base': {'image': 'alpine/3.16', 'location': 'public'},
    'service': {'ports': ['8080:80'], 'resources': {'cpu': 1, 'ram': '512MB'}},
}


@pytest.fixture
def invoke(brave_paths, host):
    runner = CliRunner()

    def _invoke(*args):
        return runner.invoke(cli, list(args), obj={'paths': brave_paths, 'host': host})
    return _invoke


def test_cli_help():
    result = CliRunner().invoke(cli, ['--help'])
    assert result.exit_code == 0
    for command in ('init', 'build', 'deploy', 'compose', 'units', 'mount'):
        assert command in result.output


def test_images_empty(invoke):
    result = invoke('images')
    assert result.exit_code == 0
    assert 'No local images' in result.output


def test_import_list_and_remove(invoke, make_archive):
    archive = make_archive('alpine-python_1.0_x86_64.tar.gz')

    result = invoke('import', archive)
    assert result.exit_code == 0, result.output

    result = invoke('images')
    assert 'alpine-python' in result.output
    assert 'x86_64' in result.output

    result = invoke('rmi', 'alpine-python/1.0/x86_64')
    assert result.exit_code == 0
    result = invoke('rmi', 'alpine-python/1.0/x86_64')
    assert result.exit_code == 1
    assert 'Error: ' in result.output


def test_init_refuses_to_overwrite(invoke, brave_paths, settings):
    save_settings(brave_paths, settings)
    result = invoke('init')
    assert result.exit_code == 1
    assert 'already initialised' in result.output


def test_build_deploy_and_list(invoke, tmp_path, client):
    bravefile = tmp_path / 'Bravefile'
    bravefile.write_text(yaml.dump(BRAVEFILE))

    result = invoke('build', '-f', str(bravefile))
    assert result.exit_code == 0, result.output
    assert 'alpine-python/1.0/x86_64' in result.output

    result = invoke('deploy', '-f', str(bravefile), '--name', 'web')
    assert result.exit_code == 0, result.output
    assert client.instances['web'].devices['brave_proxy_80']['connect'] == 'tcp:127.0.0.1:8080'

    result = invoke('units')
    assert 'web' in result.output
    assert '8080:80' in result.output

    result = invoke('delete', 'web')
    assert result.exit_code == 0
    assert client.instances == {}


def test_compose(invoke, tmp_path, client):
    (tmp_path / 'python').mkdir()
    (tmp_path / 'python' / 'Bravefile').write_text(yaml.dump(BRAVEFILE))
    compose_file = tmp_path / 'brave-compose.yml'
    compose_file.write_text(yaml.dump({
        'services': {
            'python': {'bravefile': 'python/Bravefile', 'build': True},
        },
    }))

    result = invoke('compose', '-f', str(compose_file))
    assert result.exit_code == 0, result.output
    assert 'Deployed units: python' in result.output
    assert 'python' in client.instances


def test_deploy_missing_bravefile(invoke, tmp_path):
    result = invoke('deploy', '-f', str(tmp_path / 'Bravefile'))
    assert result.exit_code == 1
    assert 'unable to read Bravefile' in result.output


def test_umount_requires_unit(invoke):
    result = invoke('umount', '/data')
    assert result.exit_code == 2
