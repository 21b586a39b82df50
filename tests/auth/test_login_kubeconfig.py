import os

import pytest

from kinformer._cogs.structs.credentials import LoginError
from kinformer._core.intents import piggybacking
from kinformer._core.intents.piggybacking import has_kubeconfig, login, login_with_kubeconfig

MINICONFIG = '''
    kind: Config
    current-context: ctx
    contexts:
      - name: ctx
        context:
          cluster: clstr
          user: usr
          namespace: ns1
      - name: other
        context:
          cluster: clstr2
    clusters:
      - name: clstr
        cluster:
          server: https://hostname:1234/
          insecure-skip-tls-verify: true
      - name: clstr2
        cluster:
          server: https://another:443/
    users:
      - name: usr
        user:
          token: tkn
'''


@pytest.fixture()
def kubeconfig(tmp_path):
    path = tmp_path / 'config'
    path.write_text(MINICONFIG)
    return path


@pytest.fixture(autouse=True)
def no_home_kubeconfig(mocker, tmp_path):
    mocker.patch.dict(os.environ, {'HOME': str(tmp_path / 'home')}, clear=True)
    mocker.patch.object(piggybacking, 'SERVICE_ACCOUNT_DIR', str(tmp_path / 'absent'))


def test_has_no_kubeconfig_when_nothing_is_provided():
    assert has_kubeconfig() is False


def test_has_kubeconfig_when_envvar_is_set(mocker):
    mocker.patch.dict(os.environ, {'KUBECONFIG': '/some/path'})
    assert has_kubeconfig() is True


def test_has_kubeconfig_when_homedir_has_it(tmp_path):
    (tmp_path / 'home' / '.kube').mkdir(parents=True)
    (tmp_path / 'home' / '.kube' / 'config').write_text(MINICONFIG)
    assert has_kubeconfig() is True


def test_no_login_without_kubeconfigs():
    assert login_with_kubeconfig() is None


def test_login_with_an_explicit_path(kubeconfig):
    info = login_with_kubeconfig(str(kubeconfig))
    assert info is not None
    assert info.server == 'https://hostname:1234/'
    assert info.insecure is True
    assert info.token == 'tkn'
    assert info.default_namespace == 'ns1'


def test_login_with_an_explicit_context(kubeconfig):
    info = login_with_kubeconfig(str(kubeconfig), context='other')
    assert info is not None
    assert info.server == 'https://another:443/'
    assert info.token is None
    assert info.default_namespace is None


def test_login_with_the_envvar(kubeconfig, mocker):
    mocker.patch.dict(os.environ, {'KUBECONFIG': str(kubeconfig)})
    info = login_with_kubeconfig()
    assert info is not None
    assert info.server == 'https://hostname:1234/'


def test_first_value_wins_across_files(kubeconfig, tmp_path, mocker):
    override = tmp_path / 'override'
    override.write_text('''
        current-context: other
        clusters:
          - name: clstr2
            cluster:
              server: https://overridden:443/
    ''')
    mocker.patch.dict(os.environ, {'KUBECONFIG': f'{override}{os.pathsep}{kubeconfig}'})
    info = login_with_kubeconfig()
    assert info is not None
    assert info.server == 'https://overridden:443/'


def test_auth_provider_token_is_used(tmp_path):
    path = tmp_path / 'config'
    path.write_text('''
        current-context: ctx
        contexts: [{name: ctx, context: {cluster: c, user: u}}]
        clusters: [{name: c, cluster: {server: 'https://h/'}}]
        users: [{name: u, user: {auth-provider: {config: {access-token: provided}}}}]
    ''')
    info = login_with_kubeconfig(str(path))
    assert info is not None
    assert info.token == 'provided'


@pytest.mark.parametrize('content, error', [
    ('clusters: []', "Current context is not set"),
    ('current-context: absent', "Inconsistent kubeconfig"),
    ('current-context: ctx\ncontexts: [{name: ctx, context: {cluster: c}}]',
     "Inconsistent kubeconfig"),
    ('current-context: ctx\ncontexts: [{name: ctx, context: {cluster: c}}]\n'
     'clusters: [{name: c, cluster: {}}]',
     "No server is set"),
])
def test_inconsistent_kubeconfigs(tmp_path, content, error):
    path = tmp_path / 'config'
    path.write_text(content)
    with pytest.raises(LoginError, match=error):
        login_with_kubeconfig(str(path))


def test_absent_kubeconfig_file_fails(tmp_path):
    with pytest.raises(FileNotFoundError):
        login_with_kubeconfig(str(tmp_path / 'absent'))


def test_login_fails_without_any_source():
    with pytest.raises(LoginError, match="Cannot login"):
        login()


def test_login_prefers_the_explicit_kubeconfig(kubeconfig):
    info = login(kubeconfig=str(kubeconfig), context='other')
    assert info.server == 'https://another:443/'
