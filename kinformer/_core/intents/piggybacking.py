"""
Rudimentary logins from the standard sources of credentials.

Kinformer is not a client library, and avoids bringing too much logic
for proper authentication, especially all the complex auth-providers.
Only the in-cluster service accounts and plain kubeconfig files are supported;
for anything more sophisticated, construct `ConnectionInfo` explicitly.
"""
import logging
import os
from typing import Any, Dict, Optional

import yaml

from kinformer._cogs.structs import credentials

logger = logging.getLogger(__name__)

# As per https://kubernetes.io/docs/tasks/run-application/access-api-from-pod/
SERVICE_ACCOUNT_DIR = '/var/run/secrets/kubernetes.io/serviceaccount'


def has_service_account() -> bool:
    return os.path.exists(os.path.join(SERVICE_ACCOUNT_DIR, 'token'))


def login_with_service_account() -> Optional[credentials.ConnectionInfo]:
    """
    A minimalistic login that can get raw data from a service account.

    No parsing or sophisticated multi-step token retrieval is performed.
    """
    token_path = os.path.join(SERVICE_ACCOUNT_DIR, 'token')
    ns_path = os.path.join(SERVICE_ACCOUNT_DIR, 'namespace')
    ca_path = os.path.join(SERVICE_ACCOUNT_DIR, 'ca.crt')

    if os.path.exists(token_path):
        with open(token_path, encoding='utf-8') as f:
            token = f.read().strip()

        namespace: Optional[str] = None
        if os.path.exists(ns_path):
            with open(ns_path, encoding='utf-8') as f:
                namespace = f.read().strip()

        return credentials.ConnectionInfo(
            server='https://kubernetes.default.svc',
            ca_path=ca_path if os.path.exists(ca_path) else None,
            token=token or None,
            default_namespace=namespace or None,
        )
    else:
        return None


def has_kubeconfig() -> bool:
    env_var_set = bool(os.environ.get('KUBECONFIG'))
    file_exists = os.path.exists(os.path.expanduser('~/.kube/config'))
    return env_var_set or file_exists


def login_with_kubeconfig(
        path: Optional[str] = None,
        *,
        context: Optional[str] = None,
) -> Optional[credentials.ConnectionInfo]:
    """
    A minimalistic login that can get raw data from kubeconfig files.

    The files are taken from the explicit path, or from ``$KUBECONFIG``
    (several paths are possible), or from ``~/.kube/config`` -- in that order.
    The first found value of every context/cluster/user wins.
    """

    # As per https://kubernetes.io/docs/concepts/configuration/organize-cluster-access-kubeconfig/
    kubeconfig = path or os.environ.get('KUBECONFIG')
    if not kubeconfig and os.path.exists(os.path.expanduser('~/.kube/config')):
        kubeconfig = '~/.kube/config'
    if not kubeconfig:
        return None

    paths = [path.strip() for path in kubeconfig.split(os.pathsep)]
    paths = [os.path.expanduser(path) for path in paths if path]

    # As prescribed: if the file is absent or non-deserialisable, then fail. The first value wins.
    current_context: Optional[str] = context
    contexts: Dict[Any, Any] = {}
    clusters: Dict[Any, Any] = {}
    users: Dict[Any, Any] = {}
    for path in paths:

        with open(path, encoding='utf-8') as f:
            config = yaml.safe_load(f.read()) or {}

        if current_context is None:
            current_context = config.get('current-context')
        for item in config.get('contexts') or []:
            if item['name'] not in contexts:
                contexts[item['name']] = item.get('context') or {}
        for item in config.get('clusters') or []:
            if item['name'] not in clusters:
                clusters[item['name']] = item.get('cluster') or {}
        for item in config.get('users') or []:
            if item['name'] not in users:
                users[item['name']] = item.get('user') or {}

    # Once fully parsed, use the current context only.
    if current_context is None:
        raise credentials.LoginError('Current context is not set in kubeconfigs.')
    try:
        context_info = contexts[current_context]
        cluster = clusters[context_info['cluster']]
        user = users[context_info.get('user')] if context_info.get('user') else {}
    except KeyError as e:
        raise credentials.LoginError(f"Inconsistent kubeconfig: {e} is not found.") from e
    if not cluster.get('server'):
        raise credentials.LoginError(f"No server is set for the context {current_context!r}.")

    # We do not make a fake API request to refresh the token, only use what is there.
    provider_token = (user.get('auth-provider') or {}).get('config', {}).get('access-token')

    logger.debug(f"Using the kubeconfig context {current_context!r}.")
    return credentials.ConnectionInfo(
        server=cluster.get('server'),
        ca_path=cluster.get('certificate-authority'),
        ca_data=cluster.get('certificate-authority-data'),
        insecure=cluster.get('insecure-skip-tls-verify'),
        certificate_path=user.get('client-certificate'),
        certificate_data=user.get('client-certificate-data'),
        private_key_path=user.get('client-key'),
        private_key_data=user.get('client-key-data'),
        username=user.get('username'),
        password=user.get('password'),
        token=user.get('token') or provider_token,
        default_namespace=context_info.get('namespace'),
    )


def login(
        *,
        kubeconfig: Optional[str] = None,
        context: Optional[str] = None,
) -> credentials.ConnectionInfo:
    """
    Get the credentials from the first available source, or fail.

    An explicitly specified kubeconfig wins. Otherwise, the in-cluster service
    account is preferred over the developer's kubeconfig files.
    """
    info: Optional[credentials.ConnectionInfo] = None
    if kubeconfig is not None or context is not None:
        info = login_with_kubeconfig(kubeconfig, context=context)
    elif has_service_account():
        info = login_with_service_account()
    elif has_kubeconfig():
        info = login_with_kubeconfig()
    if info is None:
        raise credentials.LoginError("Cannot login neither in-cluster, nor via kubeconfig.")
    return info
