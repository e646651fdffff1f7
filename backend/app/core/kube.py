"""Kubernetes client configuration loading."""
import logging
import os
from pathlib import Path
from typing import Optional

from kubernetes import client, config

logger = logging.getLogger(__name__)


def load_kube_config(path: Optional[str] = None) -> client.ApiClient:
    """
    Build an ApiClient from, in order: an explicit kubeconfig path, the
    in-cluster service account, or the default kubeconfig location.

    Raises:
        FileNotFoundError: An explicit path was given but does not exist.
        config.ConfigException: No usable configuration was found.
    """
    configuration = client.Configuration()

    if path:
        resolved = Path(os.path.expanduser(path)).resolve()
        if not resolved.exists():
            raise FileNotFoundError(f"Kubeconfig not found: {resolved}")
        config.load_kube_config(config_file=str(resolved), client_configuration=configuration)
        logger.info(f"Using kubeconfig at {resolved}")
        return client.ApiClient(configuration)

    try:
        config.load_incluster_config(client_configuration=configuration)
        logger.info("Using in-cluster Kubernetes configuration.")
    except config.ConfigException:
        config.load_kube_config(client_configuration=configuration)
        logger.info("Using local kubeconfig.")

    return client.ApiClient(configuration)
