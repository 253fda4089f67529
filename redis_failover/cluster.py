"""Kubernetes API clients used by the operator."""

import logging

from kubernetes import config
from kubernetes.client import ApiClient, AppsV1Api, Configuration, CoreV1Api, CustomObjectsApi
from kubernetes.config.config_exception import ConfigException
from tenacity import retry, retry_if_exception_type, stop_after_attempt, wait_exponential

from .config import Settings

logger = logging.getLogger(__name__)


@retry(
    retry=retry_if_exception_type(OSError),
    stop=stop_after_attempt(3),
    wait=wait_exponential(multiplier=1, min=2, max=10),
    reraise=True,
)
def new_api_client(settings: Settings) -> ApiClient:
    """
    Build an API client from a kubeconfig file, or from the pod service account.

    Raises:
        ConfigException: If the configuration is missing or invalid
    """
    if settings.kubeconfig_path:
        logger.info(f"Using kubeconfig {settings.kubeconfig_path}")
        return config.new_client_from_config(
            config_file=settings.kubeconfig_path, context=settings.kube_context
        )

    configuration = Configuration()
    config.load_incluster_config(client_configuration=configuration)
    logger.info("Using in-cluster config")
    return ApiClient(configuration)


class ClusterConnection:
    """API clients for the core, apps and custom object groups, sharing one connection pool."""

    def __init__(self, settings: Settings):
        """
        Raises:
            ValueError: If no usable cluster configuration was found
        """
        try:
            self.api_client = new_api_client(settings)
        except (ConfigException, OSError) as e:
            raise ValueError(f"Failed to initialize cluster connection: {e}") from e

        self.core_v1 = CoreV1Api(self.api_client)
        self.apps_v1 = AppsV1Api(self.api_client)
        self.custom_objects = CustomObjectsApi(self.api_client)

    def close(self) -> None:
        self.api_client.close()
