"""
Process-wide Kubernetes API access.

The kubeconfig is loaded once at startup into a dedicated client
configuration; the resulting API objects are read-only afterwards and shared
by every concurrent operation.
"""

import asyncio
import functools
from dataclasses import dataclass
from typing import Any, Callable

from kubernetes import client, config

from tenant_stack.config.settings import Settings
from tenant_stack.utils.logging import get_logger

logger = get_logger(__name__, prefix="K8s")

# Head start for the client's own socket timeout, which reports more detail
_DEADLINE_GRACE_SECONDS = 2.0


@dataclass(frozen=True)
class KubernetesClients:
    """Typed API clients bound to one cluster, plus per-call timeouts."""

    core: client.CoreV1Api
    apps: client.AppsV1Api
    networking: client.NetworkingV1Api
    write_timeout: float = 30.0
    read_timeout: float = 10.0
    api_client: Any = None

    @classmethod
    def from_settings(cls, settings: Settings) -> "KubernetesClients":
        """Load cluster credentials (in-cluster or kubeconfig) and build the APIs."""
        configuration = client.Configuration()
        if settings.KUBE_IN_CLUSTER:
            config.load_incluster_config(client_configuration=configuration)
            logger.info("Using in-cluster service account")
        else:
            config.load_kube_config(
                config_file=settings.KUBECONFIG,
                context=settings.kube_context,
                client_configuration=configuration,
            )
            logger.info(f"Using kubeconfig context {settings.kube_context or '(current)'}")

        api_client = client.ApiClient(configuration)
        return cls(
            core=client.CoreV1Api(api_client),
            apps=client.AppsV1Api(api_client),
            networking=client.NetworkingV1Api(api_client),
            write_timeout=settings.K8S_WRITE_TIMEOUT,
            read_timeout=settings.K8S_READ_TIMEOUT,
            api_client=api_client,
        )

    async def call(self, fn: Callable[..., Any], *args: Any, timeout: float, **kwargs: Any) -> Any:
        """
        Run a blocking API call in the default executor under a deadline.

        The timeout is passed to the client as ``_request_timeout`` and also
        enforced around the call; exceeding it raises ``asyncio.TimeoutError``.
        """
        loop = asyncio.get_running_loop()
        bound = functools.partial(fn, *args, _request_timeout=timeout, **kwargs)
        return await asyncio.wait_for(
            loop.run_in_executor(None, bound),
            timeout=timeout + _DEADLINE_GRACE_SECONDS,
        )

    def close(self) -> None:
        if self.api_client is not None:
            self.api_client.close()
