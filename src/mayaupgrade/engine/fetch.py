import logging
from typing import Optional

from kubernetes import client

from ..crds.base import _get_k8s_api
from ..crds.runtask import RunTask
from ..errors import InvalidResourceError, RunTaskNotFoundError

logger = logging.getLogger(__name__)


class RunTaskFetcher:
    """Loads run tasks from a CAS template's task namespace."""

    def __init__(self, namespace: str, api: Optional[client.CustomObjectsApi] = None) -> None:
        self.namespace = namespace
        self._api = api

    @property
    def api(self) -> client.CustomObjectsApi:
        if self._api is None:
            self._api = _get_k8s_api()
        return self._api

    def fetch(self, name: str) -> RunTask:
        try:
            task = RunTask.get(name, namespace=self.namespace, api=self.api)
        except client.ApiException as e:
            if e.status == 404:
                raise RunTaskNotFoundError(name, self.namespace) from e
            raise
        except ValueError as e:
            raise InvalidResourceError("run task", name, str(e)) from e
        logger.debug(f"Fetched run task '{name}' from namespace '{self.namespace}'")
        return task
