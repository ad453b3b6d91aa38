import logging
from typing import Optional

from kubernetes import client

from ..crds.base import _get_k8s_api
from ..crds.castemplate import CASTemplate
from ..errors import TemplateNotFoundError

logger = logging.getLogger(__name__)


class CASTemplateClient:
    """
    Reads CAS templates from the cluster.

    The API handle is created on first use and reused afterwards. Tests pass
    their own handle in. Transient API errors are not retried here.
    """

    def __init__(self, api: Optional[client.CustomObjectsApi] = None) -> None:
        self._api = api

    @property
    def api(self) -> client.CustomObjectsApi:
        if self._api is None:
            self._api = _get_k8s_api()
        return self._api

    def get(self, name: str) -> CASTemplate:
        if not name or not name.strip():
            raise ValueError("CAS template name must not be empty")
        name = name.strip()
        try:
            template = CASTemplate.get(name, api=self.api)
        except client.ApiException as e:
            if e.status == 404:
                raise TemplateNotFoundError(name) from e
            raise
        logger.debug(f"Fetched CAS template '{name}' with {len(template.tasks)} task(s)")
        return template
