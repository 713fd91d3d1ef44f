"""
Client for the workflow engine (Kestra-style REST API).

Two calls are used: submitting a removal execution and polling an execution
by id. Transport and status errors are mapped onto the domain error taxonomy
here so callers never see httpx exceptions.
"""

import logging
from typing import Any, Dict, Optional

import httpx

from ..config import Settings, get_settings
from ..errors import NotFoundError, OperationTimeoutError, UpstreamError
from .models import Execution

logger = logging.getLogger(__name__)


class WorkflowClient:
    """
    Async client for submitting and polling workflow executions.
    """

    def __init__(
        self,
        base_url: Optional[str] = None,
        namespace: Optional[str] = None,
        username: Optional[str] = None,
        password: Optional[str] = None,
        timeout: Optional[float] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        settings: Optional[Settings] = None,
    ):
        settings = settings or get_settings()
        self.base_url = (base_url or settings.kestra_url).rstrip("/")
        self.namespace = namespace or settings.kestra_namespace
        username = username or settings.kestra_user
        password = password or settings.kestra_password
        self.client = httpx.AsyncClient(
            timeout=timeout if timeout is not None else settings.http_timeout_seconds,
            auth=(username, password) if username and password else None,
            transport=transport,
        )

    async def close(self):
        """Close the HTTP client."""
        await self.client.aclose()

    async def __aenter__(self) -> "WorkflowClient":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.close()

    async def _request(
        self, method: str, url: str, not_found: bool = True, **kwargs
    ) -> httpx.Response:
        try:
            response = await self.client.request(method, url, **kwargs)
        except httpx.TimeoutException as e:
            logger.warning(f"Workflow engine request timed out: {method} {url}")
            raise OperationTimeoutError(
                "Workflow engine request timed out", {"url": url}
            ) from e
        except httpx.RequestError as e:
            logger.error(f"Workflow engine unreachable: {e}")
            raise UpstreamError("Workflow engine unreachable", {"url": url}) from e

        if response.status_code == 404 and not_found:
            raise NotFoundError("Execution not found", {"url": url})
        if response.is_error:
            logger.error(
                f"Workflow engine returned {response.status_code} for {method} {url}"
            )
            raise UpstreamError(
                f"Workflow engine returned {response.status_code}",
                {"url": url, "status": response.status_code, "body": response.text[:500]},
            )
        return response

    async def submit_execution(self, flow_id: str, inputs: Dict[str, Any]) -> Dict[str, Any]:
        """Trigger a flow with multipart form inputs and return the raw execution."""
        url = f"{self.base_url}/api/v1/executions/{self.namespace}/{flow_id}"
        # Multipart form: each input is sent as a separate field
        files = {key: (None, str(value)) for key, value in inputs.items() if value is not None}
        # A missing flow is an engine configuration problem, not a missing execution
        response = await self._request("POST", url, not_found=False, files=files)
        try:
            payload = response.json()
        except ValueError as e:
            raise UpstreamError("Malformed workflow engine response", {"url": url}) from e
        if not isinstance(payload, dict) or not payload.get("id"):
            raise UpstreamError("Workflow engine response has no execution id", {"url": url})
        return payload

    async def submit_removal(
        self,
        flow_id: str,
        candidate_id: int,
        watcher_id: str,
        entity_signature: str,
        file_path: str,
        repo_url: str,
        repo_owner: str,
        repo_name: str,
        credential: str,
    ) -> str:
        """Submit a removal request and return its correlation id."""
        execution = await self.submit_execution(
            flow_id,
            {
                "candidate_id": candidate_id,
                "watcher_id": watcher_id,
                "entity_signature": entity_signature,
                "file_path": file_path,
                "repo_url": repo_url,
                "repo_owner": repo_owner,
                "repo_name": repo_name,
                "github_token": credential,
            },
        )
        logger.info(f"Submitted removal for candidate {candidate_id}: execution {execution['id']}")
        return execution["id"]

    async def fetch_execution(self, execution_id: str) -> Execution:
        """Poll one execution by id."""
        url = f"{self.base_url}/api/v1/executions/{execution_id}"
        response = await self._request("GET", url)
        try:
            return Execution.model_validate(response.json())
        except ValueError as e:
            raise UpstreamError("Malformed execution payload", {"execution_id": execution_id}) from e
