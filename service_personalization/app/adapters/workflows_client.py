"""
Workflow service client.
"""

import httpx
from typing import Any, Dict, List, Optional

from pydantic import ValidationError as PydanticValidationError

from shared.logging import get_logger
from shared.errors import ChallengeResponseError, NetworkFailure
from shared.retry import retry_on_exception, RetryConfig, RetryError
from ..rules.models import ActiveWorkflowsResponse, Workflow, WorkflowPayload


SERVICE_NAME = "workflow_service"
CHALLENGE_STATUSES = frozenset({401, 403, 429, 503})


class WorkflowsClient:
    """Fetches the active workflows for a page.

    Fails open: every failure is logged and turned into an empty list.
    """

    def __init__(self, api_endpoint: str, api_key: Optional[str] = None,
                 retry_attempts: int = 3, retry_delay: float = 1.5,
                 timeout: float = 10.0):
        self.api_endpoint = api_endpoint.rstrip("/")
        self.api_key = api_key
        self.timeout = timeout
        self.logger = get_logger("personalization.workflows_client")

        # One initial attempt plus retry_attempts retries, linear backoff.
        self.retry_config = RetryConfig(
            max_attempts=retry_attempts + 1,
            base_delay=retry_delay,
            max_delay=max(retry_delay * (retry_attempts + 1), 0.0),
            jitter=False,
            backoff_strategy="linear"
        )

    @property
    def headers(self) -> Dict[str, str]:
        headers = {"Accept": "application/json"}
        if self.api_key:
            headers["X-API-Key"] = self.api_key
        return headers

    async def fetch_active(self, page_url: str) -> List[Workflow]:
        """Fetch and parse the active workflows for page_url."""
        fetch = retry_on_exception(
            (httpx.HTTPError, ChallengeResponseError),
            config=self.retry_config
        )(self._fetch_once)

        try:
            payload = await fetch(page_url)
        except RetryError as e:
            failure = NetworkFailure(
                SERVICE_NAME,
                "retries exhausted",
                details={"attempts": e.attempts, "error": str(e.last_exception)}
            )
            self.logger.error("Workflow fetch failed", error=failure.message, details=failure.details)
            return []
        except NetworkFailure as e:
            self.logger.error("Workflow fetch failed", error=e.message, details=e.details)
            return []
        except Exception as e:
            self.logger.error("Workflow fetch error", error=str(e))
            return []

        return self._parse(payload)

    async def _fetch_once(self, page_url: str) -> Any:
        async with httpx.AsyncClient(timeout=self.timeout) as client:
            response = await client.get(
                f"{self.api_endpoint}/api/workflows/active",
                params={"url": page_url},
                headers=self.headers
            )

        if response.status_code in CHALLENGE_STATUSES:
            raise ChallengeResponseError(SERVICE_NAME, response.status_code)

        if not response.is_success:
            raise NetworkFailure(
                SERVICE_NAME,
                f"unexpected status {response.status_code}",
                details={"status_code": response.status_code}
            )

        try:
            return response.json()
        except ValueError as e:
            raise NetworkFailure(SERVICE_NAME, "invalid JSON body", details={"error": str(e)})

    def _parse(self, payload: Any) -> List[Workflow]:
        try:
            envelope = ActiveWorkflowsResponse.model_validate(payload)
        except PydanticValidationError as e:
            self.logger.error("Invalid workflow response", error=str(e))
            return []

        if not envelope.success:
            self.logger.warning("Workflow service reported failure", error=envelope.error)
            return []

        workflows: List[Workflow] = []
        for raw in envelope.workflows:
            try:
                workflows.append(WorkflowPayload.model_validate(raw).to_workflow())
            except PydanticValidationError as e:
                self.logger.warning(
                    "Skipping invalid workflow",
                    workflow_id=raw.get("id") if isinstance(raw, dict) else None,
                    error=str(e)
                )

        self.logger.debug("Workflows fetched", count=len(workflows))
        return workflows
