"""
Per-page-load rule store.
"""

from typing import List, Optional, Tuple

from shared.logging import get_logger
from .models import Workflow


class RuleStore:
    """Holds the workflows fetched for the current page load."""

    def __init__(self, client):
        self.client = client
        self.logger = get_logger("personalization.rule_store")
        self.workflows: Tuple[Workflow, ...] = ()
        self.loaded_url: Optional[str] = None

    async def load(self, page_url: str) -> Tuple[Workflow, ...]:
        """Fetch the workflows for a page, replacing whatever was held before."""
        self.workflows = ()
        self.loaded_url = page_url

        workflows = await self.client.fetch_active(page_url)
        self.workflows = tuple(workflows)

        self.logger.info(
            "Workflows loaded",
            page_url=page_url,
            count=len(self.workflows),
            active=len(self.active_workflows(page_url))
        )
        return self.workflows

    def active_workflows(self, page_url: Optional[str] = None) -> List[Workflow]:
        """Active workflows targeting the page, in response order."""
        url = page_url if page_url is not None else (self.loaded_url or "")
        return [
            workflow for workflow in self.workflows
            if workflow.is_active and workflow.matches_url(url)
        ]

    def get_workflow(self, workflow_id: str) -> Optional[Workflow]:
        """Get a workflow by ID."""
        for workflow in self.workflows:
            if workflow.id == workflow_id:
                return workflow
        return None

    def clear(self) -> None:
        """Discard all workflows."""
        self.workflows = ()
        self.loaded_url = None
