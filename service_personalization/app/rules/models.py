"""
Workflow data models for the personalization engine.
"""

import re
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple

from pydantic import AliasChoices, BaseModel, ConfigDict, Field

from shared.logging import get_logger


logger = get_logger("personalization.models")


class NodeKind(str, Enum):
    """Node types in a workflow graph."""
    TRIGGER = "trigger"
    ACTION = "action"
    CONDITION = "condition"
    UNKNOWN = "unknown"


class TriggerKind(str, Enum):
    """Trigger catalog."""
    DEVICE_TYPE = "device-type"
    UTM_PARAMETER = "utm-parameter"
    PAGE_VISITS = "page-visits"
    TIME_ON_PAGE = "time-on-page"
    SCROLL_DEPTH = "scroll-depth"
    ELEMENT_CLICK = "element-click"
    EXIT_INTENT = "exit-intent"
    REPEAT_VISITOR = "repeat-visitor"


class ActionKind(str, Enum):
    """Action catalog."""
    REPLACE_TEXT = "replace-text"
    HIDE_ELEMENT = "hide-element"
    SHOW_ELEMENT = "show-element"
    MODIFY_CSS = "modify-css"
    ADD_CLASS = "add-class"
    REMOVE_CLASS = "remove-class"
    DISPLAY_OVERLAY = "display-overlay"
    REDIRECT_PAGE = "redirect-page"
    CUSTOM_EVENT = "custom-event"
    PROGRESSIVE_FORM = "progressive-form"
    DYNAMIC_CONTENT = "dynamic-content"


NAME_ALIASES = {
    "utm-parameters": "utm-parameter",
    "redirect-user": "redirect-page",
    "page-visit": "page-visits",
}


def normalize_name(name: Optional[str]) -> str:
    """Normalize a node label ("Device Type", "device_type") to catalog form."""
    normalized = re.sub(r"[\s_]+", "-", (name or "").strip().lower())
    normalized = re.sub(r"-{2,}", "-", normalized)
    return NAME_ALIASES.get(normalized, normalized)


def _lookup(enum_cls, name: str):
    try:
        return enum_cls(normalize_name(name))
    except ValueError:
        return None


@dataclass(frozen=True)
class Node:
    """Workflow node."""
    id: str
    kind: NodeKind
    name: str
    config: Dict[str, Any] = field(default_factory=dict, hash=False, compare=False)

    @property
    def is_trigger(self) -> bool:
        return self.kind == NodeKind.TRIGGER

    @property
    def is_action(self) -> bool:
        return self.kind == NodeKind.ACTION

    @property
    def trigger_kind(self) -> Optional[TriggerKind]:
        """Catalog entry for a trigger node, None when unrecognized."""
        return _lookup(TriggerKind, self.name) if self.is_trigger else None

    @property
    def action_kind(self) -> Optional[ActionKind]:
        """Catalog entry for an action node, None when unrecognized."""
        return _lookup(ActionKind, self.name) if self.is_action else None


@dataclass(frozen=True)
class Connection:
    """Directed edge between two nodes of one workflow."""
    source_node_id: str
    target_node_id: str
    id: Optional[str] = None


@dataclass(frozen=True)
class Workflow:
    """A personalization rule set: trigger and action nodes plus connections."""
    id: str
    name: str
    is_active: bool = True
    target_url_pattern: Optional[str] = None
    nodes: Tuple[Node, ...] = ()
    connections: Tuple[Connection, ...] = ()

    def node(self, node_id: str) -> Optional[Node]:
        """Get a node by ID."""
        for node in self.nodes:
            if node.id == node_id:
                return node
        return None

    def triggers(self) -> List[Node]:
        """Trigger nodes in declaration order."""
        return [node for node in self.nodes if node.is_trigger]

    def successors(self, node_id: str) -> List[str]:
        """Target node IDs of the connections leaving a node, in declaration order."""
        return [c.target_node_id for c in self.connections if c.source_node_id == node_id]

    def matches_url(self, url: str) -> bool:
        """Check the target URL pattern: empty or '*' matches all, otherwise substring."""
        pattern = (self.target_url_pattern or "").strip()
        if not pattern or pattern == "*":
            return True
        return pattern in (url or "")


# Wire models

class ConnectionPayload(BaseModel):
    """Connection as serialized by the workflow service."""
    model_config = ConfigDict(extra="ignore", coerce_numbers_to_str=True)

    id: Optional[str] = None
    source_node_id: str = Field(validation_alias=AliasChoices("sourceNodeId", "source_node_id", "source"))
    target_node_id: str = Field(validation_alias=AliasChoices("targetNodeId", "target_node_id", "target"))


class NodePayload(BaseModel):
    """Node as serialized by the workflow service."""
    model_config = ConfigDict(extra="ignore", coerce_numbers_to_str=True)

    id: str
    type: str = "unknown"
    name: str = ""
    config: Dict[str, Any] = Field(default_factory=dict)

    def to_node(self) -> Node:
        try:
            kind = NodeKind(self.type.strip().lower())
        except ValueError:
            kind = NodeKind.UNKNOWN
        return Node(id=self.id, kind=kind, name=self.name, config=dict(self.config or {}))


class WorkflowPayload(BaseModel):
    """Workflow as serialized by the workflow service."""
    model_config = ConfigDict(extra="ignore", coerce_numbers_to_str=True)

    id: str
    name: str = ""
    is_active: bool = Field(default=True, validation_alias=AliasChoices("is_active", "isActive"))
    target_url: Optional[str] = Field(
        default=None,
        validation_alias=AliasChoices("target_url", "targetUrl", "target_url_pattern")
    )
    nodes: List[NodePayload] = Field(default_factory=list)
    connections: List[ConnectionPayload] = Field(default_factory=list)

    def to_workflow(self) -> Workflow:
        """Build the immutable workflow, dropping connections that leave the workflow."""
        nodes = tuple(payload.to_node() for payload in self.nodes)
        node_ids = {node.id for node in nodes}

        connections = []
        for payload in self.connections:
            if payload.source_node_id not in node_ids or payload.target_node_id not in node_ids:
                logger.warning(
                    "Dropping connection with unknown endpoint",
                    workflow_id=self.id,
                    source_node_id=payload.source_node_id,
                    target_node_id=payload.target_node_id
                )
                continue
            connections.append(Connection(
                source_node_id=payload.source_node_id,
                target_node_id=payload.target_node_id,
                id=payload.id
            ))

        return Workflow(
            id=self.id,
            name=self.name,
            is_active=self.is_active,
            target_url_pattern=self.target_url,
            nodes=nodes,
            connections=tuple(connections)
        )


class ActiveWorkflowsResponse(BaseModel):
    """Response envelope of the active-workflows endpoint."""
    model_config = ConfigDict(extra="ignore")

    success: bool = True
    workflows: List[Any] = Field(default_factory=list)
    count: Optional[int] = None
    error: Optional[str] = None
