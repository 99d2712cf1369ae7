"""
Document Status Workflow

Finite state machine over Document.status. Edges are (from, to, required
capability) triples read from the workflow_transitions table, falling back to
the YAML defaults when the table is empty or unreachable. The table is cached
in memory; clear_workflow_cache() forces a reload on next use.
"""

import threading
import time
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Dict, Iterable, List, Optional, Sequence, Tuple, Union

from loguru import logger
from sqlalchemy.exc import SQLAlchemyError

from auth.capabilities import CapabilityName, CapabilitySet
from core.errors import InvalidTransition, TransitionDenied, ValidationError
from storage.repository import WorkflowTransitionRepository


class DocumentStatus(str, Enum):
    DRAFT = "DRAFT"
    IN_REVIEW = "IN_REVIEW"
    PENDING_APPROVAL = "PENDING_APPROVAL"
    APPROVED = "APPROVED"
    PUBLISHED = "PUBLISHED"
    REJECTED = "REJECTED"
    ARCHIVED = "ARCHIVED"

    @classmethod
    def parse(cls, raw: Union[str, "DocumentStatus"]) -> "DocumentStatus":
        if isinstance(raw, cls):
            return raw
        try:
            return cls((raw or "").strip().upper())
        except ValueError:
            raise ValidationError(f"Unknown document status '{raw}'")


# Newly created documents always start here
INITIAL_STATUS = DocumentStatus.DRAFT

WORKFLOW_DESCRIPTIONS = {
    DocumentStatus.DRAFT: "Document is being created/edited. Ready for review submission.",
    DocumentStatus.IN_REVIEW: "Document is currently being reviewed.",
    DocumentStatus.PENDING_APPROVAL: "Document reviewed and awaiting approval from authorized personnel.",
    DocumentStatus.APPROVED: "Document approved and ready for publication.",
    DocumentStatus.PUBLISHED: "Document is published and accessible to users.",
    DocumentStatus.REJECTED: "Document rejected and needs revision.",
    DocumentStatus.ARCHIVED: "Document archived and no longer active.",
}

StatusLike = Union[str, DocumentStatus]


@dataclass(frozen=True)
class TransitionRule:
    from_status: DocumentStatus
    to_status: DocumentStatus
    required_capability: CapabilityName
    description: str = ""

    @classmethod
    def build(cls, from_status: str, to_status: str, required_capability: str, description: str = "") -> "TransitionRule":
        return cls(
            from_status=DocumentStatus.parse(from_status),
            to_status=DocumentStatus.parse(to_status),
            required_capability=CapabilityName.require(required_capability),
            description=description or "",
        )

    def to_dict(self) -> Dict[str, str]:
        return {
            "from": self.from_status.value,
            "to": self.to_status.value,
            "requiredCapability": self.required_capability.value,
            "description": self.description,
        }


def rules_from_config(config: Dict[str, Any]) -> List[TransitionRule]:
    """Parse the `transitions` list of the workflow YAML"""
    rules = []
    for item in config.get("transitions") or []:
        try:
            rules.append(TransitionRule.build(
                item["from"], item["to"], item["required_capability"], item.get("description", "")
            ))
        except KeyError as e:
            raise ValidationError(f"Workflow transition is missing field {e}")
    return rules


def database_transition_loader(session_factory) -> Callable[[], List[TransitionRule]]:
    """Loader reading active rows of workflow_transitions ordered by sort_order"""

    def _load() -> List[TransitionRule]:
        session = session_factory()
        try:
            return [
                TransitionRule.build(t.from_status, t.to_status, t.required_capability, t.description or "")
                for t in WorkflowTransitionRepository.list_active(session)
            ]
        finally:
            session.close()

    return _load


class WorkflowGate:
    """Capability-gated status transitions with a super-capability bypass"""

    def __init__(
        self,
        fallback_rules: Sequence[TransitionRule],
        loader: Optional[Callable[[], List[TransitionRule]]] = None,
        bypass_capabilities: Iterable[str] = (CapabilityName.ADMIN_ACCESS, CapabilityName.DOCUMENT_MANAGE),
        ttl_seconds: int = 60,
        clock: Callable[[], float] = time.monotonic
    ):
        self.fallback_rules = self._index(fallback_rules)
        self.loader = loader
        self.bypass_capabilities = [CapabilityName.require(c) for c in bypass_capabilities]
        self.ttl_seconds = ttl_seconds
        self.clock = clock
        self._table: Optional[Dict[Tuple[DocumentStatus, DocumentStatus], TransitionRule]] = None
        self._loaded_at = 0.0
        self._generation = 0
        self.lock = threading.Lock()

    @classmethod
    def from_config(cls, config: Dict[str, Any], loader=None, ttl_seconds: int = 60, **kwargs) -> "WorkflowGate":
        bypass = config.get("workflow_bypass_capabilities") or [
            CapabilityName.ADMIN_ACCESS, CapabilityName.DOCUMENT_MANAGE
        ]
        return cls(
            fallback_rules=rules_from_config(config),
            loader=loader,
            bypass_capabilities=bypass,
            ttl_seconds=ttl_seconds,
            **kwargs
        )

    @staticmethod
    def _index(rules: Iterable[TransitionRule]) -> Dict[Tuple[DocumentStatus, DocumentStatus], TransitionRule]:
        table = {}
        for rule in rules:
            key = (rule.from_status, rule.to_status)
            if key in table:
                raise ValidationError(f"Duplicate workflow transition {key[0].value} -> {key[1].value}")
            table[key] = rule
        return table

    # ==================== TABLE CACHE ====================

    def _load_table(self) -> Dict[Tuple[DocumentStatus, DocumentStatus], TransitionRule]:
        if self.loader is None:
            return self.fallback_rules
        try:
            rules = self.loader()
        except SQLAlchemyError as e:
            logger.warning(f"[WORKFLOW] Failed to load transitions from database, using defaults: {e}")
            return self.fallback_rules
        if not rules:
            logger.info("[WORKFLOW] No active transitions in database, using defaults")
            return self.fallback_rules
        return self._index(rules)

    def _transitions(self) -> Dict[Tuple[DocumentStatus, DocumentStatus], TransitionRule]:
        with self.lock:
            fresh = self._table is not None and (
                self.ttl_seconds <= 0 or self.clock() - self._loaded_at < self.ttl_seconds
            )
            if fresh:
                return self._table
            generation = self._generation

        # Loaded outside the lock; a concurrent clear discards this result
        table = self._load_table()

        with self.lock:
            if generation == self._generation:
                self._table = table
                self._loaded_at = self.clock()
                logger.debug(f"[WORKFLOW] Loaded {len(table)} transitions")
        return table

    def clear_workflow_cache(self):
        with self.lock:
            self._table = None
            self._generation += 1
        logger.info("[WORKFLOW] Transition cache cleared")

    def rules(self) -> List[TransitionRule]:
        return list(self._transitions().values())

    # ==================== DECISIONS ====================

    def _authorized(self, rule: TransitionRule, capabilities: CapabilitySet) -> bool:
        return capabilities.has(rule.required_capability) or capabilities.has_any(self.bypass_capabilities)

    def find_rule(self, from_status: StatusLike, to_status: StatusLike) -> Optional[TransitionRule]:
        try:
            key = (DocumentStatus.parse(from_status), DocumentStatus.parse(to_status))
        except ValidationError:
            return None
        return self._transitions().get(key)

    def can_transition(self, capabilities: CapabilitySet, from_status: StatusLike, to_status: StatusLike) -> bool:
        rule = self.find_rule(from_status, to_status)
        if rule is None:
            return False
        return self._authorized(rule, capabilities)

    def allowed_transitions(self, capabilities: CapabilitySet, from_status: StatusLike) -> List[TransitionRule]:
        current = DocumentStatus.parse(from_status)
        return [
            rule for rule in self._transitions().values()
            if rule.from_status == current and self._authorized(rule, capabilities)
        ]

    def is_terminal(self, status: StatusLike) -> bool:
        current = DocumentStatus.parse(status)
        return not any(rule.from_status == current for rule in self._transitions().values())

    def apply_transition(self, document, to_status: StatusLike, capabilities: CapabilitySet) -> TransitionRule:
        """
        Validate a status change for `document`.

        The caller persists the new status; nothing is written here.

        Raises:
            ValidationError: unknown target status
            InvalidTransition: no edge from the document's current status
            TransitionDenied: edge exists but the actor lacks its capability
        """
        target = DocumentStatus.parse(to_status)
        current = DocumentStatus.parse(document.status)

        rule = self._transitions().get((current, target))
        if rule is None:
            logger.warning(f"[WORKFLOW] No transition {current.value} -> {target.value}")
            raise InvalidTransition(current.value, target.value)

        if not self._authorized(rule, capabilities):
            logger.warning(
                f"[WORKFLOW] Denied {current.value} -> {target.value}: "
                f"requires {rule.required_capability.value}"
            )
            raise TransitionDenied(current.value, target.value, rule.required_capability.value)

        logger.info(f"[WORKFLOW] Allowed {current.value} -> {target.value}")
        return rule
