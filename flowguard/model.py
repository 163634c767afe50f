# flowguard/model.py
from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional, Union


# ---------- Port types ----------

MAIN = "main"
ERROR = "error"

AI_LANGUAGE_MODEL = "ai_languageModel"
AI_MEMORY = "ai_memory"
AI_TOOL = "ai_tool"
AI_EMBEDDING = "ai_embedding"
AI_VECTOR_STORE = "ai_vectorStore"
AI_DOCUMENT = "ai_document"
AI_TEXT_SPLITTER = "ai_textSplitter"
AI_OUTPUT_PARSER = "ai_outputParser"

AI_CONNECTION_TYPES = (
    AI_LANGUAGE_MODEL,
    AI_MEMORY,
    AI_TOOL,
    AI_EMBEDDING,
    AI_VECTOR_STORE,
    AI_DOCUMENT,
    AI_TEXT_SPLITTER,
    AI_OUTPUT_PARSER,
)

PORT_TYPES = (MAIN, ERROR) + AI_CONNECTION_TYPES

# Execution-control fields that belong on the node, never inside parameters
NODE_LEVEL_PROPERTIES = (
    "onError",
    "continueOnFail",
    "retryOnFail",
    "maxTries",
    "waitBetweenTries",
    "alwaysOutputData",
    "executeOnce",
    "disabled",
    "notes",
    "notesInFlow",
    "credentials",
)


class Severity(str, Enum):
    ERROR = "error"
    WARNING = "warning"
    INFO = "info"


class Profile(str, Enum):
    """Strictness profile handed to the per-type config validator."""

    MINIMAL = "minimal"
    RUNTIME = "runtime"
    AI_FRIENDLY = "ai-friendly"
    STRICT = "strict"


class FixConfidence(str, Enum):
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"

    @property
    def rank(self) -> int:
        # lower rank = more confident
        return _CONFIDENCE_ORDER.index(self)

    def at_least(self, threshold: "FixConfidence") -> bool:
        return self.rank <= threshold.rank


_CONFIDENCE_ORDER = [FixConfidence.HIGH, FixConfidence.MEDIUM, FixConfidence.LOW]


# ---------- Diagnostics ----------

@dataclass
class NodeSuggestion:
    node_type: str
    confidence: float
    reason: str
    display_name: str = ""

    def to_dict(self) -> Dict[str, Any]:
        return {"nodeType": self.node_type, "confidence": self.confidence, "reason": self.reason}


@dataclass
class Diagnostic:
    severity: Severity
    message: str
    node_id: Optional[str] = None
    node_name: Optional[str] = None
    code: Optional[str] = None
    fix: Optional[Dict[str, Any]] = None
    suggestions: List[NodeSuggestion] = field(default_factory=list)
    details: Optional[Dict[str, Any]] = None

    def to_dict(self) -> Dict[str, Any]:
        out: Dict[str, Any] = {"type": self.severity.value, "message": self.message}
        if self.node_id is not None:
            out["nodeId"] = self.node_id
        if self.node_name is not None:
            out["nodeName"] = self.node_name
        if self.code:
            out["code"] = self.code
        if self.fix:
            out["fix"] = dict(self.fix)
        if self.suggestions:
            out["suggestions"] = [s.to_dict() for s in self.suggestions]
        if self.details:
            out["details"] = dict(self.details)
        return out

    def key(self) -> tuple:
        """Identity used when comparing diagnostic sets across runs."""
        return (self.severity.value, self.node_id, self.node_name, self.code, self.message)


# ---------- Validation I/O ----------

@dataclass
class ValidationOptions:
    validate_nodes: bool = True
    validate_connections: bool = True
    validate_expressions: bool = True
    profile: Union[Profile, str] = Profile.RUNTIME

    def __post_init__(self):
        self.profile = Profile(self.profile)


@dataclass
class ValidationStatistics:
    total_nodes: int = 0
    enabled_nodes: int = 0
    trigger_nodes: int = 0
    valid_connections: int = 0
    invalid_connections: int = 0
    expressions_validated: int = 0

    def to_dict(self) -> Dict[str, int]:
        return {
            "totalNodes": self.total_nodes,
            "enabledNodes": self.enabled_nodes,
            "triggerNodes": self.trigger_nodes,
            "validConnections": self.valid_connections,
            "invalidConnections": self.invalid_connections,
            "expressionsValidated": self.expressions_validated,
        }


@dataclass
class ValidationResult:
    errors: List[Diagnostic] = field(default_factory=list)
    warnings: List[Diagnostic] = field(default_factory=list)
    infos: List[Diagnostic] = field(default_factory=list)
    statistics: ValidationStatistics = field(default_factory=ValidationStatistics)
    suggestions: List[str] = field(default_factory=list)

    @property
    def valid(self) -> bool:
        return not self.errors

    @property
    def diagnostics(self) -> List[Diagnostic]:
        return [*self.errors, *self.warnings, *self.infos]

    def add(self, diagnostic: Diagnostic) -> Diagnostic:
        if diagnostic.severity is Severity.ERROR:
            self.errors.append(diagnostic)
        elif diagnostic.severity is Severity.WARNING:
            self.warnings.append(diagnostic)
        else:
            self.infos.append(diagnostic)
        return diagnostic

    def error(self, message: str, node: Optional[Dict[str, Any]] = None, **kw) -> Diagnostic:
        return self.add(_diagnostic(Severity.ERROR, message, node, **kw))

    def warning(self, message: str, node: Optional[Dict[str, Any]] = None, **kw) -> Diagnostic:
        return self.add(_diagnostic(Severity.WARNING, message, node, **kw))

    def info(self, message: str, node: Optional[Dict[str, Any]] = None, **kw) -> Diagnostic:
        return self.add(_diagnostic(Severity.INFO, message, node, **kw))

    def extend(self, diagnostics: List[Diagnostic]) -> None:
        for d in diagnostics:
            self.add(d)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "valid": self.valid,
            "errors": [d.to_dict() for d in self.errors],
            "warnings": [d.to_dict() for d in self.warnings],
            "infos": [d.to_dict() for d in self.infos],
            "statistics": self.statistics.to_dict(),
            "suggestions": list(self.suggestions),
        }


def _diagnostic(severity: Severity, message: str, node: Optional[Dict[str, Any]], **kw) -> Diagnostic:
    if node is not None:
        kw.setdefault("node_id", node.get("id"))
        kw.setdefault("node_name", node.get("name"))
    return Diagnostic(severity=severity, message=message, **kw)
