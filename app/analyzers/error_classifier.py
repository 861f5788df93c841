"""
Error Classifier component.

Assigns a failure report to a fixed category taxonomy and pulls out the
node identity, affected areas, keywords and severity used downstream for
documentation matching and prompt building.

The classification is:
- deterministic (no randomness, no I/O)
- total (unmatched text is classified as ``unknown``)
- priority ordered (the first category with a matching pattern wins)
"""

import re
from typing import Dict, List, Optional, Pattern

from app.models.error_report import ErrorCategory, ErrorReport, ParsedError, Severity
from app.models.workflow import WorkflowDocument
from app.utils.logging import get_logger

logger = get_logger(__name__)

MAX_KEYWORDS = 20
MIN_KEYWORD_LENGTH = 4

# Insertion order is match priority.
ERROR_PATTERNS: Dict[ErrorCategory, List[Pattern[str]]] = {
    ErrorCategory.AUTHENTICATION: [
        re.compile(r"authentication failed", re.I),
        re.compile(r"unauthorized", re.I),
        re.compile(r"invalid.*credentials", re.I),
        re.compile(r"401"),
        re.compile(r"access.*denied", re.I),
        re.compile(r"invalid.*token", re.I),
        re.compile(r"expired.*token", re.I),
    ],
    ErrorCategory.NETWORK: [
        re.compile(r"ECONNREFUSED"),
        re.compile(r"ENOTFOUND"),
        re.compile(r"ETIMEDOUT"),
        re.compile(r"network.*error", re.I),
        re.compile(r"connection.*failed", re.I),
        re.compile(r"socket.*error", re.I),
        re.compile(r"dns.*error", re.I),
    ],
    ErrorCategory.VALIDATION: [
        re.compile(r"validation.*failed", re.I),
        re.compile(r"invalid.*input", re.I),
        re.compile(r"required.*field", re.I),
        re.compile(r"schema.*error", re.I),
        re.compile(r"type.*error", re.I),
        re.compile(r"invalid.*format", re.I),
    ],
    ErrorCategory.CONFIGURATION: [
        re.compile(r"configuration.*error", re.I),
        re.compile(r"missing.*configuration", re.I),
        re.compile(r"invalid.*setting", re.I),
        re.compile(r"not.*configured", re.I),
        re.compile(r"parameter.*missing", re.I),
    ],
    ErrorCategory.RATE_LIMIT: [
        re.compile(r"rate.*limit", re.I),
        re.compile(r"too.*many.*requests", re.I),
        re.compile(r"429"),
        re.compile(r"throttl", re.I),
        re.compile(r"quota.*exceeded", re.I),
    ],
    ErrorCategory.DATA_FORMAT: [
        re.compile(r"json.*parse", re.I),
        re.compile(r"unexpected.*token", re.I),
        re.compile(r"invalid.*json", re.I),
        re.compile(r"xml.*parse", re.I),
        re.compile(r"malformed", re.I),
    ],
    ErrorCategory.MISSING_DATA: [
        re.compile(r"undefined", re.I),
        re.compile(r"null", re.I),
        re.compile(r"not.*found", re.I),
        re.compile(r"404"),
        re.compile(r"does.*not.*exist", re.I),
        re.compile(r"no.*data", re.I),
        re.compile(r"empty.*response", re.I),
    ],
    ErrorCategory.TIMEOUT: [
        re.compile(r"timeout", re.I),
        re.compile(r"timed.*out", re.I),
        re.compile(r"deadline.*exceeded", re.I),
        re.compile(r"operation.*took.*too.*long", re.I),
    ],
    ErrorCategory.PERMISSION: [
        re.compile(r"permission.*denied", re.I),
        re.compile(r"forbidden", re.I),
        re.compile(r"403"),
        re.compile(r"not.*allowed", re.I),
        re.compile(r"insufficient.*permissions", re.I),
    ],
}

SEVERITY_BY_CATEGORY: Dict[ErrorCategory, Severity] = {
    ErrorCategory.AUTHENTICATION: Severity.CRITICAL,
    ErrorCategory.PERMISSION: Severity.CRITICAL,
    ErrorCategory.RATE_LIMIT: Severity.WARNING,
    ErrorCategory.TIMEOUT: Severity.WARNING,
}

AREA_BY_CATEGORY: Dict[ErrorCategory, str] = {
    ErrorCategory.AUTHENTICATION: "credentials",
    ErrorCategory.NETWORK: "external_service",
    ErrorCategory.TIMEOUT: "external_service",
    ErrorCategory.VALIDATION: "input_data",
    ErrorCategory.DATA_FORMAT: "input_data",
}

STOP_WORDS = frozenset({
    "the", "a", "an", "is", "was", "are", "were", "be", "been", "being",
    "have", "has", "had", "do", "does", "did", "will", "would", "could",
    "should", "may", "might", "must", "shall", "can", "need", "dare",
    "ought", "used", "to", "of", "in", "for", "on", "with", "at", "by",
    "from", "as", "into", "through", "during", "before", "after", "above",
    "below", "between", "under", "again", "further", "then", "once",
    "here", "there", "when", "where", "why", "how", "all", "each", "few",
    "more", "most", "other", "some", "such", "no", "nor", "not", "only",
    "own", "same", "so", "than", "too", "very", "just", "and", "but",
    "if", "or", "because", "until", "while", "this", "that", "these",
    "those", "error", "failed", "failure",
})

_NODE_MENTION = re.compile(r"""node\s+['"]?(\w+)['"]?""", re.I)
_NON_WORD = re.compile(r"[^\w\s]")


def classify(report: ErrorReport, workflow: Optional[WorkflowDocument] = None) -> ParsedError:
    """
    Classify a failure report.

    Args:
        report: The inbound failure report
        workflow: Workflow document used to resolve the node type by name

    Returns:
        ParsedError with exactly one category and its fixed severity
    """
    full_text = f"{report.error_message or ''} {report.error_stack or ''}"

    category = _match_category(full_text)

    node_type = report.node_type
    node_name = report.node_name

    if not node_name:
        match = _NODE_MENTION.search(full_text)
        if match:
            node_name = match.group(1)

    if workflow is not None and node_name and not node_type:
        node = workflow.get_node(node_name)
        if node is not None:
            node_type = node.type

    affected_areas: List[str] = []
    if node_type:
        affected_areas.append(f"node:{node_type}")
    if category in AREA_BY_CATEGORY:
        affected_areas.append(AREA_BY_CATEGORY[category])

    keywords = extract_keywords(full_text)
    severity = SEVERITY_BY_CATEGORY.get(category, Severity.ERROR)

    logger.debug(
        "Parsed error",
        extra={
            "category": category.value,
            "node_type": node_type,
            "node_name": node_name,
            "affected_areas": affected_areas,
            "severity": severity.value,
            "keyword_count": len(keywords),
        }
    )

    return ParsedError(
        category=category,
        node_type=node_type,
        node_name=node_name,
        affected_areas=affected_areas,
        keywords=keywords,
        severity=severity,
    )


def _match_category(text: str) -> ErrorCategory:
    for category, patterns in ERROR_PATTERNS.items():
        if any(pattern.search(text) for pattern in patterns):
            return category
    return ErrorCategory.UNKNOWN


def extract_keywords(text: str) -> List[str]:
    """Lowercased, de-duplicated significant words in first-seen order."""
    words = _NON_WORD.sub(" ", text.lower()).split()
    seen = []
    for word in words:
        if len(word) < MIN_KEYWORD_LENGTH or word in STOP_WORDS or word in seen:
            continue
        seen.append(word)
        if len(seen) == MAX_KEYWORDS:
            break
    return seen


def get_error_context(report: ErrorReport) -> str:
    """One-line summary of a report for logs and message headers."""
    parts = []
    if report.node_name:
        parts.append(f"Node: {report.node_name}")
    if report.node_type:
        parts.append(f"Type: {report.node_type}")
    parts.append(f"Error: {report.error_message[:100]}")
    return " | ".join(parts)
