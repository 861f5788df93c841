"""
LLM-backed analysis of workflow failures.

Wraps OpenAI / Azure OpenAI chat completions. Structured answers are
obtained through a forced ``provide_analysis`` function call whose JSON
arguments are validated into an ``Analysis``.
"""

import json
import uuid
from typing import Any, Dict, List, Optional

from openai import AsyncAzureOpenAI, AsyncOpenAI
from pydantic import ValidationError

from app.models.analysis import Analysis, ConversationReply
from app.models.approval import ConversationMessage, ConversationRole
from app.models.docs import DocContext
from app.models.error_report import ErrorReport, ParsedError
from app.models.workflow import WorkflowDocument
from app.utils.logging import get_logger
from app.utils.metrics import track_api_call
from app.utils.resilience import CircuitBreaker, create_llm_circuit_breaker

logger = get_logger(__name__)

AZURE_API_VERSION = "2024-02-15-preview"
DEFAULT_REVISION_INSTRUCTION = "Please propose an alternative fix."

SYSTEM_PROMPT = """You are an expert n8n workflow debugging assistant. Your role is to analyze workflow errors and propose fixes.

When analyzing errors, you should:
1. Identify the root cause of the error
2. Consider the workflow structure and node configurations
3. Reference relevant n8n documentation and best practices
4. Propose specific, actionable fixes

Important guidelines:
- Be specific about which node(s) need changes
- Provide clear explanations that non-technical users can understand
- Consider edge cases and potential side effects of proposed fixes
- If unsure, indicate lower confidence and suggest manual review
- Never propose changes that touch node credentials or expose sensitive data"""

CONVERSATION_PROMPT = """You are an expert n8n workflow debugging assistant discussing a proposed fix with the workflow owner.
Answer their question directly and concisely, grounded in the error, the workflow and the documentation provided.
Do not propose a new fix in this reply; the owner can request a revised proposal separately.
When you rely on a documentation page, mention it by name."""

CHANGE_TYPES = ["modify_node", "add_node", "remove_node", "modify_connection", "modify_settings"]

ANALYSIS_TOOL: Dict[str, Any] = {
    "type": "function",
    "function": {
        "name": "provide_analysis",
        "description": "Provide the error analysis and fix proposal",
        "parameters": {
            "type": "object",
            "properties": {
                "rootCause": {
                    "type": "string",
                    "description": "Technical root cause of the error",
                },
                "explanation": {
                    "type": "string",
                    "description": "User-friendly explanation of what went wrong",
                },
                "affectedNodes": {
                    "type": "array",
                    "items": {"type": "string"},
                    "description": "Names of nodes affected by or causing the error",
                },
                "suggestedFix": {
                    "type": "object",
                    "properties": {
                        "description": {
                            "type": "string",
                            "description": "Human-readable description of the fix",
                        },
                        "changes": {
                            "type": "array",
                            "items": {
                                "type": "object",
                                "properties": {
                                    "nodeName": {"type": "string"},
                                    "changeType": {"type": "string", "enum": CHANGE_TYPES},
                                    "path": {
                                        "type": "string",
                                        "description": "Dotted path inside the node or settings, e.g. parameters.url",
                                    },
                                    "newValue": {
                                        "description": (
                                            "Value to set. add_node: {name, type, parameters}. "
                                            "modify_connection: {from, to, action: add|remove, outputIndex, inputIndex}"
                                        ),
                                    },
                                    "description": {"type": "string"},
                                },
                                "required": ["changeType", "newValue", "description"],
                            },
                        },
                        "rollbackPossible": {
                            "type": "boolean",
                            "description": "Whether the change can be easily reverted",
                        },
                    },
                    "required": ["description", "changes", "rollbackPossible"],
                },
                "confidence": {
                    "type": "string",
                    "enum": ["high", "medium", "low"],
                    "description": "Confidence level in the diagnosis and fix",
                },
                "relatedDocs": {
                    "type": "array",
                    "items": {"type": "string"},
                    "description": "Names of relevant n8n documentation pages",
                },
            },
            "required": [
                "rootCause", "explanation", "affectedNodes",
                "suggestedFix", "confidence", "relatedDocs",
            ],
        },
    },
}


class AnalysisError(Exception):
    """Raised when the LLM could not produce a usable analysis."""
    pass


class FixAnalyzer:
    """Produces analyses, revisions and conversational replies with an LLM."""

    def __init__(
        self,
        settings=None,
        client: Optional[AsyncOpenAI] = None,
        circuit_breaker: Optional[CircuitBreaker] = None
    ):
        """Initialize the LLM client based on configuration."""
        if settings is None:
            from app.config import settings as app_settings
            settings = app_settings

        self.circuit_breaker = circuit_breaker or create_llm_circuit_breaker()

        if client is not None:
            self.client = client
            self.deployment = settings.azure_openai_deployment or settings.openai_model
            self.is_azure = False
        elif settings.azure_openai_endpoint and settings.azure_openai_api_key:
            self.client = AsyncAzureOpenAI(
                api_key=settings.azure_openai_api_key,
                api_version=AZURE_API_VERSION,
                azure_endpoint=settings.azure_openai_endpoint,
            )
            self.deployment = settings.azure_openai_deployment or settings.openai_model
            self.is_azure = True
            logger.info("Initialized Azure OpenAI client")
        else:
            self.client = AsyncOpenAI(api_key=settings.openai_api_key)
            self.deployment = settings.openai_model
            self.is_azure = False
            logger.info("Initialized OpenAI client")

    async def close(self) -> None:
        await self.client.close()

    async def analyze(
        self,
        report: ErrorReport,
        workflow: WorkflowDocument,
        doc_context: Optional[DocContext] = None,
        parsed: Optional[ParsedError] = None
    ) -> Analysis:
        """
        Diagnose a failure and propose a fix.

        Args:
            report: The failure report
            workflow: Current workflow document
            doc_context: Relevant documentation, if any was found
            parsed: Classification of the report

        Returns:
            Analysis with a freshly identified proposal

        Raises:
            AnalysisError: The LLM call failed or returned an unusable answer
        """
        logger.info(
            "Analyzing error",
            extra={"workflow_id": workflow.id, "node_name": report.node_name}
        )
        prompt = build_analysis_prompt(report, workflow, doc_context, parsed)
        return await self._request_analysis(prompt)

    async def revise(
        self,
        prior_analysis: Analysis,
        instruction: Optional[str],
        conversation: List[ConversationMessage],
        report: ErrorReport,
        workflow: WorkflowDocument,
        doc_context: Optional[DocContext] = None
    ) -> Analysis:
        """
        Produce a new analysis superseding ``prior_analysis``.

        The prompt carries the prior proposal, the whole discussion and the
        human's final instruction.
        """
        instruction = (instruction or "").strip() or DEFAULT_REVISION_INSTRUCTION
        logger.info(
            "Revising fix",
            extra={"workflow_id": workflow.id, "instruction_preview": instruction[:100]}
        )
        prompt = build_revision_prompt(
            prior_analysis, instruction, conversation, report, workflow, doc_context
        )
        return await self._request_analysis(prompt)

    async def converse(
        self,
        analysis: Analysis,
        conversation: List[ConversationMessage],
        user_message: str,
        report: ErrorReport,
        workflow: WorkflowDocument,
        doc_context: Optional[DocContext] = None
    ) -> ConversationReply:
        """Answer a question about the current proposal without changing it."""
        context = build_conversation_context(analysis, report, workflow, doc_context)
        messages = [
            {"role": "system", "content": CONVERSATION_PROMPT},
            {"role": "user", "content": context},
        ]
        for message in conversation:
            role = "assistant" if message.role == ConversationRole.AGENT else "user"
            messages.append({"role": role, "content": message.text})
        messages.append({"role": "user", "content": user_message})

        async def _call_llm():
            async with track_api_call(logger, "openai", "chat.completions", "POST"):
                response = await self.client.chat.completions.create(
                    model=self.deployment,
                    messages=messages,
                    temperature=0.3,
                    max_tokens=1000,
                )
            return (response.choices[0].message.content or "").strip()

        try:
            reply = await self.circuit_breaker.call(_call_llm)
        except Exception as e:
            logger.error(f"Conversation reply failed: {e}", exc_info=True)
            raise AnalysisError(f"Conversation reply failed: {e}") from e

        if not reply:
            raise AnalysisError("Empty conversation reply from LLM")

        labels = doc_context.labels if doc_context else []
        cited = [label for label in labels if label.lower() in reply.lower()]
        return ConversationReply(reply=reply, cited_docs=cited)

    async def _request_analysis(self, prompt: str) -> Analysis:
        async def _call_llm():
            async with track_api_call(logger, "openai", "chat.completions", "POST"):
                response = await self.client.chat.completions.create(
                    model=self.deployment,
                    messages=[
                        {"role": "system", "content": SYSTEM_PROMPT},
                        {"role": "user", "content": prompt},
                    ],
                    tools=[ANALYSIS_TOOL],
                    tool_choice={"type": "function", "function": {"name": "provide_analysis"}},
                    temperature=0.2,
                    max_tokens=4096,
                )
            return response

        try:
            response = await self.circuit_breaker.call(_call_llm)
        except Exception as e:
            logger.error(f"LLM analysis failed: {e}", exc_info=True)
            raise AnalysisError(f"LLM analysis failed: {e}") from e

        return parse_analysis_response(response)


def parse_analysis_response(response: Any) -> Analysis:
    """
    Turn a forced tool-call completion into an Analysis with a new proposal id.

    Raises:
        AnalysisError: No tool call, invalid JSON, or a payload that does not
            validate (including malformed changes)
    """
    message = response.choices[0].message
    tool_calls = getattr(message, "tool_calls", None) or []
    call = next((c for c in tool_calls if c.function.name == "provide_analysis"), None)
    if call is None:
        raise AnalysisError("No provide_analysis tool call in LLM response")

    try:
        raw = json.loads(call.function.arguments)
    except (TypeError, json.JSONDecodeError) as e:
        raise AnalysisError(f"Invalid analysis JSON: {e}") from e

    if not isinstance(raw, dict) or not isinstance(raw.get("suggestedFix"), dict):
        raise AnalysisError("Analysis is missing suggestedFix")

    raw["suggestedFix"]["id"] = str(uuid.uuid4())

    try:
        return Analysis.model_validate(raw)
    except ValidationError as e:
        raise AnalysisError(f"Analysis failed validation: {e}") from e


def _json_preview(value: Any, limit: int) -> str:
    return json.dumps(value, indent=2, default=str)[:limit]


def _connection_lines(workflow: WorkflowDocument) -> List[str]:
    lines = []
    for source, entry in workflow.connections.items():
        for slot in entry.main:
            for target in slot:
                lines.append(f"- {source} -> {target.node}")
    return lines


def _docs_section(doc_context: Optional[DocContext]) -> str:
    if doc_context is None or doc_context.is_empty:
        return ""

    section = ""
    if doc_context.snippets:
        section += "\n## Relevant n8n Documentation\n\n"
        for snippet in doc_context.snippets:
            section += f"### {snippet.name}\n{snippet.description}\n\n"
            if snippet.content:
                section += f"{snippet.content[:500]}...\n\n"

    if doc_context.node_documentation:
        section += "\n## Node Documentation\n\n"
        section += f"{doc_context.node_documentation}\n\n"

    return section


def build_analysis_prompt(
    report: ErrorReport,
    workflow: WorkflowDocument,
    doc_context: Optional[DocContext] = None,
    parsed: Optional[ParsedError] = None
) -> str:
    """Prompt describing the failure, the workflow and the documentation."""
    prompt = "## Error Information\n\n"
    prompt += f"**Workflow ID:** {workflow.id}\n"
    prompt += f"**Workflow Name:** {workflow.name}\n"
    prompt += f"**Error Message:** {report.error_message}\n"

    node_name = report.node_name or (parsed.node_name if parsed else None)
    node_type = report.node_type or (parsed.node_type if parsed else None)
    if node_name:
        prompt += f"**Node Name:** {node_name}\n"
    if node_type:
        prompt += f"**Node Type:** {node_type}\n"
    if report.execution_id:
        prompt += f"**Execution ID:** {report.execution_id}\n"
    if parsed is not None:
        prompt += f"**Category:** {parsed.category.value} ({parsed.severity.value})\n"

    if report.error_stack:
        prompt += f"\n**Error Stack:**\n```\n{report.error_stack[:1000]}\n```\n"
    if report.input_data is not None:
        prompt += f"\n**Input Data:**\n```json\n{_json_preview(report.input_data, 1000)}\n```\n"

    prompt += "\n## Workflow Structure\n\n"
    prompt += f"**Nodes ({len(workflow.nodes)}):**\n"
    for node in workflow.nodes:
        prompt += f"- {node.name} ({node.type})\n"
        if node.name == node_name:
            prompt += f"  **Parameters:**\n```json\n{_json_preview(node.parameters, 500)}\n```\n"

    prompt += "\n**Connections:**\n"
    prompt += "\n".join(_connection_lines(workflow)) + "\n"

    prompt += _docs_section(doc_context)

    prompt += """
## Task

Analyze this error and provide:
1. The root cause of the error
2. A clear explanation for non-technical users
3. A specific fix proposal with exact changes needed
4. Your confidence level in this analysis

Use the provide_analysis tool to return your structured response."""
    return prompt


def _proposal_summary(analysis: Analysis) -> str:
    changes = "\n".join(
        f"- [{change.change_type}] {change.description}"
        for change in analysis.proposal.changes
    )
    return (
        f"**Root Cause:** {analysis.root_cause}\n"
        f"**Explanation:** {analysis.explanation}\n"
        f"**Proposed Fix:** {analysis.proposal.description}\n"
        f"**Changes:**\n{changes or '- (none)'}\n"
    )


def _conversation_transcript(conversation: List[ConversationMessage]) -> str:
    return "\n".join(
        f"{'User' if m.role == ConversationRole.USER else 'Assistant'}: {m.text}"
        for m in conversation
    )


def build_revision_prompt(
    prior_analysis: Analysis,
    instruction: str,
    conversation: List[ConversationMessage],
    report: ErrorReport,
    workflow: WorkflowDocument,
    doc_context: Optional[DocContext] = None
) -> str:
    """Prompt asking for a revised proposal in light of human feedback."""
    node = workflow.get_node(report.node_name) if report.node_name else None

    prompt = "## Original Error\n\n"
    prompt += f"**Workflow:** {workflow.name}\n"
    prompt += f"**Error:** {report.error_message}\n"
    prompt += f"**Node:** {report.node_name or 'Unknown'}\n"

    prompt += "\n## Current Analysis\n\n"
    prompt += _proposal_summary(prior_analysis)

    if conversation:
        prompt += "\n## Discussion So Far\n\n"
        prompt += _conversation_transcript(conversation) + "\n"

    prompt += "\n## User Feedback\n\n"
    prompt += f'The user has provided the following instruction for the revised fix:\n\n"{instruction}"\n'

    prompt += "\n## Workflow Structure\n\n**Nodes:**\n"
    prompt += "\n".join(f"- {n.name} ({n.type})" for n in workflow.nodes) + "\n"
    if node is not None:
        prompt += f'\n**Node Details for "{node.name}":**\n```json\n{_json_preview(node.parameters, 1500)}\n```\n'

    prompt += _docs_section(doc_context)

    prompt += """
## Task

Based on the user's feedback, revise your analysis and proposed fix. Consider:
1. Whether the user's suggestion addresses the root cause better
2. How to incorporate their feedback into a concrete fix
3. Any additional changes needed based on their insight

Provide a revised analysis using the provide_analysis tool."""
    return prompt


def build_conversation_context(
    analysis: Analysis,
    report: ErrorReport,
    workflow: WorkflowDocument,
    doc_context: Optional[DocContext] = None
) -> str:
    """Context message opening a discussion about the current proposal."""
    context = "## Error\n\n"
    context += f"**Workflow:** {workflow.name} ({workflow.id})\n"
    context += f"**Error:** {report.error_message}\n"
    if report.node_name:
        context += f"**Node:** {report.node_name}\n"

    context += "\n## Workflow Nodes\n\n"
    context += "\n".join(f"- {n.name} ({n.type})" for n in workflow.nodes) + "\n"

    context += "\n## Current Proposal\n\n"
    context += _proposal_summary(analysis)
    context += _docs_section(doc_context)
    return context
