"""
Two-stage orchestrator for Tandem.

Every user message goes through two models:

1. The *context* model sees the request and the list of files and may ask for the content of the
   relevant ones (one single-shot generation, at most one function call honored).
2. The *programmer* model receives the request plus the retrieved content and either answers in
   text or calls ``create_file`` / ``modify_file`` through the function-call loop.
"""

from __future__ import annotations

import logging
from typing import (
    Any,
    List,
    Mapping,
    Optional,
    Sequence,
)

from tandem.agent.behavior_loader import LoadedBehavior
from tandem.agent.conversation import Conversation
from tandem.agent.function_loop import run_to_completion
from tandem.agent.model_interface import (
    BaseModelClient,
    load_model,
)
from tandem.config import Settings
from tandem.core.errors import (
    OrchestrationError,
    TandemError,
)
from tandem.core.schema import (
    OrchestrationResult,
    Part,
    ToolDeclaration,
    Turn,
)
from tandem.tools import ToolRegistry
from tandem.tools.declarations import (
    CONTEXT_TOOL_NAME,
    CONTEXT_TOOLS,
    PROGRAMMER_TOOLS,
)
from tandem.tools.file_ops import (
    READ_ERROR_PREFIX,
    SandboxedFiles,
    build_programmer_registry,
)

logger = logging.getLogger(__name__)

NO_CONTEXT_SENTINEL = "No context needed."
NO_FILES_TEXT = "No files found."
CONTEXT_HEADER = "### Relevant File Context ###"
CONTEXT_FOOTER = "### End of Context ###"

PRIMER_ACK = (
    "Understood. I'm ready to program. I will receive the context I need and use the tools to "
    "create or modify files as requested. How can I help?"
)


# ---------------------------------------------------------------------------
# Prompt helpers
# ---------------------------------------------------------------------------
def build_context_prompt(user_message: str, file_names: Sequence[str]) -> str:
    """Prompt asking the context model which files matter for *user_message*."""
    file_list = ", ".join(file_names) if file_names else NO_FILES_TEXT
    return (
        f'Analyzing the user request: "{user_message}".\n'
        f"The existing files in the directory are: [{file_list}].\n"
        "Which of these files are relevant to provide context? If any are relevant, use the "
        f"'{CONTEXT_TOOL_NAME}' tool to get the content of ONLY the relevant files. If none are "
        f'relevant or no files exist, reply only with "{NO_CONTEXT_SENTINEL}"'
    )


def format_context(structured: Optional[Mapping[str, str]]) -> str:
    """
    Render retrieved file contents as one text block.

    Readable files are wrapped in labeled delimiters; files that could not be read become a single
    delimited error notice.  Returns ``""`` when there is nothing to show.
    """
    if not structured:
        return ""
    blocks: List[str] = []
    for name, content in structured.items():
        if content.startswith(f'{READ_ERROR_PREFIX} "{name}"'):
            blocks.append(f"--- Error reading {name}: {content} ---")
        else:
            blocks.append(f"--- Content of {name} ---\n{content}\n--- End of {name} ---")
    return "\n\n".join(blocks)


def build_programmer_prompt(user_message: str, formatted_context: str) -> str:
    """Append the context block to the user's message, or return the message unchanged."""
    if not formatted_context:
        return user_message
    return f"{user_message}\n\n{CONTEXT_HEADER}\n{formatted_context}\n{CONTEXT_FOOTER}"


def build_primer(
    files_dir: str, tools: Sequence[ToolDeclaration], behavior: Optional[LoadedBehavior] = None
) -> List[Turn]:
    """Opening exchange of the programmer conversation, with the behavior's persona if any."""
    tool_names = ", ".join(f"'{tool.name}'" for tool in tools) or "no tools"
    lines = [
        f"You are an AI programming assistant. You can create and modify files in the directory "
        f"'{files_dir}'. Relevant context from existing files will be provided when needed. "
        f"Use the tools {tool_names} to complete the tasks."
    ]
    if behavior is not None:
        if behavior.name:
            lines.append(f"Your name is {behavior.name}.")
        if behavior.instructions:
            lines.append(f"Instructions: {behavior.instructions}")
        if behavior.response_tone:
            lines.append(f"Respond in a {behavior.response_tone} tone.")
        if behavior.memories:
            lines.append("Things to remember:\n" + "\n".join(f"- {m}" for m in behavior.memories))
    return [
        Turn(role="user", parts=[Part(text="\n".join(lines))]),
        Turn(role="model", parts=[Part(text=PRIMER_ACK)]),
    ]


# ---------------------------------------------------------------------------
# Orchestrator
# ---------------------------------------------------------------------------
class Orchestrator:
    """Sequences the context stage and the programmer stage for each user message."""

    def __init__(
        self,
        context_model: BaseModelClient,
        programmer: Conversation,
        files: SandboxedFiles,
        registry: ToolRegistry,
        *,
        feedback_enabled: bool = True,
        max_rounds: int = 10,
        max_repeated_calls: int = 3,
        tool_timeout: Optional[float] = None,
    ) -> None:
        self.context_model = context_model
        self.programmer = programmer
        self.files = files
        self.registry = registry
        self.feedback_enabled = feedback_enabled
        self.max_rounds = max_rounds
        self.max_repeated_calls = max_repeated_calls
        self.tool_timeout = tool_timeout

    async def retrieve_context(self, user_message: str, log: List[str]) -> Optional[dict[str, str]]:
        """Run the context stage; return the structured file contents, or ``None``."""
        log.append("Querying context model...")
        file_names = await self.files.list_files()
        prompt = build_context_prompt(user_message, file_names)

        reply = await self.context_model.generate([], [Part(text=prompt)], CONTEXT_TOOLS)
        if not reply.function_calls:
            logger.info("Context model chose not to fetch files: %s", reply.text)
            log.append("Context model decided not to fetch file contents.")
            return None

        call = reply.function_calls[0]
        if call.name != CONTEXT_TOOL_NAME:
            logger.warning("Context model called unexpected function: %s", call.name)
            log.append(f"Context model called unexpected function: {call.name}")
            return None

        requested: Any = call.args.get("file_name")
        if not isinstance(requested, list):
            logger.error("Context model sent file_name=%r instead of a list", requested)
            log.append("Context request was invalid: file_name must be a list.")
            return None

        log.append(f"Context requested for: {', '.join(map(str, requested))}")
        structured = await self.files.read_many(requested)
        log.append("Context retrieved.")
        return structured

    async def orchestrate(self, user_message: str) -> OrchestrationResult:
        """
        Process one user message end to end.

        Raises
        ------
        TandemError
            Any failure, with the orchestrator log collected so far in ``messages``.
        """
        log: List[str] = []
        try:
            async with self.programmer.lock:
                structured = await self.retrieve_context(user_message, log)
                formatted = format_context(structured)
                if formatted:
                    log.append("Context formatted.")
                else:
                    log.append("No additional context retrieved.")

                log.append("Querying programmer model...")
                prompt = build_programmer_prompt(user_message, formatted)
                outcome = await run_to_completion(
                    self.programmer,
                    [Part(text=prompt)],
                    self.registry,
                    feedback_enabled=self.feedback_enabled,
                    max_rounds=self.max_rounds,
                    max_repeated_calls=self.max_repeated_calls,
                    tool_timeout=self.tool_timeout,
                )
        except TandemError as exc:
            exc.messages = log
            raise
        except Exception as exc:  # pylint: disable=broad-except
            logger.exception("Unexpected failure while orchestrating")
            raise OrchestrationError(str(exc), messages=log) from exc

        if outcome.tool_results:
            names = ", ".join(result.name for result in outcome.tool_results)
            log.append(f"Programmer requested action: {names}")
        if outcome.text:
            log.append("Programmer responded with text.")
        elif not outcome.tool_results:
            log.append("Programmer returned neither text nor action.")

        return OrchestrationResult(
            text=outcome.text, tool_results=outcome.tool_results, messages=log
        )


def create_orchestrator(
    config: Settings,
    behavior: Optional[LoadedBehavior] = None,
    *,
    files_dir: Optional[str] = None,
    feedback_enabled: Optional[bool] = None,
    context_model: Optional[BaseModelClient] = None,
    programmer_model: Optional[BaseModelClient] = None,
) -> Orchestrator:
    """
    Build an orchestrator with a fresh programmer conversation from *config*.

    A behavior that declares tools replaces the default ``create_file`` / ``modify_file`` set
    and its ``loaded_tools`` become the implementations.
    """
    files = SandboxedFiles(files_dir or config.FILES_DIR)

    if behavior is not None and behavior.tools:
        declarations: Sequence[ToolDeclaration] = behavior.tools
        registry = behavior.loaded_tools or ToolRegistry()
    else:
        declarations = PROGRAMMER_TOOLS
        registry = build_programmer_registry(files)

    common = {
        "max_output_tokens": config.MAX_OUTPUT_TOKENS,
        "timeout": config.MODEL_TIMEOUT,
        "max_retries": config.MODEL_MAX_RETRIES,
    }
    if context_model is None:
        context_model = load_model(
            config.PROVIDER, api_key=config.CONTEXT_API_KEY, model=config.CONTEXT_MODEL, **common
        )
    if programmer_model is None:
        programmer_model = load_model(
            config.PROVIDER,
            api_key=config.PROGRAMMER_API_KEY,
            model=config.PROGRAMMER_MODEL,
            **common,
        )

    programmer = Conversation(
        programmer_model,
        tools=declarations,
        history=build_primer(str(files.root), declarations, behavior),
    )
    return Orchestrator(
        context_model,
        programmer,
        files,
        registry,
        feedback_enabled=config.FEEDBACK_ENABLED if feedback_enabled is None else feedback_enabled,
        max_rounds=config.MAX_TOOL_ROUNDS,
        max_repeated_calls=config.MAX_REPEATED_CALLS,
        tool_timeout=config.TOOL_TIMEOUT,
    )
