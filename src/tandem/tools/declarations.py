"""Tool declarations sent to the context and programmer models."""

from typing import List

from tandem.core.schema import ToolDeclaration

CONTEXT_TOOL_NAME = "get_context_from_file"

GET_CONTEXT_FROM_FILE = ToolDeclaration(
    name=CONTEXT_TOOL_NAME,
    description=(
        "Get the full content of one or more files, given by name, for analysis or context."
    ),
    parameters={
        "type": "object",
        "properties": {
            "file_name": {
                "type": "array",
                "description": "A list of file names whose content should be returned.",
                "items": {"type": "string"},
            }
        },
    },
    required=["file_name"],
)

CREATE_FILE = ToolDeclaration(
    name="create_file",
    description="Create a new file with the given name and content.",
    parameters={
        "type": "object",
        "properties": {
            "file_name": {
                "type": "string",
                "description": "Name of the file to create (e.g. 'script.py').",
            },
            "file_content": {"type": "string", "description": "Full content of the new file."},
        },
    },
    required=["file_name", "file_content"],
)

MODIFY_FILE = ToolDeclaration(
    name="modify_file",
    description="Modify an existing file by replacing one exact snippet with another.",
    parameters={
        "type": "object",
        "properties": {
            "file_name": {"type": "string", "description": "Name of the file to modify."},
            "piece_to_replace": {
                "type": "string",
                "description": "The exact snippet to be replaced.",
            },
            "replace_with": {
                "type": "string",
                "description": "The new text that replaces the snippet.",
            },
        },
    },
    required=["file_name", "piece_to_replace", "replace_with"],
)

CONTEXT_TOOLS: List[ToolDeclaration] = [GET_CONTEXT_FROM_FILE]
PROGRAMMER_TOOLS: List[ToolDeclaration] = [CREATE_FILE, MODIFY_FILE]
