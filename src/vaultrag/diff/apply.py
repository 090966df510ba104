"""Ask a chat model to rewrite a document with one suggested edit applied."""

from __future__ import annotations

import logging
from typing import List, Sequence

from vaultrag.diff.review import DiffReview
from vaultrag.ingestion.vault import DocumentStore
from vaultrag.llm.chat import ChatMessage, ChatModel

LOGGER = logging.getLogger(__name__)

SYSTEM_PROMPT = """You are an intelligent assistant helping a user apply changes to a markdown file.

You will receive:
1. The content of the target markdown file.
2. A conversation history between the user and the assistant. This conversation may contain multiple markdown blocks suggesting changes to the file.
3. A single, specific markdown block extracted from the conversation history. This block contains the exact changes that should be applied to the target file. Unchanged parts may be elided with "<!-- ... existing content ... -->".

Rewrite the entire markdown file with ONLY the changes from the specified block applied. Do not apply changes suggested by other parts of the conversation. Preserve every part of the original file that is not related to the changes. Output only the file content, without any additional words or explanations."""


def build_apply_prompt(
    block_to_apply: str, path: str, content: str, conversation: Sequence[ChatMessage]
) -> str:
    history = "\n".join(
        f"[{'User' if message.role == 'user' else 'Assistant'}]: {message.content}"
        for message in conversation
    )
    return (
        "# Inputs\n\n"
        "## Target File\n"
        "Here is the file to apply changes to.\n"
        f"```{path}\n{content}\n```\n\n"
        "## Conversation History\n"
        f"{history}\n\n"
        "## Changes to Apply\n"
        "Here is the markdown block that indicates where content changes should be applied.\n"
        f"<edit_block>\n{block_to_apply}\n</edit_block>\n\n"
        f"Now rewrite the entire file with the changes applied. Immediately start your response with ```{path}"
    )


def build_apply_messages(
    block_to_apply: str, path: str, content: str, conversation: Sequence[ChatMessage] = ()
) -> List[ChatMessage]:
    return [
        ChatMessage(role="system", content=SYSTEM_PROMPT),
        ChatMessage(role="user", content=build_apply_prompt(block_to_apply, path, content, conversation)),
    ]


def extract_apply_response_content(response: str) -> str:
    """Drop the opening and closing code fence lines around the rewritten file."""
    lines = response.split("\n")
    if lines and lines[0].startswith("```"):
        lines.pop(0)
    if lines and lines[-1].startswith("```"):
        lines.pop()
    return "\n".join(lines)


def apply_changes(
    chat_model: ChatModel,
    documents: DocumentStore,
    path: str,
    block_to_apply: str,
    conversation: Sequence[ChatMessage] = (),
) -> DiffReview:
    """Generate the edited document and return a review of the proposed changes."""
    current = documents.read(path)
    response = chat_model.generate(build_apply_messages(block_to_apply, path, current, conversation))
    if not response.strip():
        raise ValueError(f"The model returned an empty rewrite for {path}")
    proposed = extract_apply_response_content(response)
    review = DiffReview.from_texts(current, proposed)
    LOGGER.info("Proposed edit for %s has %d changed blocks", path, review.pending_count)
    return review


def save_review(documents: DocumentStore, path: str, review: DiffReview) -> str:
    """Write the reviewed document back and return its final text."""
    final = review.finalize()
    documents.write(path, final)
    return final
