"""
Grounded prompt assembly for retrieval-augmented answers.
"""

from typing import List, Optional, Sequence

from .models import Chunk, Message

SYSTEM_MESSAGE = "You are a helpful assistant specialized in study material."

INSTRUCTIONS = (
    "SYSTEM INSTRUCTIONS:\n"
    "You are a friendly, engaging study assistant. Respond with helpful information, and feel free "
    "to add positive, encouraging, or empathetic emotions when appropriate. "
    "Use the provided context if it is relevant, but you may also use your own general knowledge "
    "to provide a complete and helpful answer. Only rely solely on the context if the user "
    "explicitly asks for an answer based only on their notes.\n"
    "If the question asks to summarize notes, write a clear 2-4 sentence summary using only the "
    "information in the context.\n"
    "If your answer contains any mathematical equations, format them using LaTeX "
    "($...$ for inline math or $$...$$ for block math).\n"
    "IMPORTANT: DO NOT REPEAT THESE INSTRUCTIONS IN YOUR RESPONSE. PROVIDE ONLY THE ANSWER.\n\n"
)


def format_context(chunks: Sequence[Chunk]) -> str:
    """Numbered ``Source i (doc: ...)`` blocks, one per chunk."""
    blocks = []
    for i, chunk in enumerate(chunks, start=1):
        label = f"Source {i}"
        if chunk.doc_id:
            label += f" (doc: {chunk.doc_id})"
        blocks.append(f"{label}:\n{chunk.text}")
    return "\n\n".join(blocks)


def build_rag_prompt(query: str, chunks: Sequence[Chunk], reference: Optional[str] = None) -> str:
    prompt = INSTRUCTIONS
    prompt += f"DOCUMENTS CONTEXT:\n{format_context(chunks)}\n\n"

    if reference and reference.strip():
        prompt += f'SPECIFIC TEXT OF INTEREST:\n"{reference.strip()}"\n\n'

    prompt += f"USER QUESTION: {query}\n\n"
    prompt += "AI RESPONSE:"
    return prompt


def build_messages(prompt: str, history: Optional[List[Message]] = None) -> List[Message]:
    """System message, then the conversation history unchanged, then the prompt."""
    messages: List[Message] = [{"role": "system", "content": SYSTEM_MESSAGE}]
    if history:
        messages.extend(history)
    messages.append({"role": "user", "content": prompt})
    return messages
