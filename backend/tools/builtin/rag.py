"""
RAG Tools

Answers questions from the user's uploaded knowledge documents.
"""

import logging
from typing import Any, Dict

from sqlalchemy.ext.asyncio import AsyncSession

from agents.prompts.llm import call_llm
from services.knowledge_service import KnowledgeService
from tools.registry import ToolConfig, ToolResult, register_tool

logger = logging.getLogger(__name__)

NO_HITS_MESSAGE = "I'm sorry, but I couldn't find relevant information to answer your query."
RAG_ERROR_MESSAGE = "An unexpected error occurred. Please try again."

RAG_ANSWER_PROMPT = """Context: {context}
Question: {query}
Provide a clear and concise response (max 50 words)."""


async def execute_answer_from_knowledge(
    params: Dict[str, Any],
    db: AsyncSession,
    user_id: int,
    context: Dict[str, Any],
) -> ToolResult:
    """Search the knowledge base and answer from the best-matching chunks."""
    query = params.get("query", "").strip()
    if not query:
        return ToolResult(text="Error: query is required.")

    try:
        hits = await KnowledgeService(db).search(user_id, query)
        if not hits:
            return ToolResult(text=NO_HITS_MESSAGE)

        knowledge_context = "\n".join(f"{hit.file_name}: {hit.text}" for hit in hits)
        result = await call_llm(
            system_message="You answer questions using only the provided context.",
            user_message=RAG_ANSWER_PROMPT,
            values={"context": knowledge_context, "query": query},
        )
        if not result.ok:
            logger.warning(f"RAG answer generation failed: {result.error}")
            return ToolResult(text=RAG_ERROR_MESSAGE)

        return ToolResult(
            text=result.data,
            payload={
                "type": "knowledge_sources",
                "data": [
                    {"file_name": hit.file_name, "chunk_index": hit.chunk_index, "score": round(hit.score, 4)}
                    for hit in hits
                ],
            },
        )
    except Exception as e:
        logger.error(f"answer_from_knowledge failed: {e}", exc_info=True)
        return ToolResult(text=RAG_ERROR_MESSAGE)


async def execute_list_knowledge_documents(
    params: Dict[str, Any],
    db: AsyncSession,
    user_id: int,
    context: Dict[str, Any],
) -> str:
    documents = await KnowledgeService(db).list_documents(user_id)
    if not documents:
        return "No knowledge documents have been uploaded."
    lines = [f"- {doc.file_name}" + (f": {doc.description}" if doc.description else "") for doc in documents]
    return "Knowledge documents:\n" + "\n".join(lines)


register_tool(ToolConfig(
    name="answer_from_knowledge",
    description="Generates an answer from the user's uploaded documents (RAG) based on the user query.",
    input_schema={
        "type": "object",
        "properties": {
            "query": {
                "type": "string",
                "description": "User query"
            },
        },
        "required": ["query"]
    },
    executor=execute_answer_from_knowledge,
    category="rag",
))

register_tool(ToolConfig(
    name="list_knowledge_documents",
    description="List the names and descriptions of the user's uploaded knowledge documents.",
    input_schema={"type": "object", "properties": {}},
    executor=execute_list_knowledge_documents,
    category="rag",
))
