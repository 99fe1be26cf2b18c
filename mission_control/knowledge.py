"""Knowledge-base lookups with best-effort semantic search and AI answers.

Both optional providers degrade quietly: without an embedding key search
falls back to substring matching, and without an LLM key ``ask`` returns a
deterministic summary of the best matches.
"""
from __future__ import annotations

import dataclasses
import logging
from typing import Any

import httpx

from mission_control.llm import LLMCallError, LLMClient, llm_configured
from mission_control.proxy import Collection
from mission_control.store import StoreClient, StoreError, any_ilike, eq

log = logging.getLogger(__name__)

KNOWLEDGE_TABLE = "knowledge_items"
KNOWLEDGE_COLUMNS = "id,url,title,type,summary,author,tags,entities,added_by,added_at"
TEXT_SEARCH_FIELDS = ("title", "summary", "content", "author")

ITEMS_DEFAULT_LIMIT = 50

KNOWLEDGE_ITEMS = Collection(
    table=KNOWLEDGE_TABLE, plural="items", singular="item", label="Knowledge item",
    columns=KNOWLEDGE_COLUMNS, order=("added_at.desc",), limit=ITEMS_DEFAULT_LIMIT,
)

EMBEDDING_URL = "https://api.jina.ai/v1/embeddings"
EMBEDDING_MODEL = "jina-embeddings-v2-base-en"
MATCH_FUNCTION = "match_knowledge_items"
MATCH_THRESHOLD = 0.5

DEFAULT_LIMIT = 20
MAX_LIMIT = 50
ASK_SOURCES = 3

NO_KNOWLEDGE_ANSWER = (
    "I don't have any relevant knowledge on that yet. Try ingesting some articles first!"
)

ASK_PROMPT = """\
You are Clara, an AI assistant for Pontis (a memorial technology company focused on \
cemetery monuments, headstones, and memorial products). Answer the following question \
based ONLY on the provided knowledge base context. Be concise and cite sources by number \
in brackets like [1].

Context:
{context}

Question: {question}

Answer (2-4 sentences, cite sources with [1], [2], etc.):"""


def clamp_limit(raw: Any) -> int:
    try:
        limit = int(raw)
    except (TypeError, ValueError):
        return DEFAULT_LIMIT
    return max(1, min(limit, MAX_LIMIT))


async def embed_query(
    query: str, api_key: str, http: httpx.AsyncClient | None = None,
) -> list[float] | None:
    """Embed a query string; ``None`` when no key is set or the provider fails."""
    if not api_key:
        return None
    own_client = http is None
    client = http or httpx.AsyncClient()
    try:
        response = await client.post(
            EMBEDDING_URL,
            headers={"Authorization": f"Bearer {api_key}"},
            json={"model": EMBEDDING_MODEL, "input": [query]},
        )
        response.raise_for_status()
        data = response.json().get("data") or []
        return data[0].get("embedding") if data else None
    except (httpx.HTTPError, ValueError, AttributeError) as exc:
        log.warning("Embedding lookup failed, using text search: %s", exc)
        return None
    finally:
        if own_client:
            await client.aclose()


async def search_knowledge(
    store: StoreClient,
    query: str = "",
    item_type: str = "",
    limit: Any = DEFAULT_LIMIT,
    embedding_key: str = "",
) -> dict[str, Any]:
    """Return ``{results, query, mode}`` where mode is list, semantic or text.

    Store errors on the list and text paths propagate; the semantic path
    falls through to text search on any failure.
    """
    limit = clamp_limit(limit)
    query = (query or "").strip()
    type_filter = [eq("type", item_type)] if item_type else []
    order = ("added_at.desc",)

    if not query:
        rows = await store.select(KNOWLEDGE_TABLE, KNOWLEDGE_COLUMNS, type_filter, order, limit)
        return {"results": rows, "query": "", "mode": "list"}

    embedding = await embed_query(query, embedding_key)
    if embedding:
        try:
            matches = await store.rpc(MATCH_FUNCTION, {
                "query_embedding": embedding,
                "match_threshold": MATCH_THRESHOLD,
                "match_count": limit,
            })
            if matches:
                return {"results": matches, "query": query, "mode": "semantic"}
        except StoreError as exc:
            log.warning("Semantic search failed, using text search: %s", exc)

    rows = await store.select(
        KNOWLEDGE_TABLE, KNOWLEDGE_COLUMNS,
        [any_ilike(TEXT_SEARCH_FIELDS, query), *type_filter], order, limit,
    )
    return {"results": rows, "query": query, "mode": "text"}


def _context(items: list[dict[str, Any]]) -> str:
    blocks = []
    for i, item in enumerate(items, start=1):
        by = f" by {item['author']}" if item.get("author") else ""
        blocks.append(f"[{i}] {item.get('title', '')}{by}\n{item.get('summary') or ''}\nSource: {item.get('url', '')}")
    return "\n\n".join(blocks)


def fallback_answer(items: list[dict[str, Any]]) -> str:
    return f'Based on {len(items)} relevant items in the knowledge base. Top match: "{items[0].get("title", "")}"'


async def ask_knowledge(
    store: StoreClient,
    question: str,
    embedding_key: str = "",
    client: LLMClient | None = None,
) -> dict[str, Any]:
    found = await search_knowledge(store, question, limit=5, embedding_key=embedding_key)
    items: list[dict[str, Any]] = found["results"]
    if not items:
        return {"answer": NO_KNOWLEDGE_ANSWER, "sources": []}

    sources = items[:ASK_SOURCES]
    if client is None and not llm_configured():
        return {"answer": fallback_answer(items), "sources": sources}

    try:
        client = client or LLMClient()
        answer = await client.complete(ASK_PROMPT.format(context=_context(sources), question=question))
    except (LLMCallError, ValueError) as exc:
        log.warning("Knowledge answer fell back to summary: %s", exc)
        answer = fallback_answer(items)
    return {"answer": answer, "sources": sources}


async def knowledge_status(store: StoreClient) -> dict[str, Any]:
    """Readiness probe for the ask endpoint."""
    rows = await store.select(KNOWLEDGE_TABLE, "id")
    return {"ok": True, "itemCount": len(rows)}


async def list_items(store: StoreClient, limit: Any = ITEMS_DEFAULT_LIMIT) -> list[dict[str, Any]]:
    """Newest knowledge items; a missing or unparseable limit means the default."""
    try:
        limit = max(1, int(limit))
    except (TypeError, ValueError):
        limit = ITEMS_DEFAULT_LIMIT
    return await dataclasses.replace(KNOWLEDGE_ITEMS, limit=limit).list_rows(store)


async def delete_item(store: StoreClient, item_id: str) -> dict[str, bool]:
    await KNOWLEDGE_ITEMS.delete(store, item_id)
    return {"ok": True}
