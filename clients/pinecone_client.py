import os
import asyncio
from typing import List, Dict, Any, Optional
from dotenv import load_dotenv
import logging
from pinecone import Pinecone

# Load environment variables
load_dotenv()

# Environment variables
PINECONE_API_KEY = os.getenv("PINECONE_API_KEY")
PINECONE_INDEX_NAME = os.getenv("PINECONE_INDEX_NAME", "studyforge-transcripts")

# text-embedding-3-small
EMBEDDING_DIMENSION = 1536

logger = logging.getLogger(__name__)

_pc: Optional[Pinecone] = None


def get_index():
    """Lazy Pinecone index handle."""
    global _pc
    if _pc is None:
        if not PINECONE_API_KEY:
            raise ValueError("PINECONE_API_KEY must be set")
        _pc = Pinecone(api_key=PINECONE_API_KEY)
        logger.info("Initialized Pinecone client")
    return _pc.Index(PINECONE_INDEX_NAME)


def get_filter_dict(content_id: Optional[str] = None, user_id: Optional[str] = None) -> Dict[str, Any]:
    filter_dict = {}
    if content_id:
        filter_dict["content_id"] = {"$eq": content_id}
    if user_id:
        filter_dict["user_id"] = {"$eq": user_id}
    return filter_dict


def upsert_vectors(
    content_id: str,
    user_id: str,
    embeddings: List[List[float]],
    chunks: List[Dict[str, Any]],
    batch_size: int = 100,
) -> int:
    """
    Upsert chunk embeddings with content/user metadata.

    Args:
        content_id: Content id stored in metadata and used in vector ids.
        user_id: Owner id stored in metadata.
        embeddings: One embedding per chunk.
        chunks: Chunk dicts with text, chunk_index, start_time, end_time.
        batch_size: Max vectors per upsert call.

    Returns:
        Number of vectors upserted.
    """
    if len(embeddings) != len(chunks):
        raise ValueError(f"Got {len(embeddings)} embeddings for {len(chunks)} chunks")

    index = get_index()
    total = 0
    for i in range(0, len(embeddings), batch_size):
        vectors = []
        for emb, chunk in zip(embeddings[i:i + batch_size], chunks[i:i + batch_size]):
            vectors.append({
                "id": f"{content_id}::{chunk['chunk_index']}",
                "values": emb,
                "metadata": {
                    "content_id": content_id,
                    "user_id": user_id,
                    "chunk_index": chunk["chunk_index"],
                    "start_time": chunk.get("start_time", 0),
                    "end_time": chunk.get("end_time", 0),
                    "text": chunk["text"],
                },
            })
        index.upsert(vectors=vectors)
        total += len(vectors)
    logger.info(f"Upserted {total} vectors for content_id={content_id}")
    return total


def delete_by_metadata(filter_dict: Dict[str, Any]) -> None:
    """Delete every vector matching the metadata filter."""
    if not filter_dict:
        raise ValueError("Refusing to delete with an empty filter")
    logger.info(f"Deleting vectors from {PINECONE_INDEX_NAME} with filter: {filter_dict}")
    get_index().delete(filter=filter_dict)


def query_vectors(
    embedding: List[float],
    top_k: int = 10,
    content_id: Optional[str] = None,
    user_id: Optional[str] = None,
) -> List[Dict[str, Any]]:
    results = get_index().query(
        vector=embedding,
        filter=get_filter_dict(content_id, user_id) or None,
        top_k=top_k,
        include_metadata=True,
    )
    return [
        {"id": match.id, "score": match.score, "metadata": match.metadata or {}}
        for match in results.matches
    ]


def has_vectors(content_id: str) -> bool:
    """True when at least one vector for the content remains in the index."""
    results = get_index().query(
        vector=[0.0] * EMBEDDING_DIMENSION,
        filter=get_filter_dict(content_id),
        top_k=1,
        include_metadata=False,
        include_values=False,
    )
    return len(results.matches) > 0


class PineconeVectorStore:
    """Async facade over the index functions."""

    async def upsert(self, content_id: str, user_id: str, embeddings: List[List[float]], chunks: List[Dict[str, Any]]) -> int:
        return await asyncio.to_thread(upsert_vectors, content_id, user_id, embeddings, chunks)

    async def delete_by_metadata(self, filter_dict: Dict[str, Any]) -> None:
        await asyncio.to_thread(delete_by_metadata, filter_dict)

    async def query(self, embedding: List[float], top_k: int = 10, content_id: Optional[str] = None) -> List[Dict[str, Any]]:
        return await asyncio.to_thread(query_vectors, embedding, top_k, content_id)

    async def has_vectors(self, content_id: str) -> bool:
        return await asyncio.to_thread(has_vectors, content_id)
