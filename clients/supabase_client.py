import os
from typing import Dict, Any, List, Optional
from dotenv import load_dotenv
from supabase import create_client, Client
from datetime import datetime
from enum import Enum
import logging

load_dotenv()

logger = logging.getLogger(__name__)

_supabase_client: Optional[Client] = None

CONTENTS = "contents"
TRANSCRIPTS = "transcripts"
SUMMARIES = "summaries"
FLASHCARDS = "flashcards"
FLASHCARD_REVIEWS = "flashcard_reviews"
QUIZZES = "quizzes"
QUIZ_ATTEMPTS = "quiz_attempts"
DELETION_SAGAS = "deletion_sagas"


def get_supabase() -> Client:
    global _supabase_client
    if _supabase_client is None:
        url = os.getenv("SUPABASE_URL")
        key = os.getenv("SUPABASE_KEY")
        if not url or not key:
            raise ValueError("SUPABASE_URL and SUPABASE_KEY must be set")
        _supabase_client = create_client(url, key)
    return _supabase_client


def _serialize_for_supabase(data: Dict[str, Any]) -> Dict[str, Any]:
    """Recursively convert enums → .value, datetimes → .isoformat() for Supabase writes."""
    result = {}
    for key, value in data.items():
        if isinstance(value, Enum):
            result[key] = value.value
        elif isinstance(value, datetime):
            result[key] = value.isoformat()
        elif isinstance(value, dict):
            result[key] = _serialize_for_supabase(value)
        elif isinstance(value, list):
            result[key] = [
                _serialize_for_supabase(item) if isinstance(item, dict)
                else item.value if isinstance(item, Enum)
                else item.isoformat() if isinstance(item, datetime)
                else item
                for item in value
            ]
        else:
            result[key] = value
    return result


def _first(response) -> Optional[Dict[str, Any]]:
    if response.data and len(response.data) > 0:
        return response.data[0]
    return None


def _upsert(table: str, data: Dict[str, Any]) -> Dict[str, Any]:
    response = get_supabase().table(table).upsert(
        _serialize_for_supabase(data), on_conflict="id"
    ).execute()
    if not response.data:
        raise Exception(f"Failed to upsert into {table}: {response}")
    return response.data[0]


def _get_by_id(table: str, row_id: str) -> Optional[Dict[str, Any]]:
    return _first(get_supabase().table(table).select("*").eq("id", row_id).execute())


# --- Contents ---

def upsert_content(row: Dict[str, Any]) -> Dict[str, Any]:
    return _upsert(CONTENTS, row)


def get_content_by_id(content_id: str) -> Optional[Dict[str, Any]]:
    return _get_by_id(CONTENTS, content_id)


def list_paused_contents(reason: str, limit: int) -> List[Dict[str, Any]]:
    """Contents paused for the given reason, oldest pause first."""
    response = get_supabase().table(CONTENTS) \
        .select("*") \
        .eq("status", "paused") \
        .eq("metadata->>paused_reason", reason) \
        .eq("is_deleted", False) \
        .order("updated_at") \
        .limit(limit) \
        .execute()
    return response.data or []


def list_deleted_contents(user_id: str) -> List[Dict[str, Any]]:
    response = get_supabase().table(CONTENTS) \
        .select("*") \
        .eq("user_id", user_id) \
        .eq("is_deleted", True) \
        .order("deleted_at", desc=True) \
        .execute()
    return response.data or []


def list_soft_deleted_before(cutoff: datetime, limit: int) -> List[Dict[str, Any]]:
    response = get_supabase().table(CONTENTS) \
        .select("*") \
        .eq("is_deleted", True) \
        .lt("deleted_at", cutoff.isoformat()) \
        .order("deleted_at") \
        .limit(limit) \
        .execute()
    return response.data or []


def list_content_ids(user_id: Optional[str], limit: int) -> List[str]:
    query = get_supabase().table(CONTENTS).select("id")
    if user_id:
        query = query.eq("user_id", user_id)
    response = query.order("created_at", desc=True).limit(limit).execute()
    return [row["id"] for row in response.data or []]


def existing_content_ids(content_ids: List[str]) -> List[str]:
    if not content_ids:
        return []
    response = get_supabase().table(CONTENTS).select("id").in_("id", content_ids).execute()
    return [row["id"] for row in response.data or []]


def delete_content_cascade(content_id: str) -> Dict[str, int]:
    """
    Delete a content row and every dependent row in one transaction.
    Runs the delete_content_cascade Postgres function; returns per-table counts.
    """
    response = get_supabase().rpc("delete_content_cascade", {"p_content_id": content_id}).execute()
    counts = response.data
    if isinstance(counts, list):
        counts = counts[0] if counts else {}
    if not isinstance(counts, dict):
        raise Exception(f"delete_content_cascade returned unexpected payload: {response}")
    return {k: int(v) for k, v in counts.items()}


# --- Transcripts & summaries ---

def upsert_transcript(row: Dict[str, Any]) -> Dict[str, Any]:
    data = _serialize_for_supabase(row)
    response = get_supabase().table(TRANSCRIPTS).upsert(data, on_conflict="content_id").execute()
    if not response.data:
        raise Exception(f"Failed to upsert transcript: {response}")
    return response.data[0]


def get_transcript(content_id: str) -> Optional[Dict[str, Any]]:
    return _first(get_supabase().table(TRANSCRIPTS).select("*").eq("content_id", content_id).execute())


def replace_summaries(content_id: str, rows: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
    get_supabase().table(SUMMARIES).delete().eq("content_id", content_id).execute()
    if not rows:
        return []
    response = get_supabase().table(SUMMARIES).insert([_serialize_for_supabase(r) for r in rows]).execute()
    return response.data or []


def get_summaries(content_id: str) -> List[Dict[str, Any]]:
    response = get_supabase().table(SUMMARIES).select("*").eq("content_id", content_id).execute()
    return response.data or []


# --- Flashcards ---

def replace_flashcards(content_id: str, rows: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
    """Replace generated flashcards for a content item. Reviews cascade in the database."""
    get_supabase().table(FLASHCARDS).delete().eq("content_id", content_id).execute()
    if not rows:
        return []
    response = get_supabase().table(FLASHCARDS).insert([_serialize_for_supabase(r) for r in rows]).execute()
    if not response.data:
        raise Exception(f"Failed to insert flashcards: {response}")
    return response.data


def get_flashcard(flashcard_id: str) -> Optional[Dict[str, Any]]:
    return _get_by_id(FLASHCARDS, flashcard_id)


def upsert_flashcard(row: Dict[str, Any]) -> Dict[str, Any]:
    return _upsert(FLASHCARDS, row)


def list_flashcards(user_id: str, content_id: Optional[str] = None) -> List[Dict[str, Any]]:
    query = get_supabase().table(FLASHCARDS).select("*").eq("user_id", user_id).eq("is_active", True)
    if content_id:
        query = query.eq("content_id", content_id)
    return query.execute().data or []


def insert_flashcard_review(row: Dict[str, Any]) -> Dict[str, Any]:
    response = get_supabase().table(FLASHCARD_REVIEWS).insert(_serialize_for_supabase(row)).execute()
    if not response.data:
        raise Exception(f"Failed to insert flashcard review: {response}")
    return response.data[0]


def list_flashcard_reviews(
    user_id: str,
    since: Optional[datetime] = None,
    content_id: Optional[str] = None,
) -> List[Dict[str, Any]]:
    query = get_supabase().table(FLASHCARD_REVIEWS).select("*").eq("user_id", user_id)
    if since:
        query = query.gte("reviewed_at", since.isoformat())
    if content_id:
        query = query.eq("content_id", content_id)
    return query.order("reviewed_at").execute().data or []


# --- Quizzes ---

def get_quiz(quiz_id: str) -> Optional[Dict[str, Any]]:
    return _get_by_id(QUIZZES, quiz_id)


def upsert_quiz(row: Dict[str, Any]) -> Dict[str, Any]:
    return _upsert(QUIZZES, row)


def get_active_quiz(content_id: str, user_id: str, difficulty: str) -> Optional[Dict[str, Any]]:
    response = get_supabase().table(QUIZZES) \
        .select("*") \
        .eq("content_id", content_id) \
        .eq("user_id", user_id) \
        .eq("difficulty", difficulty) \
        .eq("is_active", True) \
        .limit(1) \
        .execute()
    return _first(response)


def list_quiz_versions(content_id: str, user_id: str, difficulty: str) -> List[Dict[str, Any]]:
    """All versions for (content, user, difficulty), newest first."""
    response = get_supabase().table(QUIZZES) \
        .select("*") \
        .eq("content_id", content_id) \
        .eq("user_id", user_id) \
        .eq("difficulty", difficulty) \
        .order("version", desc=True) \
        .execute()
    return response.data or []


def list_quizzes(content_id: str, user_id: Optional[str] = None) -> List[Dict[str, Any]]:
    query = get_supabase().table(QUIZZES).select("*").eq("content_id", content_id).eq("is_active", True)
    if user_id:
        query = query.eq("user_id", user_id)
    return query.execute().data or []


def activate_quiz_version(row: Dict[str, Any], previous_id: Optional[str]) -> Dict[str, Any]:
    """
    Insert a quiz version as active and deactivate its predecessor in one
    transaction (activate_quiz_version Postgres function).
    """
    response = get_supabase().rpc("activate_quiz_version", {
        "p_quiz": _serialize_for_supabase(row),
        "p_previous_id": previous_id,
    }).execute()
    data = response.data
    if isinstance(data, list):
        data = data[0] if data else None
    if not data:
        raise Exception(f"activate_quiz_version returned no row: {response}")
    return data


def delete_quizzes(quiz_ids: List[str]) -> None:
    if quiz_ids:
        get_supabase().table(QUIZZES).delete().in_("id", quiz_ids).execute()


def update_quiz_link(quiz_id: str, previous_version_id: Optional[str]) -> None:
    get_supabase().table(QUIZZES).update({"previous_version_id": previous_version_id}).eq("id", quiz_id).execute()


# --- Quiz attempts ---

def get_attempt(attempt_id: str) -> Optional[Dict[str, Any]]:
    return _get_by_id(QUIZ_ATTEMPTS, attempt_id)


def upsert_attempt(row: Dict[str, Any]) -> Dict[str, Any]:
    return _upsert(QUIZ_ATTEMPTS, row)


def find_in_progress_attempt(quiz_id: str, user_id: str) -> Optional[Dict[str, Any]]:
    response = get_supabase().table(QUIZ_ATTEMPTS) \
        .select("*") \
        .eq("quiz_id", quiz_id) \
        .eq("user_id", user_id) \
        .eq("status", "in-progress") \
        .limit(1) \
        .execute()
    return _first(response)


def list_attempts(user_id: str, quiz_id: Optional[str] = None, content_id: Optional[str] = None) -> List[Dict[str, Any]]:
    query = get_supabase().table(QUIZ_ATTEMPTS).select("*").eq("user_id", user_id)
    if quiz_id:
        query = query.eq("quiz_id", quiz_id)
    if content_id:
        query = query.eq("content_id", content_id)
    return query.order("started_at", desc=True).execute().data or []


def quiz_ids_with_attempts(quiz_ids: List[str]) -> List[str]:
    if not quiz_ids:
        return []
    response = get_supabase().table(QUIZ_ATTEMPTS).select("quiz_id").in_("quiz_id", quiz_ids).execute()
    return list({row["quiz_id"] for row in response.data or []})


# --- Deletion sagas ---

def upsert_saga(row: Dict[str, Any]) -> Dict[str, Any]:
    return _upsert(DELETION_SAGAS, row)


def list_sagas(statuses: List[str], updated_before: datetime, limit: int) -> List[Dict[str, Any]]:
    response = get_supabase().table(DELETION_SAGAS) \
        .select("*") \
        .in_("status", statuses) \
        .lt("updated_at", updated_before.isoformat()) \
        .order("updated_at") \
        .limit(limit) \
        .execute()
    return response.data or []


def latest_saga_for_content(content_id: str) -> Optional[Dict[str, Any]]:
    response = get_supabase().table(DELETION_SAGAS) \
        .select("*") \
        .eq("content_id", content_id) \
        .order("created_at", desc=True) \
        .limit(1) \
        .execute()
    return _first(response)
