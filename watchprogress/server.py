import logging
from fastapi import FastAPI, Depends, HTTPException
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from typing import Callable, Optional
from .state import ProgressStore
from .config import settings
from .models import ProgressPayload, ProgressRecord

logger = logging.getLogger(__name__)

app = FastAPI(title="Watch Progress")
store: Optional[ProgressStore] = None

# Returns the subject id for a bearer token, or None if the token is not valid.
# Swapped out by whatever owns authentication in a real deployment.
token_verifier: Optional[Callable[[str], Optional[str]]] = None

bearer_scheme = HTTPBearer(auto_error=False)

def settings_token_verifier(token: str) -> Optional[str]:
    return settings.API_TOKENS.get(token)

def get_subject(credentials: Optional[HTTPAuthorizationCredentials] = Depends(bearer_scheme)) -> str:
    if credentials is None or not credentials.credentials:
        raise HTTPException(status_code=401, detail="Access token required")
    verify = token_verifier or settings_token_verifier
    subject_id = verify(credentials.credentials)
    if not subject_id:
        raise HTTPException(status_code=401, detail="Invalid or expired token")
    return subject_id

def get_store() -> ProgressStore:
    if store is None:
        raise HTTPException(status_code=503, detail="Progress store not ready")
    return store

@app.get("/healthz")
def healthz():
    if not store:
        return {"status": "starting"}
    return {"status": "ok", "records": len(store.state.records), "read_only": store.read_only}

@app.get("/progress/{content_id}", response_model=ProgressRecord)
def read_progress(
    content_id: str,
    subject_id: str = Depends(get_subject),
    progress_store: ProgressStore = Depends(get_store),
):
    return progress_store.get(subject_id, content_id)

@app.post("/progress/{content_id}", response_model=ProgressRecord)
def save_progress(
    content_id: str,
    payload: ProgressPayload,
    subject_id: str = Depends(get_subject),
    progress_store: ProgressStore = Depends(get_store),
):
    record = progress_store.upsert_merge(
        subject_id,
        content_id,
        payload.merged_intervals,
        payload.last_known_position,
        payload.content_duration,
    )
    logger.info(
        f"Saved progress for {subject_id}/{content_id}: {record.progress_percentage:.1f}% "
        f"({record.total_unique_watched_seconds:.0f}s / {record.content_duration:.0f}s)"
    )
    return record
