import logging
import codelens.config as config

from functools import lru_cache
from typing import AsyncGenerator, Optional
from fastapi import Depends, FastAPI, HTTPException, Request, Cookie
from fastapi.responses import StreamingResponse
from pydantic import BaseModel, Field

from codelens.analysis import analyze_code, build_submission_record, compute_dashboard_stats
from codelens.chat import ChatSession, chat_messages_payload
from codelens.constants import (
    CHAT_HISTORY_LIMIT,
    DASHBOARD_RECENT_LIMIT,
    QUOTA_EXCEEDED_MESSAGE,
    RATE_LIMIT_MESSAGE,
)
from codelens.database import (
    init_db,
    save_submission,
    get_submissions,
    get_submission,
    delete_submission,
    save_chat_message,
    get_chat_messages,
    clear_chat_messages,
    save_profile,
    get_profile,
)
from codelens.errors import GatewayError, QuotaExceededError, RateLimitError, StreamFailedError
from codelens.gateway import GatewayClient

from fastapi.middleware.cors import CORSMiddleware

from slowapi import Limiter, _rate_limit_exceeded_handler
from slowapi.util import get_remote_address
from slowapi.errors import RateLimitExceeded

@lru_cache
def get_settings():
    return config.Settings()

settings = get_settings()

# Initialize DB
init_db()

# Cookie settings for session
COOKIE_NAME = "codelens_session"

# Initialize Limiter
limiter = Limiter(key_func=get_remote_address)

app = FastAPI(
    title="CodeLens API",
    description="Code review backed by an AI gateway: analysis, chat support and submission history.",
    version="1.0.0",
)

# Register Limiter
app.state.limiter = limiter
app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


class CodeAnalysisRequest(BaseModel):
    code: str = Field("", description="The code to be analyzed.")
    language: str = Field("", description="Programming language of the code.")

class ChatRequest(BaseModel):
    message: str = Field("", description="The user's message to the assistant.")

class ProfileUpdate(BaseModel):
    display_name: Optional[str] = Field(None, description="Name shown in the UI.")
    avatar_url: Optional[str] = Field(None, description="URL of the avatar image.")


def get_user_id(session: str = Cookie(None, alias=COOKIE_NAME)) -> Optional[str]:
    """Extract user ID from session cookie."""
    return session


def get_gateway() -> GatewayClient:
    return GatewayClient.from_settings(get_settings())


def gateway_http_exception(e: GatewayError) -> HTTPException:
    """Translate a gateway failure into the HTTP error shown to the user."""
    if isinstance(e, RateLimitError):
        headers = None
        if e.retry_after_s is not None:
            headers = {"Retry-After": str(int(e.retry_after_s))}
        return HTTPException(status_code=429, detail=RATE_LIMIT_MESSAGE, headers=headers)
    if isinstance(e, QuotaExceededError):
        return HTTPException(status_code=402, detail=QUOTA_EXCEEDED_MESSAGE)
    if isinstance(e, StreamFailedError):
        return HTTPException(status_code=503, detail="AI gateway stream/request failed. Please try again.")
    return HTTPException(status_code=502, detail=str(e))


# ============ Analysis Endpoints ============

@app.post("/analyze", tags=["Analysis"])
@limiter.limit(settings.RATE_LIMIT)
async def analyze(
    request: Request,
    request_data: CodeAnalysisRequest,
    user_id: Optional[str] = Depends(get_user_id),
    gateway: GatewayClient = Depends(get_gateway),
):
    """Score and rewrite a code snippet; signed-in users get it saved to history."""
    if not request_data.code.strip() or not request_data.language.strip():
        raise HTTPException(status_code=400, detail="Code and language are required")

    try:
        result = await analyze_code(gateway, request_data.code, request_data.language)
    except GatewayError as e:
        logging.error(f"Analysis error: {e}")
        raise gateway_http_exception(e)

    if user_id:
        record = build_submission_record(user_id, request_data.code, request_data.language, result)
        if not save_submission(record):
            logging.error(f"Analysis for {user_id} was not saved to history")

    return result.to_wire()


@app.get("/submissions", tags=["Submissions"])
async def list_submissions(search: Optional[str] = None, user_id: str = Depends(get_user_id)):
    """List the user's submissions, newest first, optionally filtered by language or code."""
    if not user_id:
        raise HTTPException(status_code=401, detail="Not authenticated")

    return {"submissions": get_submissions(user_id, search=search.strip() if search else None)}


@app.get("/submissions/{submission_id}", tags=["Submissions"])
async def read_submission(submission_id: str, user_id: str = Depends(get_user_id)):
    if not user_id:
        raise HTTPException(status_code=401, detail="Not authenticated")

    submission = get_submission(user_id, submission_id)
    if not submission:
        raise HTTPException(status_code=404, detail="Submission not found")

    return submission


@app.delete("/submissions/{submission_id}", tags=["Submissions"])
async def remove_submission(submission_id: str, user_id: str = Depends(get_user_id)):
    if not user_id:
        raise HTTPException(status_code=401, detail="Not authenticated")

    if not delete_submission(user_id, submission_id):
        raise HTTPException(status_code=404, detail="Submission not found")

    return {"message": "Submission deleted"}


@app.get("/dashboard", tags=["Submissions"])
async def dashboard(user_id: str = Depends(get_user_id)):
    """Stats over the most recent submissions."""
    if not user_id:
        raise HTTPException(status_code=401, detail="Not authenticated")

    recent = get_submissions(user_id, limit=DASHBOARD_RECENT_LIMIT)
    return {
        "stats": compute_dashboard_stats(recent).model_dump(),
        "recent_submissions": recent,
    }


# ============ Chat Endpoints ============

@app.post("/chat", tags=["Chat"])
@limiter.limit(settings.RATE_LIMIT)
async def chat(
    request: Request,
    request_data: ChatRequest,
    user_id: str = Depends(get_user_id),
    gateway: GatewayClient = Depends(get_gateway),
):
    """Stream the assistant's reply as plain text."""
    if not user_id:
        raise HTTPException(status_code=401, detail="Not authenticated")
    if not request_data.message.strip():
        raise HTTPException(status_code=400, detail="Message is required")

    history = get_chat_messages(user_id, limit=CHAT_HISTORY_LIMIT)
    save_chat_message(user_id, "user", request_data.message)

    session = ChatSession(gateway, chat_messages_payload(history, request_data.message))
    deltas = session.run()

    # Pull the first delta here so capacity errors become a proper status code.
    first = None
    try:
        first = await deltas.__anext__()
    except StopAsyncIteration:
        pass
    except GatewayError as e:
        logging.error(f"Chat error: {e}")
        raise gateway_http_exception(e)

    async def generate_stream() -> AsyncGenerator[str, None]:
        try:
            if first is not None:
                yield first
            async for delta in deltas:
                yield delta
        except GatewayError as e:
            logging.error(f"Chat stream failed for {user_id}: {e}")
            yield f"\n[STREAM_ERROR] {e}"
            return
        finally:
            await deltas.aclose()

        if session.completed and session.content:
            save_chat_message(user_id, "assistant", session.content)

    return StreamingResponse(generate_stream(), media_type="text/plain")


@app.get("/chat/messages", tags=["Chat"])
async def list_chat_messages(user_id: str = Depends(get_user_id)):
    if not user_id:
        raise HTTPException(status_code=401, detail="Not authenticated")

    return {"messages": get_chat_messages(user_id, limit=CHAT_HISTORY_LIMIT)}


@app.delete("/chat/messages", tags=["Chat"])
async def clear_chat(user_id: str = Depends(get_user_id)):
    if not user_id:
        raise HTTPException(status_code=401, detail="Not authenticated")

    if not clear_chat_messages(user_id):
        raise HTTPException(status_code=500, detail="Failed to clear chat")

    return {"message": "Chat cleared"}


# ============ Profile Endpoints ============

@app.get("/profile", tags=["Profile"])
async def read_profile(user_id: str = Depends(get_user_id)):
    if not user_id:
        raise HTTPException(status_code=401, detail="Not authenticated")

    profile = get_profile(user_id)
    if not profile:
        raise HTTPException(status_code=404, detail="Profile not found")

    return profile


@app.put("/profile", tags=["Profile"])
async def update_profile(request_data: ProfileUpdate, user_id: str = Depends(get_user_id)):
    if not user_id:
        raise HTTPException(status_code=401, detail="Not authenticated")

    if not save_profile(user_id, request_data.display_name, request_data.avatar_url):
        raise HTTPException(status_code=500, detail="Failed to save profile")

    return get_profile(user_id)
