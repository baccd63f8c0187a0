"""Main entry point for Chat Hub API."""
import logging
from typing import List, Optional
from fastapi import FastAPI, HTTPException, Header, Depends
from fastapi.middleware.cors import CORSMiddleware

from config import PORT, CORS_ORIGINS, LOG_LEVEL, LOG_FORMAT
from logger import setup_logging
from models.api import (
    RegisterRequest,
    LoginRequest,
    AvatarRequest,
    UserResponse,
    NewChatRequest,
    ChatRequest,
    ChatResponse,
    MessageResponse,
    ConversationSummary,
    ConversationDetailResponse,
    DeleteResponse,
)
from models.conversation import Conversation, User
from services.auth_service import AuthService
from services.completion_gateway import CompletionGateway
from services.conversation_manager import ConversationManager
from services.errors import (
    ChatError,
    ValidationError,
    AuthorizationError,
    NotFoundError,
    ConflictError,
    UpstreamError,
    StoreError,
)
from services.transcript_store import TranscriptStore

# Initialize logging
logger = logging.getLogger(__name__)

# Initialize FastAPI app
app = FastAPI(
    title="Chat Hub",
    description="Multi-conversation chat backend for a hosted language model",
    version="1.0.0"
)

# Configure CORS
app.add_middleware(
    CORSMiddleware,
    allow_origins=CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Initialize services (will be done on startup)
transcript_store: TranscriptStore = None
completion_gateway: CompletionGateway = None
conversation_manager: ConversationManager = None
auth_service: AuthService = None

STATUS_CODES = {
    ValidationError: 400,
    AuthorizationError: 403,
    NotFoundError: 404,
    ConflictError: 409,
    UpstreamError: 503,
    StoreError: 503,
}


@app.on_event("startup")
async def startup_event():
    """Initialize services on startup."""
    global transcript_store, completion_gateway, conversation_manager, auth_service

    if LOG_FORMAT == "json":
        setup_logging(LOG_LEVEL)

    logger.info("Initializing Chat Hub services...")

    try:
        transcript_store = TranscriptStore()
        logger.info("Initialized TranscriptStore")

        completion_gateway = CompletionGateway()
        logger.info("Initialized CompletionGateway")

        conversation_manager = ConversationManager(transcript_store, completion_gateway)
        auth_service = AuthService(transcript_store)
        logger.info("All services initialized successfully")
    except Exception as e:
        logger.error(f"Failed to initialize services: {e}", exc_info=True)
        raise


def _http_error(error: ChatError, status_code: Optional[int] = None, **extra) -> HTTPException:
    """Convert a domain error into an HTTPException with a structured body."""
    status_code = status_code or STATUS_CODES.get(type(error), 500)
    detail = {"error": error.to_dict(), **extra}
    return HTTPException(status_code=status_code, detail=detail)


def get_current_user(x_user_id: Optional[int] = Header(default=None)) -> User:
    """Resolve the ``X-User-Id`` header to a user; 401 when missing or unknown."""
    try:
        return auth_service.get_user(x_user_id)
    except AuthorizationError as e:
        raise _http_error(e, status_code=401)
    except ChatError as e:
        raise _http_error(e)


def _user_response(user: User) -> UserResponse:
    return UserResponse(
        id=user.id,
        name=user.name,
        email=user.email,
        avatar=user.avatar,
        created_at=user.created_at,
    )


def _summary(conversation: Conversation) -> ConversationSummary:
    return ConversationSummary(
        id=conversation.id,
        title=conversation.title,
        model=conversation.model,
        created_at=conversation.created_at,
    )


@app.get("/")
async def root():
    """Health check endpoint."""
    return {"status": "ok", "message": "Chat Hub API"}


@app.get("/health")
async def health():
    """Detailed health check."""
    return {
        "status": "healthy",
        "service": "chat-hub",
        "version": "1.0.0",
        "completion_configured": bool(completion_gateway and completion_gateway.configured),
    }


@app.post("/api/auth/register", response_model=UserResponse)
def register(request: RegisterRequest) -> UserResponse:
    """Create an account and return the public user record."""
    try:
        user = auth_service.register(request.name, request.email, request.password)
    except ChatError as e:
        raise _http_error(e)
    return _user_response(user)


@app.post("/api/auth/login", response_model=UserResponse)
def login(request: LoginRequest) -> UserResponse:
    """Resolve credentials to the public user record."""
    try:
        user = auth_service.login(request.email, request.password)
    except AuthorizationError as e:
        raise _http_error(e, status_code=401)
    except ChatError as e:
        raise _http_error(e)
    return _user_response(user)


@app.get("/api/user", response_model=UserResponse)
def current_user(user: User = Depends(get_current_user)) -> UserResponse:
    return _user_response(user)


@app.patch("/api/user/avatar", response_model=UserResponse)
def update_avatar(request: AvatarRequest, user: User = Depends(get_current_user)) -> UserResponse:
    try:
        user = auth_service.update_avatar(user, request.avatar)
    except ChatError as e:
        raise _http_error(e)
    return _user_response(user)


@app.get("/api/chats", response_model=List[ConversationSummary])
def list_chats(user: User = Depends(get_current_user)) -> List[ConversationSummary]:
    """List the current user's conversations, most recent first."""
    try:
        conversations = conversation_manager.list_conversations(user)
    except ChatError as e:
        raise _http_error(e)
    return [_summary(conversation) for conversation in conversations]


@app.get("/api/chat/{chat_id}", response_model=ConversationDetailResponse)
def get_chat(chat_id: int, user: User = Depends(get_current_user)) -> ConversationDetailResponse:
    """Return a conversation with its full ordered transcript."""
    try:
        detail = conversation_manager.activate(chat_id, user)
    except ChatError as e:
        raise _http_error(e)

    conversation = detail.conversation
    return ConversationDetailResponse(
        id=conversation.id,
        title=conversation.title,
        model=conversation.model,
        created_at=conversation.created_at,
        messages=[
            MessageResponse(
                id=message.id,
                role=message.role,
                content=message.content,
                timestamp=message.created_at,
            )
            for message in detail.messages
        ],
    )


@app.post("/api/chat/new", response_model=ConversationSummary)
def new_chat(request: NewChatRequest, user: User = Depends(get_current_user)) -> ConversationSummary:
    """Create an empty conversation (normally conversations start from a first message)."""
    try:
        conversation = conversation_manager.create_conversation(user, request.title, request.model)
    except ChatError as e:
        raise _http_error(e)
    return _summary(conversation)


@app.post("/api/chat", response_model=ChatResponse)
def send_chat_message(request: ChatRequest, user: User = Depends(get_current_user)) -> ChatResponse:
    """
    Send a message and return the model reply.

    Without ``chat_id`` a new conversation is created from the message.
    On provider failure the response is 503 and its body carries ``chat_id``
    so the client can resume the conversation that holds the unanswered
    message.
    """
    try:
        if request.chat_id is None:
            exchange = conversation_manager.create_from_first_message(user, request.message, request.model)
        else:
            exchange = conversation_manager.send_message(request.chat_id, request.message, user)
    except UpstreamError as e:
        raise _http_error(e, chat_id=e.conversation_id)
    except ChatError as e:
        raise _http_error(e)

    return ChatResponse(
        response=exchange.reply.content,
        chat_id=exchange.conversation.id,
        title=exchange.conversation.title,
        message_id=exchange.reply.id,
    )


@app.delete("/api/chat/{chat_id}", response_model=DeleteResponse)
def delete_chat(chat_id: int, user: User = Depends(get_current_user)) -> DeleteResponse:
    """Delete a conversation; deleting an absent conversation succeeds as a no-op."""
    try:
        deleted = conversation_manager.delete_conversation(chat_id, user)
    except ChatError as e:
        raise _http_error(e)
    return DeleteResponse(success=True, deleted=deleted)


if __name__ == "__main__":
    import uvicorn
    logger.info(f"Starting Chat Hub API on port {PORT}")
    uvicorn.run(app, host="0.0.0.0", port=PORT)
