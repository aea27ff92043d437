"""
Lighting API Routes

Thin delegation layer to the request orchestrator.
Contains NO process, protocol, or model logic.

DESIGN RULE: Routes validate input, pass the caller's credentials through,
and shape the response. Everything else lives in orchestration/.
"""

from fastapi import APIRouter, Depends, Request
from fastapi.concurrency import run_in_threadpool
from fastapi.responses import JSONResponse

from app.dependencies import GatewayContainer, enforce_limits, get_container
from llm.openai_client import check_connection
from observability.emitter import SessionLogger
from schemas.request import ChatRequest, LifxControlRequest, LlmTestRequest, validate_action
from schemas.response import ChatResponse, LifxControlResponse


router = APIRouter()


def _request_id(request: Request) -> str:
    return getattr(request.state, "request_id", None)


@router.post("/chat", response_model=ChatResponse)
async def chat(
    body: ChatRequest,
    request: Request,
    session_id: str = Depends(enforce_limits),
    container: GatewayContainer = Depends(get_container),
) -> ChatResponse:
    """
    LLM-mediated light control.

    The model sees the worker's tool list and may call tools for several
    rounds before answering. Both keys are used for this request only.
    """
    body.check()
    run = await container.orchestrator.run_chat(
        credential=body.lifx_api_key,
        session_id=session_id,
        message=body.message,
        llm_api_key=body.llm_api_key,
        max_tokens=body.max_tokens or container.settings.default_max_tokens,
        restrictive=body.restrictive,
        request_id=_request_id(request),
    )
    return ChatResponse.from_run(run)


@router.post("/lifx/{action}", response_model=LifxControlResponse)
async def lifx_control(
    action: str,
    body: LifxControlRequest,
    request: Request,
    session_id: str = Depends(enforce_limits),
    container: GatewayContainer = Depends(get_container),
) -> LifxControlResponse:
    """Direct control: invoke one allow-listed tool with the body as arguments."""
    validate_action(action)
    body.check()
    run = await container.orchestrator.run_tool(
        credential=body.lifx_api_key,
        session_id=session_id,
        tool_name=action,
        arguments=body.tool_arguments(),
        request_id=_request_id(request),
    )
    return LifxControlResponse.from_run(run)


@router.post("/test/llm")
async def test_llm(
    body: LlmTestRequest,
    session_id: str = Depends(enforce_limits),
    container: GatewayContainer = Depends(get_container),
):
    """Check that the caller's LLM key can complete a tiny prompt."""
    body.check()
    log = SessionLogger(__name__, container.log_sink)
    log.info("Testing LLM API connection", log_scope="session", session_id=session_id)

    # The SDK call is blocking
    outcome = await run_in_threadpool(check_connection, body.llm_api_key, container.llm_config)

    if not outcome["success"]:
        log.warning(
            "LLM API test failed",
            log_scope="session",
            session_id=session_id,
            error=outcome.get("error"),
        )
        return JSONResponse(status_code=400, content=outcome)

    log.info(
        "LLM API test successful",
        log_scope="session",
        session_id=session_id,
        latency_ms=outcome.get("latency_ms"),
    )
    return outcome
