"""
行情问答路由
POST /api/chat   - 自然语言行情问答
"""

from fastapi import APIRouter, Depends, HTTPException, status
from pydantic import BaseModel

from crypto_service.models.response import ChatResponse
from crypto_service.routers.dependencies import get_services
from crypto_service.services.chat_service import Services

router = APIRouter(prefix="/api/chat", tags=["行情问答"])


class ChatRequest(BaseModel):
    query: str = ""


@router.post("", response_model=ChatResponse)
async def chat(body: ChatRequest, services: Services = Depends(get_services)):
    """回答行情问题，例如 “What is the price of Bitcoin?”"""
    query = body.query.strip()
    if not query:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="'query' 不能为空",
        )
    result = await services.chat.answer_query(query)
    return ChatResponse(answer=result.answer, data=result.data)
