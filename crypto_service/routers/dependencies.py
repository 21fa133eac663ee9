"""路由依赖注入：从应用状态中取出启动时装配好的服务"""

from fastapi import Request

from crypto_service.services.chat_service import Services


def get_services(request: Request) -> Services:
    return request.app.state.services
