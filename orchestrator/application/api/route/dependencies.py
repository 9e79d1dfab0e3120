from fastapi import Request

from orchestrator.application.services import Services


def get_services(request: Request) -> Services:
    """Services wired into the running app"""
    return request.app.state.services
