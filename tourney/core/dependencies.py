"""
FastAPI dependencies
"""
from fastapi import Request

from tourney.core.container import Services


def get_services(request: Request) -> Services:
    """Services container attached to the running application"""
    return request.app.state.services
