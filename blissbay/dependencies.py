from fastapi import Request

from blissbay.config import Settings
from blissbay.security import get_current_user, require_admin  # noqa: F401


# =========================
# APP-SCOPED CLIENTS
# =========================
# Built once in create_app() and kept on app.state.

def get_settings(request: Request) -> Settings:
    return request.app.state.settings


def get_queue(request: Request):
    return request.app.state.queue


def get_gateway(request: Request):
    return request.app.state.gateway


def get_storage(request: Request):
    return request.app.state.storage
