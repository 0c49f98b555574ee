# Service access for FastAPI dependencies.
# Services are built once in create_app() and live on app.state.

from fastapi import Request

from civiclens.services.supabase_service import SupabaseService


def get_supabase_service(request: Request) -> SupabaseService:
    return request.app.state.supabase_service


def get_issue_service(request: Request):
    return request.app.state.issue_service
