"""Dependency injection providers for API v1."""

from fastapi import Request

from api.dependencies.auth import ExistingSession, NewOrExistingSession
from domain.services.account_service import AccountService
from domain.services.profile_service import ProfileService


def get_public_profile_service(request: Request) -> ProfileService:
    """Get the storage-less Profile service used for public lookups."""
    service: ProfileService = request.app.state.profile_service
    return service


def get_profile_service(session: ExistingSession) -> ProfileService:
    """Get the Profile service acting for the caller."""
    return session.profiles


def get_account_service(session: ExistingSession) -> AccountService:
    """Get the Account service of a caller that already has a session."""
    return session.accounts


def get_link_account_service(session: NewOrExistingSession) -> AccountService:
    """Get an Account service for emailed-link flows, opening a session if needed."""
    return session.accounts
