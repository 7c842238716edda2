"""
Dependency wiring for the FastAPI app.

Clients are built once by the application factory and kept on ``app.state``;
route handlers reach them through the ``get_*`` dependencies below.
"""

from __future__ import annotations

import logging

from fastapi import Request

from crowbackend.config import Settings, get_settings
from crowbackend.crowmail import CrowmailService
from crowbackend.crows import CrowService
from crowbackend.db import DbClient, InMemoryDbClient, PostgresDbClient
from crowbackend.mail import InMemoryMailer, Mailer, MailtrapMailer
from crowbackend.tokens import RedisTokenStore, TokenStore

logger = logging.getLogger(__name__)


def build_db_client(settings: Settings) -> DbClient:
    if settings.use_in_memory_backends or not settings.database_url:
        logger.warning("No DATABASE_URL configured, using in-memory store")
        return InMemoryDbClient()
    return PostgresDbClient(settings.database_url)


def build_token_store(settings: Settings, db: DbClient) -> TokenStore:
    if settings.redis_url and not settings.use_in_memory_backends:
        return RedisTokenStore(
            url=settings.redis_url,
            subscriptions=db,
            key_prefix=settings.redis_key_prefix,
        )
    return db


def build_mailer(settings: Settings) -> Mailer:
    if settings.use_in_memory_backends or not settings.mailtrap_api_token:
        logger.warning("No MAILTRAP_API_TOKEN configured, mail is not sent")
        return InMemoryMailer()
    return MailtrapMailer(
        api_token=settings.mailtrap_api_token,
        sender_email=settings.mail_sender_email,
        sender_name=settings.mail_sender_name,
        api_url=settings.mailtrap_api_url,
    )


def get_app_settings(request: Request) -> Settings:
    return getattr(request.app.state, "settings", None) or get_settings()


def get_crow_service(request: Request) -> CrowService:
    return request.app.state.crow_service


def get_crowmail_service(request: Request) -> CrowmailService:
    return request.app.state.crowmail_service
