"""Request dependencies for collaborators owned by the application instance."""

from fastapi import Request

from .core.config import Settings
from .email_service import EmailService
from .pdf_generator import PDFGenerator


def get_app_settings(request: Request) -> Settings:
    return request.app.state.settings


def get_pdf_generator(request: Request) -> PDFGenerator:
    return request.app.state.pdf_generator


def get_email_service(request: Request) -> EmailService:
    return request.app.state.email_service
