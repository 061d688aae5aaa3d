"""
Portfolio API — Contact Routes
===============================

What:  The contact-form endpoints: public submission plus admin listing,
       statistics, detail and an e-mail self-test.
How:   ContactController is registered in the HandlerRegistry under a
       stable name and its actions are bound with "ContactController@action"
       references, resolved when the routes are registered.
       Handlers receive path parameters only; body, query and client details
       come from `current_request()`.

Route Inventory (prefix = CONTACT_PATH_PREFIX, default /api/contact):
    POST    {prefix}                    submit a message        201 / 400 / 500
    GET     {prefix}/messages           paginated listing       ?page=&limit=
    GET     {prefix}/stats              aggregate statistics
    GET     {prefix}/messages/{id}      one message             404 when missing
    GET     {prefix}/test               e-mail self-test        200 / 500
    OPTIONS on each of the above        preflight acknowledgement
"""

import logging
from datetime import datetime, timezone
from typing import Any, Callable, Dict

from portfolio_api.config import Settings
from portfolio_api.core.envelope import ApiResponse, current_request
from portfolio_api.core.routing import Router
from portfolio_api.exceptions import NotFoundError, ValidationError
from portfolio_api.schemas.contact import (
    ContactSubmission,
    PaginationParams,
    validate_contact_data,
)
from portfolio_api.services.contact_service import ContactService
from portfolio_api.services.email_service import EmailService

logger = logging.getLogger(__name__)

CONTROLLER_NAME = "ContactController"

# Largest value an INTEGER primary key can hold
MAX_MESSAGE_ID = 2**63 - 1


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


class ContactController:
    def __init__(self, contacts: ContactService, email: EmailService):
        self.contacts = contacts
        self.email = email

    async def create(self) -> ApiResponse:
        """
        Validate, store, then notify.

        Raises:
            ValidationError: every problem with the submission, as `errors`
            DatabaseError:   the message could not be stored
        """
        request = current_request()

        errors = validate_contact_data(request.body)
        if errors:
            logger.info("Rejected contact submission from %s: %d problems", request.client_ip, len(errors))
            raise ValidationError(message="Validation failed", errors=errors)

        body = request.body
        submission = ContactSubmission(
            name=body["name"],
            email=body["email"],
            subject=body["subject"],
            message=body["message"],
            ip_address=request.client_ip,
            user_agent=request.user_agent or None,
        )
        stored = await self.contacts.create_message(submission)

        email_configured = self.email.is_configured
        email_sent = False
        if email_configured:
            email_sent = await self.email.send_contact_email(submission.model_dump())

        logger.info(
            "New contact message from %s (%s) - ID: %d, Email sent: %s, Email configured: %s",
            submission.name,
            submission.email,
            stored.id,
            "Yes" if email_sent else "No",
            "Yes" if email_configured else "No",
        )

        return ApiResponse(
            status_code=201,
            body={
                "success": True,
                "message": "Contact message sent successfully",
                "data": {
                    "id": stored.id,
                    "timestamp": _now(),
                    "emailSent": email_sent,
                    "emailConfigured": email_configured,
                },
            },
        )

    async def get_messages(self) -> Dict[str, Any]:
        params = PaginationParams.from_query(current_request().query)
        messages, pagination = await self.contacts.list_messages(params)
        return {
            "success": True,
            "messages": messages,
            "pagination": pagination,
        }

    async def get_stats(self) -> Dict[str, Any]:
        stats = await self.contacts.get_stats()
        return {"success": True, "stats": stats, "timestamp": _now()}

    async def get_message(self, message_id: str) -> Dict[str, Any]:
        try:
            numeric_id = int(message_id)
        except ValueError:
            raise ValidationError(
                message="Message id must be an integer",
                errors=[f"Invalid message id '{message_id}'"],
                field="id",
            )

        message = None
        if 0 < numeric_id <= MAX_MESSAGE_ID:
            message = await self.contacts.get_message(numeric_id)
        if message is None:
            raise NotFoundError(
                message="Contact message not found",
                resource="contact message",
                resource_id=message_id,
            )
        return {"success": True, "data": message, "timestamp": _now()}

    async def test_email(self) -> ApiResponse:
        result = await self.email.test_configuration()
        return ApiResponse(
            status_code=200 if result["test_successful"] else 500,
            body={
                "success": result["test_successful"],
                "message": result["message"],
                "data": {
                    "provider": result["provider"],
                    "configured": result["configured"],
                    "test_successful": result["test_successful"],
                },
                "timestamp": _now(),
            },
        )


def preflight(description: str) -> Callable[[], Dict[str, str]]:
    def handler() -> Dict[str, str]:
        return {"message": f"CORS preflight for {description}"}
    return handler


def register(router: Router, controller: ContactController, settings: Settings) -> None:
    """Bind the contact endpoints under the configured prefix."""
    router.registry.register(CONTROLLER_NAME, controller)

    with router.group(settings.contact_path_prefix) as contact:
        contact.post("/", f"{CONTROLLER_NAME}@create")
        contact.get("/messages", f"{CONTROLLER_NAME}@get_messages")
        contact.get("/stats", f"{CONTROLLER_NAME}@get_stats")
        contact.get("/messages/{id}", f"{CONTROLLER_NAME}@get_message")
        contact.get("/test", f"{CONTROLLER_NAME}@test_email")

        contact.options("/", preflight("contact endpoint"))
        contact.options("/messages", preflight("contact messages endpoint"))
        contact.options("/stats", preflight("contact stats endpoint"))
        contact.options("/test", preflight("contact test endpoint"))
