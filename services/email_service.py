import logging
import re
from typing import Optional

from fastapi import Request
from sendgrid import SendGridAPIClient
from sendgrid.helpers.mail import Mail

logger = logging.getLogger(__name__)

EMAIL_REGEX = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")
EMAIL_CAPTURE = re.compile(r"([^\s<]+@[^\s>]+)")

PORTAL_URL = "https://portal.projectdesk.app"


def extract_email(address: Optional[str]) -> Optional[str]:
    """Pull the bare address out of 'Name <addr>' style strings."""
    if not address:
        return None
    match = EMAIL_CAPTURE.search(address)
    return match.group(1) if match else None


class EmailService:
    """
    Centralized email utility for ProjectDesk.
    Sends plain-text transactional emails via SendGrid. Delivery is always
    best-effort: failures are logged and reported through the return value.
    """

    def __init__(self, sendgrid_api_key: Optional[str] = None, sender_email: Optional[str] = None):
        self.sendgrid_api_key = sendgrid_api_key
        self.sender_email = sender_email

        self.enabled = bool(self.sendgrid_api_key and extract_email(self.sender_email))
        if not self.enabled:
            logger.warning("📧 Email service not configured. Missing SENDGRID_API_KEY or MAIL_FROM.")
        else:
            logger.info(f"📧 Email service configured and ready. Sender: {self.sender_email}")

    @classmethod
    def from_settings(cls, settings) -> "EmailService":
        return cls(settings.SENDGRID_API_KEY, settings.MAIL_FROM)

    # ============================================================
    # ✅ Send a plain-text email
    # ============================================================
    def send(self, to: str, subject: str, body: str) -> bool:
        recipient = extract_email(to)
        if not recipient or not EMAIL_REGEX.match(recipient):
            logger.error("❌ Invalid recipient email address: %s", to)
            return False

        if not self.enabled:
            # Development fallback (no SendGrid setup)
            logger.info(f"📨 [Mock Email] To: {recipient} | Subject: {subject}\n{body}")
            return True

        try:
            message = Mail(
                from_email=self.sender_email,
                to_emails=recipient,
                subject=subject,
                plain_text_content=body,
            )
            sg = SendGridAPIClient(self.sendgrid_api_key)
            response = sg.send(message)
            logger.info(f"✅ Email '{subject}' sent to {recipient}. Status: {response.status_code}")
            return True
        except Exception as e:
            logger.exception("❌ Failed to send email to %s: %s", recipient, e)
            return False


# ============================================================
# ✉️ Message builders
# ============================================================
def sponsorship_request_email(student_name: str, student_email: str, role: str) -> tuple[str, str]:
    kind = "student" if role == "STUDENT" else "collaborator"
    return (
        "New sponsorship request on ProjectDesk",
        f"Hello,\n\n{student_name} ({student_email}) has requested access to ProjectDesk as your "
        f"sponsored {kind}.\n\nVisit the Supervisor Dashboard to approve or decline this request."
        "\n\nThanks,\nProjectDesk",
    )


def sponsorship_approved_email(name: Optional[str], approved_by_admin: bool) -> tuple[str, str]:
    approver = "An administrator" if approved_by_admin else "Your supervisor"
    return (
        "ProjectDesk sponsorship approved",
        f"Hello {name or 'there'},\n\n{approver} has approved your sponsorship on ProjectDesk "
        f"({PORTAL_URL}). You can now sign in and access your projects.\n\nThanks,\nProjectDesk",
    )


def sponsorship_declined_email(name: Optional[str]) -> tuple[str, str]:
    return (
        "ProjectDesk sponsorship request update",
        f"Hello {name or 'there'},\n\nYour supervisor declined the sponsorship request for ProjectDesk. "
        "Please reach out to them if this was unexpected.\n\nThanks,\nProjectDesk",
    )


def verify_email_message(name: Optional[str], verify_link: str, welcome: bool = False) -> tuple[str, str]:
    if welcome:
        return (
            "Activate your ProjectDesk account",
            f"Hello {name or 'there'},\n\nWelcome to ProjectDesk! Please activate your account by "
            f"visiting the link below:\n{verify_link}\n\nIf you did not sign up, you can safely ignore this message.",
        )
    return (
        "Verify your ProjectDesk account",
        f"Hello {name or 'there'},\n\nPlease confirm your email by visiting the link below:\n{verify_link}"
        "\n\nIf you did not request this, you can ignore the message.",
    )


def project_invitation_email(name: Optional[str], project_title: str, invited_by: str) -> tuple[str, str]:
    return (
        f'You\'re invited to join "{project_title}" on ProjectDesk',
        f'Hello {name or "there"},\n\nYou\'ve been added to the project "{project_title}" on ProjectDesk '
        f"({PORTAL_URL}) by {invited_by}. You will need to enter their email address during the create "
        "account process.\nSign in or create an account using the email address you have received this "
        "notification at.\n\nThanks,\nProjectDesk",
    )


def sponsor_inactive_email(sponsor_name: Optional[str], user_name: str, user_email: str) -> tuple[str, str]:
    return (
        "ProjectDesk sponsorship action needed",
        f"Hello {sponsor_name or 'there'},\n\n{user_name} ({user_email}) tried to sign in to ProjectDesk, "
        "but your sponsor subscription is currently inactive.\n\nPlease restart your subscription or add "
        "them again once billing is active so they can continue working.\n\nIf this wasn't expected, "
        "you can ignore this message.",
    )


# ============================================================
# ✅ Dependency: mailer bound to the running app
# ============================================================
def get_email_service(request: Request) -> EmailService:
    return request.app.state.email_service
