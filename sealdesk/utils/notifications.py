### sealdesk/utils/notifications.py

"""
Notification dispatch collaborators.

From the workflow's point of view every send is fire-and-forget: a failed
delivery is logged and never interrupts a state transition.
"""

# Standard library imports
from typing import Protocol

# Third party imports
import boto3
from botocore.exceptions import ClientError

# Local imports
from sealdesk.core.config import settings
from sealdesk.utils.logger import get_logger

logger = get_logger(__name__)


class NotificationDispatcher(Protocol):
    """What the workflow and the identity ceremony need from a notifier"""

    def notify_signer(self, signer, token: str) -> None: ...

    def send_reminder(self, signer) -> None: ...

    def send_email_code(self, email: str, code: str) -> None: ...

    def send_sms_code(self, phone: str, code: str) -> None: ...


def signing_url(token: str) -> str:
    return f"{settings.app_base_url.rstrip('/')}/sign/{token}"


class LoggingNotificationDispatcher:
    """Writes every notification to the log instead of delivering it"""

    def notify_signer(self, signer, token: str) -> None:
        logger.info("Signing notification", signer_id=signer.id, email=signer.email, url=signing_url(token))

    def send_reminder(self, signer) -> None:
        logger.info("Signing reminder", signer_id=signer.id, email=signer.email)

    def send_email_code(self, email: str, code: str) -> None:
        logger.info("Email verification code issued", email=email)

    def send_sms_code(self, phone: str, code: str) -> None:
        logger.info("SMS verification code issued", phone=phone)


class AWSNotificationDispatcher:
    """Delivers email through SES and SMS through SNS"""

    def __init__(self, ses_client=None, sns_client=None):
        self.ses_client = ses_client or boto3.client(
            "ses",
            aws_access_key_id=settings.aws_access_key_id,
            aws_secret_access_key=settings.aws_secret_access_key,
            region_name=settings.aws_region,
        )
        self.sns_client = sns_client or boto3.client(
            "sns",
            aws_access_key_id=settings.aws_access_key_id,
            aws_secret_access_key=settings.aws_secret_access_key,
            region_name=settings.aws_region,
        )
        self.sender_email = settings.aws_ses_sender_email
        self.sender_id = settings.aws_sns_sender_id

    def _send_email(self, to_address: str, subject: str, body: str) -> bool:
        try:
            self.ses_client.send_email(
                Source=self.sender_email,
                Destination={"ToAddresses": [to_address]},
                Message={
                    "Subject": {"Data": subject},
                    "Body": {"Text": {"Data": body}},
                },
            )
            return True
        except ClientError as e:
            logger.error("Failed to send email", to=to_address, error=str(e))
            return False

    def _send_sms(self, phone_number: str, message: str) -> bool:
        if not phone_number.startswith("+"):
            phone_number = f"+{phone_number}"
        attributes = {
            "AWS.SNS.SMS.SMSType": {"DataType": "String", "StringValue": "Transactional"},
        }
        if self.sender_id:
            attributes["AWS.SNS.SMS.SenderID"] = {"DataType": "String", "StringValue": self.sender_id}
        try:
            self.sns_client.publish(PhoneNumber=phone_number, Message=message, MessageAttributes=attributes)
            return True
        except ClientError as e:
            logger.error("Failed to send SMS", phone=phone_number, error=str(e))
            return False

    def notify_signer(self, signer, token: str) -> None:
        self._send_email(
            signer.email,
            "Please sign your document",
            f"Hello {signer.name},\n\nYou have a document waiting for your signature:\n{signing_url(token)}\n",
        )

    def send_reminder(self, signer) -> None:
        url = signing_url(signer.signing_token) if signer.signing_token else settings.app_base_url
        self._send_email(signer.email, "Reminder: a document is waiting for your signature", url)

    def send_email_code(self, email: str, code: str) -> None:
        self._send_email(email, "Your verification code", f"Your verification code is {code}. It expires in {settings.otp_ttl_minutes} minutes.")

    def send_sms_code(self, phone: str, code: str) -> None:
        self._send_sms(phone, f"Your verification code is {code}")


def get_notification_dispatcher() -> NotificationDispatcher:
    """SES/SNS delivery when a sender address is configured, log-only otherwise"""
    if settings.aws_ses_sender_email:
        return AWSNotificationDispatcher()
    return LoggingNotificationDispatcher()
