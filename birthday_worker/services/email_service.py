# birthday_worker/services/email_service.py - AWS SES Integration
import boto3
from botocore.exceptions import BotoCoreError, ClientError
from email.utils import formataddr
from typing import Optional, Dict, Any
from birthday_worker.config import Settings, settings as default_settings
from birthday_worker.exceptions import DispatchError
from birthday_worker.models import DispatchRequest, DispatchResult
import logging
import asyncio
from concurrent.futures import ThreadPoolExecutor

logger = logging.getLogger(__name__)

class SesEmailGateway:
    def __init__(self, settings: Optional[Settings] = None, ses_client=None):
        self.settings = settings or default_settings
        logger.info(f"Initializing SES email gateway (region: {self.settings.aws_region})")

        self.ses_client = ses_client or boto3.client('sesv2', region_name=self.settings.aws_region)
        self.executor = ThreadPoolExecutor(max_workers=5)

    async def send(self, request: DispatchRequest) -> DispatchResult:
        """Send email using AWS SES (async wrapper)"""
        logger.info(f"📧 Sending '{request.subject}' to {request.to} via SES")

        loop = asyncio.get_running_loop()

        # Run SES call in thread pool to avoid blocking
        result = await loop.run_in_executor(
            self.executor,
            self._send_email_ses,
            request
        )

        logger.info(f"✅ SES accepted message {result['message_id']} for {request.to}")
        return DispatchResult(id=result['message_id'], success=True)

    def _build_params(self, request: DispatchRequest) -> Dict[str, Any]:
        body: Dict[str, Any] = {}
        if request.html:
            body['Html'] = {'Data': request.html, 'Charset': 'UTF-8'}
        if request.text:
            body['Text'] = {'Data': request.text, 'Charset': 'UTF-8'}
        if not body:
            raise DispatchError("Email has neither an HTML nor a text body")

        email_params = {
            'FromEmailAddress': formataddr((request.from_.name, request.from_.email)),
            'Destination': {
                'ToAddresses': [request.to]
            },
            'Content': {
                'Simple': {
                    'Subject': {
                        'Data': request.subject,
                        'Charset': 'UTF-8'
                    },
                    'Body': body
                }
            }
        }
        if self.settings.ses_configuration_set:
            email_params['ConfigurationSetName'] = self.settings.ses_configuration_set
        return email_params

    def _send_email_ses(self, request: DispatchRequest) -> Dict[str, Any]:
        """Send email using AWS SES"""
        email_params = self._build_params(request)

        try:
            response = self.ses_client.send_email(**email_params)
            message_id = response.get('MessageId')
            if not message_id:
                raise DispatchError("SES response did not include a MessageId")

            return {
                'success': True,
                'message_id': message_id,
                'to_email': request.to
            }

        except ClientError as e:
            error_code = e.response['Error']['Code']
            error_message = e.response['Error']['Message']

            logger.error(f"🚨 SES rejected email to {request.to}: {error_code} - {error_message}")

            if error_code == 'MessageRejected':
                raise DispatchError(f"Email rejected: {error_message}")
            elif error_code == 'MailFromDomainNotVerified':
                raise DispatchError("Sender domain not verified with AWS SES")
            elif error_code == 'SendingPausedException':
                raise DispatchError("SES sending is paused - check your account status")
            elif error_code == 'AccountSendingPausedException':
                raise DispatchError("Account sending paused - likely due to bounce/complaint rate")
            else:
                raise DispatchError(f"Email delivery failed: {error_message}")

        except BotoCoreError as e:
            logger.error(f"🚨 SES transport error for {request.to}: {e}")
            raise DispatchError(f"Email transport failed: {e}")

    async def close(self):
        self.executor.shutdown(wait=True)
