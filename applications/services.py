import json
import logging
import os
import time
from dataclasses import dataclass, field

from django.conf import settings
from django.db import DatabaseError, transaction
from django.utils.text import get_valid_filename
from rest_framework import status

from notifications.services import ApplicationMailer, NotificationDispatcher
from utils.cloudinary_utils import CloudinaryFileStore, FileUploadError

from .exceptions import (
    AttachmentUploadError, InvalidSubmission, MalformedSubmission, PersistenceError, SubmissionError
)
from .models import ResourceRequest
from .serializers import ApplicationSubmissionSerializer, DEFAULT_DECK_LINK_DOMAINS

logger = logging.getLogger(__name__)

MB = 1024 * 1024


@dataclass(frozen=True)
class SubmissionConfig:
    """Everything the submission handler needs from the deployment"""

    admin_recipients: tuple
    from_email: str
    program_name: str = 'Runway VNEST'
    storage_folder: str = 'applications'
    cloudinary: dict = field(default_factory=dict)
    max_upload_size: int = 20 * MB
    allowed_extensions: tuple = ('ppt', 'pptx')
    deck_link_domains: tuple = DEFAULT_DECK_LINK_DOMAINS
    wait_for_notifications: bool = True

    @classmethod
    def from_settings(cls):
        return cls(
            admin_recipients=tuple(settings.RUNWAY_ADMIN_EMAILS),
            from_email=settings.DEFAULT_FROM_EMAIL,
            program_name=settings.RUNWAY_PROGRAM_NAME,
            storage_folder=settings.RUNWAY_STORAGE_FOLDER,
            cloudinary=dict(settings.CLOUDINARY_STORAGE),
            max_upload_size=settings.RUNWAY_MAX_UPLOAD_MB * MB,
            allowed_extensions=tuple(ext.lower().lstrip('.') for ext in settings.RUNWAY_DECK_EXTENSIONS),
            deck_link_domains=tuple(settings.RUNWAY_DECK_LINK_DOMAINS),
            wait_for_notifications=settings.RUNWAY_WAIT_FOR_NOTIFICATIONS,
        )


@dataclass
class SubmissionResult:
    application: object
    resources: list

    @property
    def application_id(self):
        return str(self.application.id)

    @property
    def submitted_at(self):
        return self.application.submitted_at.isoformat()


def parse_resources(raw):
    """Decode the JSON encoded resource list sent as a single multipart field"""
    if raw is None or raw == '':
        return []
    if isinstance(raw, list):
        return raw
    try:
        return json.loads(raw)
    except (TypeError, ValueError):
        raise MalformedSubmission()


def deck_extension(filename):
    return os.path.splitext(filename or '')[1].lower().lstrip('.')


def check_deck_file(ppt_file, max_upload_size, allowed_extensions):
    """Return an error message for an unacceptable deck, or None"""
    if deck_extension(ppt_file.name) not in allowed_extensions:
        accepted = ', '.join(f'.{ext}' for ext in allowed_extensions)
        return f"Only {accepted} files are accepted"
    if ppt_file.size > max_upload_size:
        return f"File size must be less than {max_upload_size // MB}MB"
    return None


class SubmissionHandler:
    """Persists one multipart intake submission and notifies staff and applicant"""

    def __init__(self, config, file_store=None, notifier=None):
        self.config = config
        self.file_store = file_store or CloudinaryFileStore(
            cloud_name=config.cloudinary.get('CLOUD_NAME'),
            api_key=config.cloudinary.get('API_KEY'),
            api_secret=config.cloudinary.get('API_SECRET'),
        )
        self.notifier = notifier or NotificationDispatcher(
            ApplicationMailer(
                from_email=config.from_email,
                admin_recipients=config.admin_recipients,
                program_name=config.program_name,
            ),
            wait=config.wait_for_notifications,
        )

    @classmethod
    def from_settings(cls):
        return cls(SubmissionConfig.from_settings())

    def handle(self, data, ppt_file=None):
        """Run a submission and map the outcome to (status code, response body)"""
        try:
            result = self.submit(data, ppt_file)
        except SubmissionError as e:
            body = {'success': False, 'message': e.message}
            if e.errors:
                body['errors'] = e.errors
            return e.status_code, body
        except Exception:
            logger.exception("Unexpected error while handling application submission")
            return status.HTTP_500_INTERNAL_SERVER_ERROR, {
                'success': False,
                'message': SubmissionError.default_message,
            }

        return status.HTTP_200_OK, {
            'success': True,
            'message': "Application submitted successfully",
            'data': {
                'applicationId': result.application_id,
                'submittedAt': result.submitted_at,
            },
        }

    def submit(self, data, ppt_file=None):
        resources = parse_resources(data.get('resources'))

        payload = {name: data.get(name) for name in ApplicationSubmissionSerializer.Meta.fields
                   if data.get(name) is not None}
        payload['resources'] = resources
        serializer = ApplicationSubmissionSerializer(
            data=payload, context={'deck_link_domains': self.config.deck_link_domains}
        )
        if not serializer.is_valid():
            raise InvalidSubmission(errors=serializer.errors)

        if ppt_file is not None:
            problem = check_deck_file(ppt_file, self.config.max_upload_size, self.config.allowed_extensions)
            if problem:
                raise InvalidSubmission(problem, errors={'pptFile': [problem]})

        register_number = serializer.validated_data['register_number']
        ppt_file_url = self.upload_deck(ppt_file, register_number) if ppt_file is not None else None

        try:
            with transaction.atomic():
                application = serializer.save(ppt_file_url=ppt_file_url)
        except DatabaseError as e:
            logger.error(f"Failed to insert application for {register_number}: {str(e)}")
            raise PersistenceError()
        logger.info(f"Application {application.id} saved for {register_number}")

        resources = self.save_resources(application, serializer.validated_data.get('resources', []))

        try:
            self.notifier.dispatch(application, resources)
        except Exception as e:
            logger.error(f"Failed to dispatch notifications for application {application.id}: {str(e)}")

        return SubmissionResult(application=application, resources=resources)

    def upload_deck(self, ppt_file, register_number):
        extension = deck_extension(ppt_file.name)
        public_id = f"{get_valid_filename(register_number)}_{int(time.time() * 1000)}.{extension}"
        try:
            url = self.file_store.upload(ppt_file, public_id=public_id, folder=self.config.storage_folder)
        except FileUploadError as e:
            logger.error(f"File upload error for {register_number}: {str(e)}")
            raise AttachmentUploadError()
        logger.info(f"Uploaded deck for {register_number} to {url}")
        return url

    def save_resources(self, application, resources):
        if not resources:
            return []
        rows = [ResourceRequest(application=application, **resource) for resource in resources]
        try:
            with transaction.atomic():
                saved = ResourceRequest.objects.bulk_create(rows)
        except DatabaseError as e:
            # the application row is already committed and stays
            logger.error(f"Resources insert error for application {application.id}: {str(e)}")
            # unsaved rows still describe the request in the emails
            return rows
        logger.info(f"Saved {len(saved)} resource requests for application {application.id}")
        return saved
