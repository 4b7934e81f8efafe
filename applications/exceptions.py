from rest_framework import status


class SubmissionError(Exception):
    """Base class for failures that abort an application submission"""

    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR
    default_message = "An error occurred during submission"

    def __init__(self, message=None, errors=None):
        self.message = message or self.default_message
        self.errors = errors or {}
        super().__init__(self.message)


class MalformedSubmission(SubmissionError):
    status_code = status.HTTP_400_BAD_REQUEST
    default_message = "Invalid resources data format"


class InvalidSubmission(SubmissionError):
    status_code = status.HTTP_400_BAD_REQUEST
    default_message = "Please correct the highlighted fields and try again"


class AttachmentUploadError(SubmissionError):
    default_message = "Failed to upload PPT file"


class PersistenceError(SubmissionError):
    default_message = "Failed to save application to database"


class WizardError(Exception):
    """Raised when the form wizard is driven out of sequence"""


class TransportError(Exception):
    """Raised when a submission could not be delivered to the server"""
