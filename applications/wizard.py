"""
Multi-step intake form controller.

``ApplicationWizard`` walks an applicant through the seven intake steps,
validates each step's fields before letting them move forward, and turns the
collected answers into the multipart payload the submit endpoint expects.
Field rules come from ``ApplicationSubmissionSerializer`` so the wizard and
the server reject exactly the same input.
"""
import json
import logging

import requests
from django.core.serializers.json import DjangoJSONEncoder

from .exceptions import TransportError, WizardError
from .serializers import ApplicationSubmissionSerializer
from .services import MB, check_deck_file

logger = logging.getLogger(__name__)

STEPS = [
    "Get Started",
    "Student Details",
    "Startup Overview",
    "Solution & Market",
    "Faculty Mentor",
    "Resources",
    "Consent",
]

STEP_FIELDS = {
    1: [],
    2: ['fullName', 'registerNumber', 'contactNumber', 'email', 'schoolDepartment', 'yearOfStudy'],
    3: ['startupName', 'problemStatement', 'proposedSolution'],
    4: ['targetUsers', 'innovation', 'pptLink'],
    5: ['facultyName', 'facultyDepartment', 'facultyEmail', 'facultyContact', 'facultyEmployeeId'],
    6: ['resources'],
    7: ['consent'],
}

TEXT_FIELDS = [name for step in range(2, 6) for name in STEP_FIELDS[step]]
FIRST_STEP = 1
CONSENT_STEP = len(STEPS)

EDITING = 'editing'
SUCCESS = 'success'
ERROR = 'error'

DEFAULT_SUBMIT_ERROR = "Submission failed. Please try again."
MAX_DECK_SIZE = 20 * MB
DECK_EXTENSIONS = ('ppt', 'pptx')


def coerce_consent(value):
    if isinstance(value, str):
        return value.strip().lower() == 'true'
    return bool(value)


def blank_resource():
    return {'resourceName': '', 'description': '', 'cost': 0, 'link': ''}


def clean_resources(value):
    if value is None:
        return []
    if not isinstance(value, list) or not all(isinstance(resource, dict) for resource in value):
        raise WizardError("Resources must be a list of objects.")
    return [dict(resource) for resource in value]


class ApplicationWizard:
    def __init__(self, step=FIRST_STEP, data=None, resources=None, consent=False,
                 status=EDITING, error_message='', result=None):
        self.step = step
        self.data = {name: '' for name in TEXT_FIELDS}
        self.data.update({k: v for k, v in (data or {}).items() if k in self.data})
        self.resources = [dict(resource) for resource in (resources or [])]
        self.consent = consent
        self.status = status
        self.error_message = error_message
        self.result = result or {}
        self.errors = {}
        self.ppt_file = None

    # -- state ---------------------------------------------------------------

    @property
    def step_title(self):
        return STEPS[self.step - 1]

    @property
    def is_terminal(self):
        return self.status in (SUCCESS, ERROR)

    @property
    def total_cost(self):
        total = 0
        for resource in self.resources:
            try:
                total += float(resource.get('cost') or 0)
            except (TypeError, ValueError):
                continue
        return total

    def _ensure_editing(self):
        if self.is_terminal:
            raise WizardError(f"The application form is in the '{self.status}' state.")

    # -- input ---------------------------------------------------------------

    def update(self, **fields):
        self._ensure_editing()
        for name, value in fields.items():
            if name == 'consent':
                self.consent = coerce_consent(value)
            elif name == 'resources':
                self.resources = clean_resources(value)
            elif name in self.data:
                self.data[name] = '' if value is None else str(value)

    def add_resource(self, resourceName='', description='', cost=0, link=''):
        self._ensure_editing()
        self.resources.append({
            'resourceName': resourceName, 'description': description, 'cost': cost, 'link': link,
        })
        return len(self.resources) - 1

    def update_resource(self, index, **fields):
        self._ensure_editing()
        try:
            resource = self.resources[index]
        except IndexError:
            raise WizardError(f"There is no resource row {index}.")
        resource.update({k: v for k, v in fields.items() if k in blank_resource()})

    def remove_resource(self, index):
        self._ensure_editing()
        try:
            del self.resources[index]
        except IndexError:
            raise WizardError(f"There is no resource row {index}.")

    def attach_file(self, ppt_file):
        """Attach an optional slide deck; returns an error message or None"""
        self._ensure_editing()
        problem = check_deck_file(ppt_file, MAX_DECK_SIZE, DECK_EXTENSIONS)
        if problem:
            self.errors = {'pptFile': [problem]}
            return problem
        self.ppt_file = ppt_file
        return None

    def clear_file(self):
        self.ppt_file = None

    # -- validation ----------------------------------------------------------

    def validation_data(self):
        return {**self.data, 'resources': self.resources, 'consent': self.consent}

    def validate_all(self):
        serializer = ApplicationSubmissionSerializer(data=self.validation_data())
        serializer.is_valid()
        return dict(serializer.errors)

    def validate_step(self, step=None):
        step = self.step if step is None else step
        if step not in STEP_FIELDS:
            raise WizardError(f"Unknown step {step}.")
        fields = STEP_FIELDS[step]
        if not fields:
            return {}
        errors = self.validate_all()
        return {name: errors[name] for name in fields if name in errors}

    # -- navigation ----------------------------------------------------------

    def advance(self):
        self._ensure_editing()
        self.errors = self.validate_step()
        if self.errors or self.step >= CONSENT_STEP:
            return False
        self.step += 1
        return True

    def retreat(self):
        self._ensure_editing()
        self.errors = {}
        if self.step <= FIRST_STEP:
            return False
        self.step -= 1
        return True

    def retry(self):
        if self.status != ERROR:
            raise WizardError("Only a failed submission can be retried.")
        self.status = EDITING
        self.error_message = ''
        self.step = CONSENT_STEP

    # -- submission ----------------------------------------------------------

    def build_payload(self):
        fields = dict(self.data)
        fields['resources'] = json.dumps(self.resources, cls=DjangoJSONEncoder)
        fields['consent'] = 'true' if self.consent else 'false'
        files = {'pptFile': self.ppt_file} if self.ppt_file is not None else {}
        return fields, files

    def submit(self, transport):
        self._ensure_editing()
        if self.step != CONSENT_STEP:
            raise WizardError("The application can only be submitted from the consent step.")

        self.errors = self.validate_all()
        if self.errors:
            return False

        fields, files = self.build_payload()
        try:
            status_code, body = transport(fields, files)
        except TransportError as e:
            logger.error(f"Submission transport failed: {str(e)}")
            self.status = ERROR
            self.error_message = DEFAULT_SUBMIT_ERROR
            return False

        if 200 <= status_code < 300 and body.get('success'):
            self.status = SUCCESS
            self.result = body.get('data') or {}
            return True

        self.status = ERROR
        self.error_message = body.get('message') or DEFAULT_SUBMIT_ERROR
        return False

    # -- persistence ---------------------------------------------------------

    def to_dict(self):
        return {
            'step': self.step,
            'data': dict(self.data),
            'resources': [dict(resource) for resource in self.resources],
            'consent': self.consent,
            'status': self.status,
            'error_message': self.error_message,
            'result': dict(self.result),
        }

    @classmethod
    def from_dict(cls, state):
        state = state or {}
        return cls(
            step=state.get('step', FIRST_STEP),
            data=state.get('data'),
            resources=state.get('resources'),
            consent=state.get('consent', False),
            status=state.get('status', EDITING),
            error_message=state.get('error_message', ''),
            result=state.get('result'),
        )


class HandlerTransport:
    """Delivers the payload to an in-process SubmissionHandler"""

    def __init__(self, handler):
        self.handler = handler

    def __call__(self, fields, files):
        return self.handler.handle(fields, files.get('pptFile'))


class HttpTransport:
    """Posts the payload to a remote submit endpoint as multipart form data"""

    def __init__(self, url, timeout=60, session=None):
        self.url = url
        self.timeout = timeout
        self.session = session or requests.Session()

    def __call__(self, fields, files):
        upload = {}
        ppt_file = files.get('pptFile')
        if ppt_file is not None:
            upload['pptFile'] = (ppt_file.name, ppt_file, getattr(ppt_file, 'content_type', None))
        # requests only switches to multipart when files are present
        multipart = {name: (None, value) for name, value in fields.items()}
        multipart.update(upload)
        try:
            response = self.session.post(self.url, files=multipart, timeout=self.timeout)
        except requests.RequestException as e:
            raise TransportError(str(e)) from e
        try:
            body = response.json()
        except ValueError:
            body = {}
        return response.status_code, body
