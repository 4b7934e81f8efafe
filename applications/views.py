import logging

from drf_yasg import openapi
from drf_yasg.utils import swagger_auto_schema
from rest_framework import status
from rest_framework.decorators import action
from rest_framework.parsers import FormParser, JSONParser, MultiPartParser
from rest_framework.permissions import AllowAny
from rest_framework.response import Response
from rest_framework.views import APIView
from rest_framework.viewsets import ViewSet

from .exceptions import MalformedSubmission, WizardError
from .services import SubmissionHandler, parse_resources
from .wizard import STEPS, ApplicationWizard, HandlerTransport

logger = logging.getLogger(__name__)

WIZARD_SESSION_KEY = 'application_wizard'

APPLICATION_FORM_FIELDS = [
    ('fullName', "Applicant full name"),
    ('registerNumber', "University register number"),
    ('contactNumber', "Applicant contact number (at least 10 digits)"),
    ('email', "Applicant email address"),
    ('schoolDepartment', "School / department"),
    ('yearOfStudy', "Year of study"),
    ('startupName', "Startup or idea name"),
    ('problemStatement', "Problem statement (max 300 characters)"),
    ('proposedSolution', "Proposed solution (max 300 characters)"),
    ('targetUsers', "Target users / market (max 300 characters)"),
    ('innovation', "Innovation / uniqueness (max 300 characters)"),
    ('pptLink', "Google Drive link to the pitch deck"),
    ('facultyName', "Faculty mentor name"),
    ('facultyDepartment', "Faculty mentor department"),
    ('facultyEmail', "Faculty mentor email"),
    ('facultyContact', "Faculty mentor contact number"),
    ('facultyEmployeeId', "Faculty mentor employee ID"),
    ('resources', "JSON list of {resourceName, description, cost, link}"),
    ('consent', "\"true\" when the applicant agrees to the terms"),
]

ppt_file_parameter = openapi.Parameter(
    'pptFile',
    openapi.IN_FORM,
    description="Optional slide deck (.ppt/.pptx, max 20MB)",
    type=openapi.TYPE_FILE,
    required=False,
)

submission_response = openapi.Schema(
    type=openapi.TYPE_OBJECT,
    properties={
        'success': openapi.Schema(type=openapi.TYPE_BOOLEAN),
        'message': openapi.Schema(type=openapi.TYPE_STRING),
        'data': openapi.Schema(
            type=openapi.TYPE_OBJECT,
            properties={
                'applicationId': openapi.Schema(type=openapi.TYPE_STRING, format=openapi.FORMAT_UUID),
                'submittedAt': openapi.Schema(type=openapi.TYPE_STRING, format=openapi.FORMAT_DATETIME),
            },
        ),
    },
)


def get_submission_handler():
    return SubmissionHandler.from_settings()


class ApplicationSubmitView(APIView):
    authentication_classes = []
    permission_classes = [AllowAny]
    parser_classes = (MultiPartParser, FormParser)

    @swagger_auto_schema(
        manual_parameters=[
            openapi.Parameter(name, openapi.IN_FORM, description=description, type=openapi.TYPE_STRING)
            for name, description in APPLICATION_FORM_FIELDS
        ] + [ppt_file_parameter],
        responses={
            200: submission_response,
            400: "Invalid resources data format or invalid fields",
            500: "Upload or database failure",
        },
        operation_description="Submit a complete pre-incubation application as multipart form data.",
        tags=['applications']
    )
    def post(self, request):
        handler = get_submission_handler()
        status_code, body = handler.handle(request.data, request.FILES.get('pptFile'))
        return Response(body, status=status_code)


class ApplicationWizardViewSet(ViewSet):
    """
    Session backed multi-step application form.

    The wizard state lives in the caller's session, so a browser can move
    back and forth between steps and only submits once, from the consent step.
    """
    authentication_classes = []
    permission_classes = [AllowAny]
    parser_classes = (JSONParser, MultiPartParser, FormParser)

    def load_wizard(self, request):
        return ApplicationWizard.from_dict(request.session.get(WIZARD_SESSION_KEY))

    def save_wizard(self, request, wizard):
        request.session[WIZARD_SESSION_KEY] = wizard.to_dict()

    def wizard_response(self, wizard, status_code=status.HTTP_200_OK, **extra):
        body = {
            'step': wizard.step,
            'stepTitle': wizard.step_title,
            'steps': STEPS,
            'status': wizard.status,
            'errors': wizard.errors,
            'errorMessage': wizard.error_message,
            'totalCost': wizard.total_cost,
            'data': wizard.to_dict()['data'],
            'resources': wizard.resources,
            'consent': wizard.consent,
            'result': wizard.result,
        }
        body.update(extra)
        return Response(body, status=status_code)

    def update_from_request(self, wizard, request):
        fields = {key: request.data.get(key) for key in request.data.keys() if key != 'pptFile'}
        if 'resources' in fields:
            # multipart carries the resource list as a JSON string, JSON bodies may too
            try:
                fields['resources'] = parse_resources(fields['resources'])
            except MalformedSubmission as e:
                raise WizardError(e.message)
        wizard.update(**fields)

    @swagger_auto_schema(
        operation_description="Current state of the caller's application form.",
        tags=['application wizard']
    )
    def list(self, request):
        return self.wizard_response(self.load_wizard(request))

    @swagger_auto_schema(
        operation_description="Record field values without changing step.",
        tags=['application wizard']
    )
    @action(detail=False, methods=['post'], url_path='update')
    def save_fields(self, request):
        wizard = self.load_wizard(request)
        try:
            self.update_from_request(wizard, request)
        except WizardError as e:
            return Response({"error": str(e)}, status=status.HTTP_400_BAD_REQUEST)
        self.save_wizard(request, wizard)
        return self.wizard_response(wizard)

    @swagger_auto_schema(
        operation_description="Record field values and move to the next step if the current one is valid.",
        tags=['application wizard']
    )
    @action(detail=False, methods=['post'])
    def advance(self, request):
        wizard = self.load_wizard(request)
        try:
            self.update_from_request(wizard, request)
            moved = wizard.advance()
        except WizardError as e:
            return Response({"error": str(e)}, status=status.HTTP_400_BAD_REQUEST)
        self.save_wizard(request, wizard)
        status_code = status.HTTP_200_OK if moved or not wizard.errors else status.HTTP_400_BAD_REQUEST
        return self.wizard_response(wizard, status_code, moved=moved)

    @swagger_auto_schema(
        operation_description="Go back one step. No validation is performed.",
        tags=['application wizard']
    )
    @action(detail=False, methods=['post'])
    def retreat(self, request):
        wizard = self.load_wizard(request)
        try:
            moved = wizard.retreat()
        except WizardError as e:
            return Response({"error": str(e)}, status=status.HTTP_400_BAD_REQUEST)
        self.save_wizard(request, wizard)
        return self.wizard_response(wizard, moved=moved)

    @swagger_auto_schema(
        manual_parameters=[ppt_file_parameter],
        operation_description="Submit the application from the consent step.",
        tags=['application wizard']
    )
    @action(detail=False, methods=['post'])
    def submit(self, request):
        wizard = self.load_wizard(request)
        try:
            self.update_from_request(wizard, request)
            ppt_file = request.FILES.get('pptFile')
            if ppt_file is not None and wizard.attach_file(ppt_file):
                self.save_wizard(request, wizard)
                return self.wizard_response(wizard, status.HTTP_400_BAD_REQUEST)
            submitted = wizard.submit(HandlerTransport(get_submission_handler()))
        except WizardError as e:
            return Response({"error": str(e)}, status=status.HTTP_400_BAD_REQUEST)
        self.save_wizard(request, wizard)
        if not submitted and wizard.errors:
            return self.wizard_response(wizard, status.HTTP_400_BAD_REQUEST)
        return self.wizard_response(wizard)

    @swagger_auto_schema(
        operation_description="Leave the error screen and return to the consent step with all input kept.",
        tags=['application wizard']
    )
    @action(detail=False, methods=['post'])
    def retry(self, request):
        wizard = self.load_wizard(request)
        try:
            wizard.retry()
        except WizardError as e:
            return Response({"error": str(e)}, status=status.HTTP_400_BAD_REQUEST)
        self.save_wizard(request, wizard)
        return self.wizard_response(wizard)

    @swagger_auto_schema(
        operation_description="Discard the form and start again from the first step.",
        tags=['application wizard']
    )
    @action(detail=False, methods=['post'])
    def reset(self, request):
        wizard = ApplicationWizard()
        self.save_wizard(request, wizard)
        return self.wizard_response(wizard)
