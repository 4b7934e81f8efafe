from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from urllib.parse import urlparse

from django.conf import settings
from rest_framework import serializers

from .models import Application, ResourceRequest


ABSTRACT_MAX_LENGTH = 300
MIN_CONTACT_LENGTH = 10
MAX_CONTACT_LENGTH = 50
COST_MAX_DIGITS = 18
COST_DECIMAL_PLACES = 2
DEFAULT_DECK_LINK_DOMAINS = ('drive.google.com', 'docs.google.com')


def required_text(message, source=None, **kwargs):
    error_messages = {'required': message, 'blank': message, 'null': message}
    error_messages.update(kwargs.pop('error_messages', {}))
    if source:
        kwargs['source'] = source
    return serializers.CharField(error_messages=error_messages, **kwargs)


def abstract_text(label, source=None):
    return required_text(
        f"{label} is required",
        source,
        max_length=ABSTRACT_MAX_LENGTH,
        error_messages={'max_length': f"{label} must not exceed {ABSTRACT_MAX_LENGTH} characters"},
    )


def contact_number(source):
    return required_text(
        "Contact number is required",
        source,
        min_length=MIN_CONTACT_LENGTH,
        max_length=MAX_CONTACT_LENGTH,
        error_messages={
            'min_length': f"Contact number must be at least {MIN_CONTACT_LENGTH} digits",
            'max_length': f"Contact number must not exceed {MAX_CONTACT_LENGTH} characters",
        },
    )


def email_address(source=None):
    message = "Invalid email address"
    kwargs = {'source': source} if source else {}
    return serializers.EmailField(
        error_messages={'required': message, 'blank': message, 'null': message, 'invalid': message},
        **kwargs
    )


def is_cloud_drive_link(url, domains=None):
    domains = domains or getattr(settings, 'RUNWAY_DECK_LINK_DOMAINS', DEFAULT_DECK_LINK_DOMAINS)
    host = (urlparse(url).hostname or '').lower()
    return any(host == domain or host.endswith(f'.{domain}') for domain in domains)


class CostField(serializers.DecimalField):
    """Rounds costs to the paisa instead of rejecting extra decimal places"""

    def validate_precision(self, value):
        try:
            value = value.quantize(Decimal(1).scaleb(-self.decimal_places), rounding=self.rounding)
        except InvalidOperation:
            self.fail('max_digits', max_digits=self.max_digits)
        return super().validate_precision(value)


class ResourceRequestSerializer(serializers.ModelSerializer):
    resourceName = serializers.CharField(
        source='resource_name', max_length=200, required=False, allow_blank=True, allow_null=True
    )
    description = serializers.CharField(required=False, allow_blank=True, allow_null=True)
    cost = CostField(
        max_digits=COST_MAX_DIGITS,
        decimal_places=COST_DECIMAL_PLACES,
        rounding=ROUND_HALF_UP,
        min_value=Decimal('0'),
        default=Decimal('0'),
        error_messages={
            'min_value': "Cost must be a positive number",
            'invalid': "Cost must be a number",
            'max_whole_digits': "Cost is too large",
            'max_digits': "Cost is too large",
        },
    )
    link = serializers.CharField(
        max_length=2048,
        required=False,
        allow_blank=True,
        allow_null=True,
        error_messages={'max_length': "Link must be under 2048 characters"},
    )

    class Meta:
        model = ResourceRequest
        fields = ['resourceName', 'description', 'cost', 'link']

    def to_internal_value(self, data):
        if isinstance(data, dict) and data.get('cost') in (None, ''):
            data = {**data, 'cost': 0}
        return super().to_internal_value(data)

    def validate(self, data):
        # blank optional columns are stored as NULL
        for field in ('resource_name', 'description', 'link'):
            if not data.get(field):
                data[field] = None
        return data


class ApplicationSubmissionSerializer(serializers.ModelSerializer):
    """Validates one intake submission; shared by the wizard and the submit endpoint"""

    # Student details
    fullName = required_text("Full name is required", 'full_name', max_length=200)
    registerNumber = required_text("Register number is required", 'register_number', max_length=50)
    contactNumber = contact_number('contact_number')
    email = email_address()
    schoolDepartment = required_text("School/Department is required", 'school_department', max_length=200)
    yearOfStudy = required_text("Year of study is required", 'year_of_study', max_length=50)

    # Startup / idea abstract
    startupName = required_text("Startup/Idea name is required", 'startup_name', max_length=200)
    problemStatement = abstract_text("Problem statement", 'problem_statement')
    proposedSolution = abstract_text("Proposed solution", 'proposed_solution')
    targetUsers = abstract_text("Target users/market", 'target_users')
    innovation = abstract_text("Innovation/uniqueness")
    pptLink = serializers.URLField(
        source='ppt_link',
        max_length=500,
        error_messages={
            'required': "PPT drive link is required",
            'blank': "PPT drive link is required",
            'null': "PPT drive link is required",
            'invalid': "Please enter a valid URL",
        },
    )

    # Faculty mentor
    facultyName = required_text("Faculty name is required", 'faculty_name', max_length=200)
    facultyDepartment = required_text("Faculty department is required", 'faculty_department', max_length=200)
    facultyEmail = email_address('faculty_email')
    facultyContact = contact_number('faculty_contact')
    facultyEmployeeId = required_text("Employee ID is required", 'faculty_employee_id', max_length=50)

    resources = ResourceRequestSerializer(many=True, required=False)
    consent = serializers.BooleanField(
        error_messages={
            'required': "You must agree to the terms to submit your application",
            'invalid': "You must agree to the terms to submit your application",
        }
    )

    class Meta:
        model = Application
        fields = [
            'fullName', 'registerNumber', 'contactNumber', 'email', 'schoolDepartment', 'yearOfStudy',
            'startupName', 'problemStatement', 'proposedSolution', 'targetUsers', 'innovation', 'pptLink',
            'facultyName', 'facultyDepartment', 'facultyEmail', 'facultyContact', 'facultyEmployeeId',
            'resources', 'consent',
        ]

    def validate_pptLink(self, value):
        domains = self.context.get('deck_link_domains')
        if not is_cloud_drive_link(value, domains):
            raise serializers.ValidationError("Please provide a valid Google Drive link")
        return value

    def validate_consent(self, value):
        if value is not True:
            raise serializers.ValidationError("You must agree to the terms to submit your application")
        return value

    def create(self, validated_data):
        validated_data.pop('resources', None)
        return Application.objects.create(**validated_data)
