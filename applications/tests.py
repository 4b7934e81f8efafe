import json
import uuid
from datetime import datetime
from decimal import Decimal
from smtplib import SMTPException
from unittest import mock

from django.contrib.admin.sites import AdminSite
from django.core import mail
from django.core.files.uploadedfile import SimpleUploadedFile
from django.db import DatabaseError, IntegrityError
from django.test import TestCase, override_settings
from rest_framework.test import APIClient

from notifications.services import ApplicationMailer
from utils.cloudinary_utils import FileUploadError

from .admin import ApplicationAdmin
from .models import Application, ResourceRequest
from .serializers import ApplicationSubmissionSerializer
from .services import SubmissionConfig, SubmissionHandler, parse_resources
from .exceptions import MalformedSubmission

SUBMIT_URL = '/api/v1/applications/submit/'
UPLOADED_URL = 'https://res.cloudinary.com/vnest/raw/upload/v1700000000/applications/21BCE1234_1700000000000.pptx'


def valid_payload(**overrides):
    payload = {
        'fullName': 'Ananya Rao',
        'registerNumber': '21BCE1234',
        'contactNumber': '9876543210',
        'email': 'ananya.rao@student.vnest.edu',
        'schoolDepartment': 'School of Computer Science',
        'yearOfStudy': '3rd Year',
        'startupName': 'FarmSense',
        'problemStatement': 'Small farmers lose a third of their yield to late pest detection.',
        'proposedSolution': 'Low cost soil and leaf sensors that push alerts over SMS.',
        'targetUsers': 'Smallholder farmers and agri co-operatives in South India.',
        'innovation': 'Offline first sensor mesh that works without smartphones.',
        'pptLink': 'https://drive.google.com/file/d/1AbCdEf/view?usp=sharing',
        'facultyName': 'Dr. Meera Iyer',
        'facultyDepartment': 'School of Electronics',
        'facultyEmail': 'meera.iyer@vnest.edu',
        'facultyContact': '9123456780',
        'facultyEmployeeId': 'EMP4521',
        'resources': json.dumps([
            {'resourceName': 'Soil sensors', 'description': 'Pilot batch of 20', 'cost': 15000, 'link': ''},
            {'resourceName': 'Cloud credits', 'description': '', 'cost': '2500.50', 'link': 'https://aws.amazon.com'},
        ]),
        'consent': 'true',
    }
    payload.update(overrides)
    return payload


def pptx_file(name='pitch.pptx', size=1024):
    return SimpleUploadedFile(
        name, b'x' * size,
        content_type='application/vnd.openxmlformats-officedocument.presentationml.presentation',
    )


@override_settings(RUNWAY_ADMIN_EMAILS=['staff@vnest.edu'], DEFAULT_FROM_EMAIL='noreply@vnest.edu')
class ApplicationSubmitViewTest(TestCase):
    """Exercise the multipart submit endpoint end to end."""

    def setUp(self):
        self.client = APIClient()

    def test_valid_submission_returns_id_and_timestamp(self):
        resp = self.client.post(SUBMIT_URL, valid_payload(), format='multipart')
        self.assertEqual(resp.status_code, 200)
        body = resp.json()
        self.assertTrue(body['success'])
        self.assertEqual(body['message'], 'Application submitted successfully')

        application_id = uuid.UUID(body['data']['applicationId'])
        datetime.fromisoformat(body['data']['submittedAt'])

        application = Application.objects.get(id=application_id)
        self.assertEqual(application.startup_name, 'FarmSense')
        self.assertTrue(application.consent)
        self.assertIsNone(application.ppt_file_url)
        self.assertEqual(application.resources.count(), 2)
        self.assertEqual(application.total_cost, Decimal('17500.50'))

    def test_blank_resource_fields_are_stored_as_null(self):
        self.client.post(SUBMIT_URL, valid_payload(), format='multipart')
        cloud = ResourceRequest.objects.get(resource_name='Cloud credits')
        self.assertIsNone(cloud.description)
        sensors = ResourceRequest.objects.get(resource_name='Soil sensors')
        self.assertIsNone(sensors.link)

    def test_valid_submission_sends_admin_and_confirmation_emails(self):
        self.client.post(SUBMIT_URL, valid_payload(), format='multipart')
        self.assertEqual(len(mail.outbox), 2)
        by_recipient = {tuple(message.to): message for message in mail.outbox}

        admin_email = by_recipient[('staff@vnest.edu',)]
        self.assertEqual(admin_email.subject, 'New Application: FarmSense - Ananya Rao')
        html = admin_email.alternatives[0][0]
        self.assertIn('Soil sensors', html)
        self.assertIn('Dr. Meera Iyer', html)

        confirmation = by_recipient[('ananya.rao@student.vnest.edu',)]
        self.assertEqual(confirmation.subject, 'Application Received - FarmSense')

    def test_missing_required_field_is_rejected(self):
        resp = self.client.post(SUBMIT_URL, valid_payload(facultyEmployeeId=''), format='multipart')
        self.assertEqual(resp.status_code, 400)
        body = resp.json()
        self.assertFalse(body['success'])
        self.assertIn('facultyEmployeeId', body['errors'])
        self.assertEqual(Application.objects.count(), 0)

    def test_absent_field_is_rejected(self):
        payload = valid_payload()
        del payload['registerNumber']
        resp = self.client.post(SUBMIT_URL, payload, format='multipart')
        self.assertEqual(resp.status_code, 400)
        self.assertIn('registerNumber', resp.json()['errors'])

    def test_abstract_fields_over_300_characters_are_rejected(self):
        for field in ['problemStatement', 'proposedSolution', 'targetUsers', 'innovation']:
            resp = self.client.post(SUBMIT_URL, valid_payload(**{field: 'a' * 301}), format='multipart')
            self.assertEqual(resp.status_code, 400, field)
            self.assertIn(field, resp.json()['errors'])
        self.assertEqual(Application.objects.count(), 0)

    def test_abstract_field_of_exactly_300_characters_is_accepted(self):
        resp = self.client.post(SUBMIT_URL, valid_payload(innovation='a' * 300), format='multipart')
        self.assertEqual(resp.status_code, 200)

    def test_non_drive_ppt_link_is_rejected(self):
        for link in ['https://dropbox.com/s/deck.pptx', 'https://drive.google.com.evil.io/deck', 'not a url']:
            resp = self.client.post(SUBMIT_URL, valid_payload(pptLink=link), format='multipart')
            self.assertEqual(resp.status_code, 400, link)
            self.assertIn('pptLink', resp.json()['errors'])

    def test_docs_link_is_accepted(self):
        link = 'https://docs.google.com/presentation/d/1XyZ/edit'
        resp = self.client.post(SUBMIT_URL, valid_payload(pptLink=link), format='multipart')
        self.assertEqual(resp.status_code, 200)

    def test_short_contact_and_bad_email_are_rejected(self):
        resp = self.client.post(
            SUBMIT_URL,
            valid_payload(contactNumber='12345', facultyEmail='meera-at-vnest'),
            format='multipart',
        )
        self.assertEqual(resp.status_code, 400)
        errors = resp.json()['errors']
        self.assertIn('contactNumber', errors)
        self.assertIn('facultyEmail', errors)

    def test_consent_false_is_never_persisted(self):
        resp = self.client.post(SUBMIT_URL, valid_payload(consent='false'), format='multipart')
        self.assertEqual(resp.status_code, 400)
        self.assertIn('consent', resp.json()['errors'])
        self.assertEqual(Application.objects.count(), 0)
        self.assertEqual(len(mail.outbox), 0)

    def test_negative_resource_cost_is_rejected(self):
        resources = json.dumps([{'resourceName': 'Refund', 'cost': -10}])
        resp = self.client.post(SUBMIT_URL, valid_payload(resources=resources), format='multipart')
        self.assertEqual(resp.status_code, 400)
        self.assertIn('resources', resp.json()['errors'])

    def test_missing_resource_cost_defaults_to_zero(self):
        resources = json.dumps([{'resourceName': 'Mentoring hours'}, {'resourceName': 'Desk', 'cost': ''}])
        resp = self.client.post(SUBMIT_URL, valid_payload(resources=resources), format='multipart')
        self.assertEqual(resp.status_code, 200)
        costs = list(ResourceRequest.objects.values_list('cost', flat=True))
        self.assertEqual(costs, [Decimal('0'), Decimal('0')])

    def test_fractional_cost_is_rounded_to_two_places(self):
        resources = json.dumps([
            {'resourceName': 'Filament', 'cost': 12.345},
            {'resourceName': 'Tape', 'cost': '0.004'},
        ])
        resp = self.client.post(SUBMIT_URL, valid_payload(resources=resources), format='multipart')
        self.assertEqual(resp.status_code, 200)
        costs = list(ResourceRequest.objects.values_list('cost', flat=True))
        self.assertEqual(costs, [Decimal('12.35'), Decimal('0.00')])

    def test_large_cost_is_accepted(self):
        resources = json.dumps([{'resourceName': 'Fab line', 'cost': 10000000000}])
        resp = self.client.post(SUBMIT_URL, valid_payload(resources=resources), format='multipart')
        self.assertEqual(resp.status_code, 200)
        self.assertEqual(ResourceRequest.objects.get().cost, Decimal('10000000000'))

    def test_cost_beyond_column_width_is_rejected(self):
        resources = json.dumps([{'resourceName': 'Moon base', 'cost': '1' + '0' * 40}])
        resp = self.client.post(SUBMIT_URL, valid_payload(resources=resources), format='multipart')
        self.assertEqual(resp.status_code, 400)
        self.assertIn('resources', resp.json()['errors'])
        self.assertEqual(Application.objects.count(), 0)

    def test_contact_number_with_extension_is_accepted(self):
        resp = self.client.post(
            SUBMIT_URL, valid_payload(facultyContact='+91 44 2257 4000 ext. 12345'), format='multipart'
        )
        self.assertEqual(resp.status_code, 200)
        self.assertEqual(Application.objects.get().faculty_contact, '+91 44 2257 4000 ext. 12345')

    @mock.patch('cloudinary.uploader.upload')
    def test_malformed_resources_returns_400_without_side_effects(self, upload):
        resp = self.client.post(
            SUBMIT_URL,
            {**valid_payload(resources='[{not json'), 'pptFile': pptx_file()},
            format='multipart',
        )
        self.assertEqual(resp.status_code, 400)
        self.assertEqual(resp.json(), {'success': False, 'message': 'Invalid resources data format'})
        upload.assert_not_called()
        self.assertEqual(Application.objects.count(), 0)
        self.assertEqual(ResourceRequest.objects.count(), 0)
        self.assertEqual(len(mail.outbox), 0)

    def test_zero_resources_adds_no_rows(self):
        resp = self.client.post(SUBMIT_URL, valid_payload(resources='[]'), format='multipart')
        self.assertEqual(resp.status_code, 200)
        self.assertEqual(Application.objects.count(), 1)
        self.assertEqual(ResourceRequest.objects.count(), 0)

    def test_omitted_resources_field_is_treated_as_empty(self):
        payload = valid_payload()
        del payload['resources']
        resp = self.client.post(SUBMIT_URL, payload, format='multipart')
        self.assertEqual(resp.status_code, 200)
        self.assertEqual(ResourceRequest.objects.count(), 0)

    def test_admin_email_failure_does_not_fail_submission(self):
        with mock.patch.object(
            ApplicationMailer, 'send_admin_notification', side_effect=SMTPException('relay refused')
        ), self.assertLogs('notifications.services', level='ERROR'):
            resp = self.client.post(SUBMIT_URL, valid_payload(), format='multipart')
        self.assertEqual(resp.status_code, 200)
        body = resp.json()
        self.assertTrue(body['success'])
        self.assertTrue(Application.objects.filter(id=body['data']['applicationId']).exists())
        self.assertEqual([message.subject for message in mail.outbox], ['Application Received - FarmSense'])

    @mock.patch('cloudinary.uploader.upload', return_value={'secure_url': UPLOADED_URL})
    def test_uploaded_deck_is_archived_and_linked(self, upload):
        resp = self.client.post(
            SUBMIT_URL, {**valid_payload(), 'pptFile': pptx_file()}, format='multipart'
        )
        self.assertEqual(resp.status_code, 200)
        application = Application.objects.get()
        self.assertEqual(application.ppt_file_url, UPLOADED_URL)

        options = upload.call_args.kwargs
        self.assertEqual(options['folder'], 'applications')
        self.assertEqual(options['resource_type'], 'raw')
        self.assertRegex(options['public_id'], r'^21BCE1234_\d{13}\.pptx$')

    @mock.patch('cloudinary.uploader.upload', side_effect=Exception('Service unavailable'))
    def test_upload_failure_aborts_before_insert(self, upload):
        resp = self.client.post(
            SUBMIT_URL, {**valid_payload(), 'pptFile': pptx_file()}, format='multipart'
        )
        self.assertEqual(resp.status_code, 500)
        self.assertEqual(resp.json(), {'success': False, 'message': 'Failed to upload PPT file'})
        self.assertEqual(Application.objects.count(), 0)
        self.assertEqual(len(mail.outbox), 0)

    def test_resubmitting_after_storage_outage_creates_one_application(self):
        with mock.patch('cloudinary.uploader.upload', side_effect=Exception('Service unavailable')):
            failed = self.client.post(
                SUBMIT_URL, {**valid_payload(), 'pptFile': pptx_file()}, format='multipart'
            )
        self.assertEqual(failed.status_code, 500)

        with mock.patch('cloudinary.uploader.upload', return_value={'secure_url': UPLOADED_URL}):
            retried = self.client.post(
                SUBMIT_URL, {**valid_payload(), 'pptFile': pptx_file()}, format='multipart'
            )
        self.assertEqual(retried.status_code, 200)
        self.assertEqual(Application.objects.filter(register_number='21BCE1234').count(), 1)

    @mock.patch('cloudinary.uploader.upload')
    def test_wrong_file_type_is_rejected(self, upload):
        resp = self.client.post(
            SUBMIT_URL, {**valid_payload(), 'pptFile': pptx_file(name='pitch.exe')}, format='multipart'
        )
        self.assertEqual(resp.status_code, 400)
        self.assertIn('pptFile', resp.json()['errors'])
        upload.assert_not_called()

    @override_settings(RUNWAY_MAX_UPLOAD_MB=1)
    @mock.patch('cloudinary.uploader.upload')
    def test_oversized_file_is_rejected(self, upload):
        resp = self.client.post(
            SUBMIT_URL, {**valid_payload(), 'pptFile': pptx_file(size=1024 * 1024 + 1)}, format='multipart'
        )
        self.assertEqual(resp.status_code, 400)
        self.assertEqual(resp.json()['message'], 'File size must be less than 1MB')
        upload.assert_not_called()

    def test_application_insert_failure_returns_500(self):
        with mock.patch(
            'applications.serializers.ApplicationSubmissionSerializer.create',
            side_effect=DatabaseError('connection lost'),
        ):
            resp = self.client.post(SUBMIT_URL, valid_payload(), format='multipart')
        self.assertEqual(resp.status_code, 500)
        self.assertEqual(resp.json()['message'], 'Failed to save application to database')
        self.assertEqual(len(mail.outbox), 0)

    def test_resource_insert_failure_keeps_application(self):
        with mock.patch.object(
            ResourceRequest.objects, 'bulk_create', side_effect=IntegrityError('fk violation')
        ), self.assertLogs('applications.services', level='ERROR'):
            resp = self.client.post(SUBMIT_URL, valid_payload(), format='multipart')
        self.assertEqual(resp.status_code, 200)
        self.assertEqual(Application.objects.count(), 1)
        self.assertEqual(ResourceRequest.objects.count(), 0)

    def test_resource_insert_failure_still_emails_requested_resources(self):
        with mock.patch.object(
            ResourceRequest.objects, 'bulk_create', side_effect=IntegrityError('fk violation')
        ), self.assertLogs('applications.services', level='ERROR'):
            resp = self.client.post(SUBMIT_URL, valid_payload(), format='multipart')
        self.assertEqual(resp.status_code, 200)
        admin_email = next(message for message in mail.outbox if message.to == ['staff@vnest.edu'])
        html = admin_email.alternatives[0][0]
        self.assertIn('Soil sensors', html)
        self.assertIn('Cloud credits', html)
        self.assertNotIn('No resources required', html)

    def test_unexpected_error_maps_to_generic_message(self):
        with mock.patch(
            'applications.services.SubmissionHandler.upload_deck', side_effect=RuntimeError('boom')
        ), self.assertLogs('applications.services', level='ERROR'):
            resp = self.client.post(
                SUBMIT_URL, {**valid_payload(), 'pptFile': pptx_file()}, format='multipart'
            )
        self.assertEqual(resp.status_code, 500)
        self.assertEqual(resp.json(), {'success': False, 'message': 'An error occurred during submission'})

    def test_deleting_application_cascades_to_resources(self):
        self.client.post(SUBMIT_URL, valid_payload(), format='multipart')
        Application.objects.get().delete()
        self.assertEqual(ResourceRequest.objects.count(), 0)


class FakeFileStore:
    def __init__(self, fail=False):
        self.fail = fail
        self.uploads = []

    def upload(self, file, public_id, folder=None):
        if self.fail:
            raise FileUploadError('bucket unavailable')
        self.uploads.append((public_id, folder))
        return f'https://files.example/{folder}/{public_id}'


class RecordingNotifier:
    def __init__(self):
        self.dispatched = []

    def dispatch(self, application, resources):
        self.dispatched.append((application, resources))


class SubmissionHandlerTest(TestCase):
    """The handler runs on an explicit config with injected collaborators."""

    def setUp(self):
        self.config = SubmissionConfig(
            admin_recipients=('staff@vnest.edu',),
            from_email='noreply@vnest.edu',
            storage_folder='decks-2026',
        )
        self.store = FakeFileStore()
        self.notifier = RecordingNotifier()
        self.handler = SubmissionHandler(self.config, file_store=self.store, notifier=self.notifier)

    def test_submit_uses_configured_folder(self):
        result = self.handler.submit(valid_payload(), pptx_file(name='Pitch.PPT'))
        public_id, folder = self.store.uploads[0]
        self.assertEqual(folder, 'decks-2026')
        self.assertTrue(public_id.endswith('.ppt'))
        self.assertEqual(result.application.ppt_file_url, f'https://files.example/decks-2026/{public_id}')

    def test_submit_notifies_with_saved_resources(self):
        result = self.handler.submit(valid_payload())
        application, resources = self.notifier.dispatched[0]
        self.assertEqual(application, result.application)
        self.assertEqual([r.resource_name for r in resources], ['Soil sensors', 'Cloud credits'])

    def test_notifier_crash_is_swallowed(self):
        self.notifier.dispatch = mock.Mock(side_effect=RuntimeError('executor gone'))
        with self.assertLogs('applications.services', level='ERROR'):
            status_code, body = self.handler.handle(valid_payload())
        self.assertEqual(status_code, 200)
        self.assertTrue(body['success'])

    def test_store_failure_maps_to_500(self):
        handler = SubmissionHandler(self.config, file_store=FakeFileStore(fail=True), notifier=self.notifier)
        status_code, body = handler.handle(valid_payload(), pptx_file())
        self.assertEqual(status_code, 500)
        self.assertEqual(body['message'], 'Failed to upload PPT file')
        self.assertEqual(self.notifier.dispatched, [])

    def test_configured_drive_domains_replace_defaults(self):
        config = SubmissionConfig(
            admin_recipients=('staff@vnest.edu',),
            from_email='noreply@vnest.edu',
            deck_link_domains=('onedrive.live.com',),
        )
        handler = SubmissionHandler(config, file_store=self.store, notifier=self.notifier)
        status_code, _ = handler.handle(valid_payload())
        self.assertEqual(status_code, 400)
        status_code, _ = handler.handle(valid_payload(pptLink='https://onedrive.live.com/view?id=42'))
        self.assertEqual(status_code, 200)

    @override_settings(
        RUNWAY_ADMIN_EMAILS=['a@vnest.edu', 'b@vnest.edu'],
        RUNWAY_MAX_UPLOAD_MB=5,
        RUNWAY_DECK_EXTENSIONS=['.PPTX'],
        RUNWAY_WAIT_FOR_NOTIFICATIONS=False,
    )
    def test_config_from_settings(self):
        config = SubmissionConfig.from_settings()
        self.assertEqual(config.admin_recipients, ('a@vnest.edu', 'b@vnest.edu'))
        self.assertEqual(config.max_upload_size, 5 * 1024 * 1024)
        self.assertEqual(config.allowed_extensions, ('pptx',))
        self.assertFalse(config.wait_for_notifications)


class ParseResourcesTest(TestCase):

    def test_empty_values_mean_no_resources(self):
        self.assertEqual(parse_resources(None), [])
        self.assertEqual(parse_resources(''), [])

    def test_json_list_is_decoded(self):
        self.assertEqual(parse_resources('[{"cost": 5}]'), [{'cost': 5}])

    def test_garbage_raises(self):
        with self.assertRaises(MalformedSubmission):
            parse_resources('resources please')


class ApplicationSubmissionSerializerTest(TestCase):

    def test_fields_named_like_their_columns_bind(self):
        fields = ApplicationSubmissionSerializer().fields
        self.assertEqual(fields['email'].source, 'email')
        self.assertEqual(fields['innovation'].source, 'innovation')
        self.assertEqual(fields['contactNumber'].source, 'contact_number')

    def test_valid_payload_validates(self):
        data = {**valid_payload(), 'resources': json.loads(valid_payload()['resources'])}
        serializer = ApplicationSubmissionSerializer(data=data)
        self.assertTrue(serializer.is_valid(), serializer.errors)
        self.assertEqual(serializer.validated_data['email'], 'ananya.rao@student.vnest.edu')
        self.assertEqual(serializer.validated_data['resources'][1]['cost'], Decimal('2500.50'))


class ApplicationAdminTest(TestCase):

    def setUp(self):
        self.model_admin = ApplicationAdmin(Application, AdminSite())
        APIClient().post(SUBMIT_URL, valid_payload(), format='multipart')
        self.application = Application.objects.get()

    @mock.patch('cloudinary.uploader.destroy', return_value={'result': 'ok'})
    def test_delete_removes_archived_deck(self, destroy):
        self.application.ppt_file_url = UPLOADED_URL
        self.application.save()
        self.model_admin.delete_model(None, self.application)
        destroy.assert_called_once_with('applications/21BCE1234_1700000000000.pptx', resource_type='raw')
        self.assertFalse(Application.objects.exists())

    @mock.patch('cloudinary.uploader.destroy')
    def test_delete_without_deck_skips_storage(self, destroy):
        self.model_admin.delete_queryset(None, Application.objects.all())
        destroy.assert_not_called()
        self.assertFalse(Application.objects.exists())
