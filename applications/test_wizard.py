import json
from unittest import mock

import requests
from django.core import mail
from django.core.files.uploadedfile import SimpleUploadedFile
from django.test import SimpleTestCase, TestCase, override_settings
from rest_framework.test import APIClient

from .exceptions import TransportError, WizardError
from .models import Application
from .wizard import (
    CONSENT_STEP, ERROR, EDITING, STEP_FIELDS, SUCCESS, ApplicationWizard, HttpTransport,
)

WIZARD_URL = '/api/v1/applications/wizard/'

STUDENT = {
    'fullName': 'Rahul Menon',
    'registerNumber': '22MIS0042',
    'contactNumber': '9988776655',
    'email': 'rahul.menon@student.vnest.edu',
    'schoolDepartment': 'School of Information Technology',
    'yearOfStudy': '2nd Year',
}
OVERVIEW = {
    'startupName': 'QueueLess',
    'problemStatement': 'Campus canteens have 20 minute queues at lunch.',
    'proposedSolution': 'Pre-order and pickup slots through a web app.',
}
MARKET = {
    'targetUsers': 'Students and staff eating on campus.',
    'innovation': 'Slot based batching tuned to kitchen throughput.',
    'pptLink': 'https://drive.google.com/file/d/9QwErTy/view',
}
MENTOR = {
    'facultyName': 'Prof. Arjun Nair',
    'facultyDepartment': 'School of Business',
    'facultyEmail': 'arjun.nair@vnest.edu',
    'facultyContact': '9000011111',
    'facultyEmployeeId': 'EMP0099',
}


def filled_wizard(step=CONSENT_STEP):
    wizard = ApplicationWizard(step=step)
    wizard.update(**STUDENT, **OVERVIEW, **MARKET, **MENTOR)
    wizard.add_resource(resourceName='Tablets', description='Order kiosks', cost=12000)
    wizard.update(consent=True)
    return wizard


class RecordingTransport:
    def __init__(self, status_code=200, body=None, error=None):
        self.status_code = status_code
        self.body = body if body is not None else {
            'success': True,
            'message': 'Application submitted successfully',
            'data': {'applicationId': 'abc', 'submittedAt': '2026-10-18T10:00:00+00:00'},
        }
        self.error = error
        self.calls = []

    def __call__(self, fields, files):
        self.calls.append((fields, files))
        if self.error:
            raise self.error
        return self.status_code, self.body


class ApplicationWizardNavigationTest(SimpleTestCase):

    def test_starts_on_introduction(self):
        wizard = ApplicationWizard()
        self.assertEqual(wizard.step, 1)
        self.assertEqual(wizard.step_title, 'Get Started')
        self.assertEqual(wizard.status, EDITING)

    def test_introduction_always_advances(self):
        wizard = ApplicationWizard()
        self.assertTrue(wizard.advance())
        self.assertEqual(wizard.step, 2)

    def test_advance_blocked_by_empty_required_field(self):
        wizard = ApplicationWizard(step=2)
        wizard.update(**{**STUDENT, 'yearOfStudy': ''})
        self.assertFalse(wizard.advance())
        self.assertEqual(wizard.step, 2)
        self.assertEqual(list(wizard.errors), ['yearOfStudy'])

    def test_every_required_field_blocks_its_step(self):
        for step, values in [(2, STUDENT), (3, OVERVIEW), (4, MARKET), (5, MENTOR)]:
            for field in values:
                wizard = filled_wizard(step=step)
                wizard.update(**{field: ''})
                self.assertFalse(wizard.advance(), field)
                self.assertIn(field, wizard.errors)

    def test_step_only_reports_its_own_fields(self):
        wizard = ApplicationWizard(step=2)
        wizard.update(**STUDENT)
        self.assertEqual(wizard.validate_step(), {})
        self.assertIn('startupName', wizard.validate_step(3))

    def test_long_problem_statement_blocks_overview(self):
        wizard = filled_wizard(step=3)
        wizard.update(problemStatement='x' * 301)
        self.assertFalse(wizard.advance())
        self.assertIn('problemStatement', wizard.errors)

    def test_non_drive_link_blocks_market_step(self):
        wizard = filled_wizard(step=4)
        wizard.update(pptLink='https://example.com/deck.pptx')
        self.assertFalse(wizard.advance())
        self.assertIn('pptLink', wizard.errors)

    def test_negative_cost_blocks_resources_step(self):
        wizard = filled_wizard(step=6)
        wizard.update_resource(0, cost=-1)
        self.assertFalse(wizard.advance())
        self.assertIn('resources', wizard.errors)

    def test_walks_forward_one_step_at_a_time(self):
        wizard = filled_wizard(step=1)
        for expected in range(2, CONSENT_STEP + 1):
            self.assertTrue(wizard.advance())
            self.assertEqual(wizard.step, expected)
        self.assertFalse(wizard.advance())
        self.assertEqual(wizard.step, CONSENT_STEP)

    def test_retreat_skips_validation(self):
        wizard = ApplicationWizard(step=4)
        self.assertTrue(wizard.retreat())
        self.assertEqual(wizard.step, 3)

    def test_retreat_from_first_step_stays(self):
        wizard = ApplicationWizard()
        self.assertFalse(wizard.retreat())
        self.assertEqual(wizard.step, 1)

    def test_resource_table_editing_and_total(self):
        wizard = ApplicationWizard(step=6)
        wizard.add_resource(resourceName='Laptop', cost=55000)
        index = wizard.add_resource(resourceName='Domain', cost='899.50')
        wizard.add_resource(resourceName='Stickers')
        self.assertEqual(wizard.total_cost, 55899.5)
        wizard.remove_resource(index)
        self.assertEqual([r['resourceName'] for r in wizard.resources], ['Laptop', 'Stickers'])
        with self.assertRaises(WizardError):
            wizard.remove_resource(5)

    def test_update_rejects_resources_that_are_not_objects(self):
        wizard = ApplicationWizard(step=6)
        with self.assertRaises(WizardError):
            wizard.update(resources=[1])
        with self.assertRaises(WizardError):
            wizard.update(resources='[{"cost": 1}]')
        self.assertEqual(wizard.resources, [])

    def test_consent_coerced_from_strings(self):
        wizard = ApplicationWizard()
        wizard.update(consent='true')
        self.assertTrue(wizard.consent)
        wizard.update(consent='false')
        self.assertFalse(wizard.consent)

    def test_attach_file_rejects_wrong_type(self):
        wizard = ApplicationWizard(step=4)
        problem = wizard.attach_file(SimpleUploadedFile('deck.pdf', b'%PDF'))
        self.assertEqual(problem, 'Only .ppt, .pptx files are accepted')
        self.assertIsNone(wizard.ppt_file)


class ApplicationWizardSubmitTest(SimpleTestCase):

    def test_payload_is_multipart_ready(self):
        wizard = filled_wizard()
        deck = SimpleUploadedFile('deck.pptx', b'slides')
        self.assertIsNone(wizard.attach_file(deck))
        fields, files = wizard.build_payload()
        self.assertEqual(fields['consent'], 'true')
        self.assertEqual(json.loads(fields['resources'])[0]['resourceName'], 'Tablets')
        self.assertEqual(fields['fullName'], 'Rahul Menon')
        self.assertTrue(all(isinstance(value, str) for value in fields.values()))
        self.assertIs(files['pptFile'], deck)

    def test_submit_only_from_consent_step(self):
        wizard = filled_wizard(step=5)
        with self.assertRaises(WizardError):
            wizard.submit(RecordingTransport())

    def test_submit_without_consent_never_calls_transport(self):
        wizard = filled_wizard()
        wizard.update(consent=False)
        transport = RecordingTransport()
        self.assertFalse(wizard.submit(transport))
        self.assertIn('consent', wizard.errors)
        self.assertEqual(transport.calls, [])
        self.assertEqual(wizard.status, EDITING)

    def test_successful_submit_reaches_success(self):
        wizard = filled_wizard()
        self.assertTrue(wizard.submit(RecordingTransport()))
        self.assertEqual(wizard.status, SUCCESS)
        self.assertEqual(wizard.result['applicationId'], 'abc')
        with self.assertRaises(WizardError):
            wizard.retreat()

    def test_server_failure_reaches_error_with_message(self):
        wizard = filled_wizard()
        transport = RecordingTransport(500, {'success': False, 'message': 'Failed to upload PPT file'})
        self.assertFalse(wizard.submit(transport))
        self.assertEqual(wizard.status, ERROR)
        self.assertEqual(wizard.error_message, 'Failed to upload PPT file')

    def test_transport_failure_uses_fallback_message(self):
        wizard = filled_wizard()
        self.assertFalse(wizard.submit(RecordingTransport(error=TransportError('connection refused'))))
        self.assertEqual(wizard.status, ERROR)
        self.assertEqual(wizard.error_message, 'Submission failed. Please try again.')

    def test_retry_returns_to_consent_keeping_input(self):
        wizard = filled_wizard()
        wizard.submit(RecordingTransport(500, {'success': False, 'message': 'down'}))
        wizard.retry()
        self.assertEqual(wizard.status, EDITING)
        self.assertEqual(wizard.step, CONSENT_STEP)
        self.assertEqual(wizard.data['startupName'], 'QueueLess')
        self.assertEqual(len(wizard.resources), 1)
        self.assertTrue(wizard.submit(RecordingTransport()))

    def test_retry_only_after_error(self):
        with self.assertRaises(WizardError):
            filled_wizard().retry()

    def test_state_round_trips_through_dict(self):
        wizard = filled_wizard(step=6)
        restored = ApplicationWizard.from_dict(json.loads(json.dumps(wizard.to_dict())))
        self.assertEqual(restored.to_dict(), wizard.to_dict())

    def test_step_fields_cover_every_submitted_field(self):
        owned = {name for fields in STEP_FIELDS.values() for name in fields}
        fields, _ = filled_wizard().build_payload()
        self.assertEqual(owned, set(fields))


class HttpTransportTest(SimpleTestCase):

    def test_posts_multipart_and_returns_json(self):
        session = mock.Mock()
        session.post.return_value.status_code = 200
        session.post.return_value.json.return_value = {'success': True}
        transport = HttpTransport('https://intake.vnest.edu/api/v1/applications/submit/', session=session)

        deck = SimpleUploadedFile('deck.pptx', b'slides', content_type='application/vnd.ms-powerpoint')
        status_code, body = transport({'fullName': 'Rahul Menon'}, {'pptFile': deck})

        self.assertEqual((status_code, body), (200, {'success': True}))
        sent = session.post.call_args.kwargs['files']
        self.assertEqual(sent['fullName'], (None, 'Rahul Menon'))
        self.assertEqual(sent['pptFile'][0], 'deck.pptx')

    def test_network_error_becomes_transport_error(self):
        session = mock.Mock()
        session.post.side_effect = requests.ConnectionError('no route to host')
        transport = HttpTransport('https://intake.vnest.edu/api/v1/applications/submit/', session=session)
        with self.assertRaises(TransportError):
            transport({}, {})

    def test_non_json_body_is_empty(self):
        session = mock.Mock()
        session.post.return_value.status_code = 502
        session.post.return_value.json.side_effect = ValueError('not json')
        transport = HttpTransport('https://intake.vnest.edu/api/v1/applications/submit/', session=session)
        self.assertEqual(transport({}, {}), (502, {}))


@override_settings(RUNWAY_ADMIN_EMAILS=['staff@vnest.edu'])
class ApplicationWizardAPITest(TestCase):
    """Drive the session backed wizard through its JSON endpoints."""

    def setUp(self):
        self.client = APIClient()

    def post(self, action, data=None, **kwargs):
        kwargs.setdefault('format', 'json')
        return self.client.post(f'{WIZARD_URL}{action}/', data or {}, **kwargs)

    def walk_to_consent(self):
        self.post('advance')
        for values in (STUDENT, OVERVIEW, MARKET, MENTOR):
            resp = self.post('advance', values)
            self.assertEqual(resp.status_code, 200, resp.json())
        resp = self.post('advance', {'resources': [{'resourceName': 'Tablets', 'cost': 12000}]})
        self.assertEqual(resp.json()['step'], CONSENT_STEP)

    def test_initial_state(self):
        resp = self.client.get(WIZARD_URL)
        self.assertEqual(resp.status_code, 200)
        body = resp.json()
        self.assertEqual(body['step'], 1)
        self.assertEqual(body['stepTitle'], 'Get Started')
        self.assertEqual(len(body['steps']), 7)

    def test_invalid_step_returns_errors_and_stays(self):
        self.post('advance')
        resp = self.post('advance', {**STUDENT, 'email': 'not-an-email'})
        self.assertEqual(resp.status_code, 400)
        body = resp.json()
        self.assertEqual(body['step'], 2)
        self.assertIn('email', body['errors'])
        self.assertFalse(body['moved'])

    def test_state_survives_between_requests(self):
        self.post('update', {'fullName': 'Rahul Menon'})
        self.assertEqual(self.client.get(WIZARD_URL).json()['data']['fullName'], 'Rahul Menon')

    def test_resources_sent_as_json_string_are_decoded(self):
        resp = self.post('update', {'resources': json.dumps([{'resourceName': 'Tablets', 'cost': 1}])})
        self.assertEqual(resp.status_code, 200)
        self.assertEqual(resp.json()['resources'], [{'resourceName': 'Tablets', 'cost': 1}])

    def test_malformed_resources_are_rejected_with_400(self):
        for resources in ([1], 'not json', {'resourceName': 'Tablets'}):
            resp = self.post('update', {'resources': resources})
            self.assertEqual(resp.status_code, 400, resources)
            self.assertIn('error', resp.json())
        self.assertEqual(self.client.get(WIZARD_URL).json()['resources'], [])

    def test_retreat_goes_back_without_validation(self):
        self.post('advance')
        resp = self.post('retreat')
        self.assertEqual(resp.json()['step'], 1)

    def test_full_walkthrough_submits_application(self):
        self.walk_to_consent()
        resp = self.post('submit', {'consent': True})
        self.assertEqual(resp.status_code, 200)
        body = resp.json()
        self.assertEqual(body['status'], SUCCESS)
        application = Application.objects.get(id=body['result']['applicationId'])
        self.assertEqual(application.startup_name, 'QueueLess')
        self.assertEqual(application.resources.get().resource_name, 'Tablets')
        self.assertEqual(len(mail.outbox), 2)

    def test_submit_without_consent_is_rejected(self):
        self.walk_to_consent()
        resp = self.post('submit', {'consent': False})
        self.assertEqual(resp.status_code, 400)
        self.assertIn('consent', resp.json()['errors'])
        self.assertEqual(Application.objects.count(), 0)

    def test_failed_submit_then_retry(self):
        self.walk_to_consent()
        with mock.patch('cloudinary.uploader.upload', side_effect=Exception('Service unavailable')):
            resp = self.post(
                'submit',
                {'consent': 'true', 'pptFile': SimpleUploadedFile('deck.pptx', b'slides')},
                format='multipart',
            )
        body = resp.json()
        self.assertEqual(body['status'], ERROR)
        self.assertEqual(body['errorMessage'], 'Failed to upload PPT file')
        self.assertEqual(Application.objects.count(), 0)

        resp = self.post('retry')
        self.assertEqual(resp.json()['status'], EDITING)
        self.assertEqual(resp.json()['step'], CONSENT_STEP)

        resp = self.post('submit', {'consent': True})
        self.assertEqual(resp.json()['status'], SUCCESS)
        self.assertEqual(Application.objects.count(), 1)

    def test_navigation_after_success_is_refused(self):
        self.walk_to_consent()
        self.post('submit', {'consent': True})
        resp = self.post('retreat')
        self.assertEqual(resp.status_code, 400)
        self.assertIn('error', resp.json())

    def test_reset_starts_over(self):
        self.post('advance')
        resp = self.post('reset')
        self.assertEqual(resp.json()['step'], 1)
        self.assertEqual(resp.json()['data']['fullName'], '')
