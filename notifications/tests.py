import threading
from decimal import Decimal

from django.core import mail
from django.test import SimpleTestCase

from applications.models import Application, ResourceRequest

from .services import ApplicationMailer, NotificationDispatcher


def make_application(**overrides):
    fields = dict(
        full_name='Divya Krishnan',
        register_number='20BEC0777',
        contact_number='9445566778',
        email='divya.k@student.vnest.edu',
        school_department='School of Electronics',
        year_of_study='4th Year',
        startup_name='AquaTrack',
        problem_statement='Hostels waste water through undetected leaks.',
        proposed_solution='Flow sensors on each floor with anomaly alerts.',
        target_users='Hostel wardens and facility teams.',
        innovation='Cheap clamp-on sensors, no plumbing changes.',
        ppt_link='https://drive.google.com/file/d/5ZxCv/view',
        faculty_name='Dr. Sunil Varma',
        faculty_department='School of Mechanical Engineering',
        faculty_email='sunil.varma@vnest.edu',
        faculty_contact='9876501234',
        faculty_employee_id='EMP3141',
        consent=True,
    )
    fields.update(overrides)
    return Application(**fields)


class ApplicationMailerTest(SimpleTestCase):

    def setUp(self):
        self.mailer = ApplicationMailer(
            from_email='noreply@vnest.edu', admin_recipients=['staff@vnest.edu', 'head@vnest.edu']
        )
        self.application = make_application()

    def test_admin_notification_lists_resources_and_total(self):
        resources = [
            ResourceRequest(application=self.application, resource_name='Flow sensors', cost=Decimal('4000.00')),
            ResourceRequest(application=self.application, description='Gateway board', cost=Decimal('1500.50')),
        ]
        self.mailer.send_admin_notification(self.application, resources)

        self.assertEqual(len(mail.outbox), 1)
        message = mail.outbox[0]
        self.assertEqual(message.to, ['staff@vnest.edu', 'head@vnest.edu'])
        self.assertEqual(message.from_email, 'noreply@vnest.edu')
        self.assertEqual(message.subject, 'New Application: AquaTrack - Divya Krishnan')
        html, mimetype = message.alternatives[0]
        self.assertEqual(mimetype, 'text/html')
        self.assertIn('Flow sensors', html)
        self.assertIn('Gateway board', html)
        self.assertIn('5500.50', html)
        self.assertIn(str(self.application.id), html)
        self.assertNotIn('<div', message.body)

    def test_admin_notification_without_resources(self):
        self.mailer.send_admin_notification(self.application, [])
        self.assertIn('No resources required', mail.outbox[0].alternatives[0][0])

    def test_uploaded_deck_is_linked_in_admin_email(self):
        application = make_application(ppt_file_url='https://res.cloudinary.com/vnest/raw/upload/deck.pptx')
        self.mailer.send_admin_notification(application, [])
        self.assertIn('https://res.cloudinary.com/vnest/raw/upload/deck.pptx', mail.outbox[0].alternatives[0][0])

    def test_confirmation_goes_to_applicant(self):
        self.mailer.send_applicant_confirmation(self.application)
        message = mail.outbox[0]
        self.assertEqual(message.to, ['divya.k@student.vnest.edu'])
        self.assertEqual(message.subject, 'Application Received - AquaTrack')
        self.assertIn('Dear <strong>Divya Krishnan</strong>', message.alternatives[0][0])
        self.assertIn('Runway VNEST', message.alternatives[0][0])


class FlakyMailer:
    def __init__(self, fail_admin=False, fail_confirmation=False):
        self.fail_admin = fail_admin
        self.fail_confirmation = fail_confirmation
        self.sent = []
        self.done = threading.Event()

    def _record(self, label, fail):
        self.sent.append(label)
        if len(self.sent) == 2:
            self.done.set()
        if fail:
            raise ConnectionError(f'{label} relay down')

    def send_admin_notification(self, application, resources):
        self._record('admin', self.fail_admin)

    def send_applicant_confirmation(self, application, resources=None):
        self._record('confirmation', self.fail_confirmation)


class NotificationDispatcherTest(SimpleTestCase):

    def setUp(self):
        self.application = make_application()

    def test_both_sends_attempted_and_reported(self):
        mailer = FlakyMailer()
        results = NotificationDispatcher(mailer).dispatch(self.application, [])
        self.assertEqual(results, [True, True])
        self.assertEqual(sorted(mailer.sent), ['admin', 'confirmation'])

    def test_failure_is_logged_not_raised(self):
        mailer = FlakyMailer(fail_admin=True)
        with self.assertLogs('notifications.services', level='ERROR') as logs:
            results = NotificationDispatcher(mailer).dispatch(self.application, [])
        self.assertEqual(results, [False, True])
        self.assertIn('admin notification', logs.output[0])

    def test_fire_and_forget_returns_immediately(self):
        mailer = FlakyMailer(fail_confirmation=True)
        result = NotificationDispatcher(mailer, wait=False).dispatch(self.application, [])
        self.assertIsNone(result)
        self.assertTrue(mailer.done.wait(timeout=5))
