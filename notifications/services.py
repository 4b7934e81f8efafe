import logging
from concurrent.futures import ThreadPoolExecutor

from django.core.mail import EmailMultiAlternatives
from django.template.loader import render_to_string
from django.utils.html import strip_tags

logger = logging.getLogger(__name__)


class ApplicationMailer:
    """Renders and sends the emails that follow an intake submission"""

    admin_template = 'notifications/emails/application_admin.html'
    confirmation_template = 'notifications/emails/application_confirmation.html'

    def __init__(self, from_email, admin_recipients, program_name='Runway VNEST', connection=None):
        self.from_email = from_email
        self.admin_recipients = list(admin_recipients)
        self.program_name = program_name
        self.connection = connection

    def build_context(self, application, resources):
        return {
            'program_name': self.program_name,
            'application': application,
            'resources': resources,
            'total_cost': sum((resource.cost for resource in resources), 0),
        }

    def send_html(self, subject, recipients, template_name, context):
        html_message = render_to_string(template_name, context)
        email = EmailMultiAlternatives(
            subject=subject,
            body=strip_tags(html_message),
            from_email=self.from_email,
            to=recipients,
            connection=self.connection,
        )
        email.attach_alternative(html_message, 'text/html')
        email.send(fail_silently=False)
        logger.info(f"Email sent to {', '.join(recipients)}: {subject}")

    def send_admin_notification(self, application, resources):
        subject = f"New Application: {application.startup_name} - {application.full_name}"
        self.send_html(
            subject, self.admin_recipients, self.admin_template, self.build_context(application, resources)
        )

    def send_applicant_confirmation(self, application, resources=None):
        subject = f"Application Received - {application.startup_name}"
        self.send_html(
            subject, [application.email], self.confirmation_template,
            self.build_context(application, resources or [])
        )


class NotificationDispatcher:
    """
    Sends the staff notification and the applicant confirmation side by side.

    A failed send is logged and never raised; with wait=False the sends are
    left running in the background and dispatch returns at once.
    """

    def __init__(self, mailer, wait=True):
        self.mailer = mailer
        self.wait = wait

    def _safe_send(self, label, send, application, resources):
        try:
            send(application, resources)
            return True
        except Exception as e:
            logger.error(f"Failed to send {label} email for application {application.id}: {str(e)}")
            return False

    def dispatch(self, application, resources):
        jobs = [
            ('admin notification', self.mailer.send_admin_notification),
            ('applicant confirmation', self.mailer.send_applicant_confirmation),
        ]
        executor = ThreadPoolExecutor(max_workers=len(jobs), thread_name_prefix='notify')
        futures = [
            executor.submit(self._safe_send, label, send, application, resources)
            for label, send in jobs
        ]
        executor.shutdown(wait=self.wait)
        if not self.wait:
            return None
        results = [future.result() for future in futures]
        logger.info(f"Notifications for application {application.id}: {sum(results)}/{len(results)} sent")
        return results
