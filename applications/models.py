from decimal import Decimal

from django.core.validators import MinValueValidator
from django.db import models
from django.db.models import Sum
from django.utils import timezone
import uuid


class Application(models.Model):
    """One applicant's submitted pre-incubation record"""

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)

    # Student details
    full_name = models.CharField(max_length=200)
    register_number = models.CharField(max_length=50)
    contact_number = models.CharField(max_length=50)
    email = models.EmailField()
    school_department = models.CharField(max_length=200)
    year_of_study = models.CharField(max_length=50)

    # Startup / idea abstract
    startup_name = models.CharField(max_length=200)
    problem_statement = models.TextField(max_length=300)
    proposed_solution = models.TextField(max_length=300)
    target_users = models.TextField(max_length=300)
    innovation = models.TextField(max_length=300)
    ppt_link = models.URLField("PPT drive link", max_length=500)
    ppt_file_url = models.URLField("Uploaded PPT file", max_length=500, null=True, blank=True)

    # Faculty mentor
    faculty_name = models.CharField(max_length=200)
    faculty_department = models.CharField(max_length=200)
    faculty_email = models.EmailField()
    faculty_contact = models.CharField(max_length=50)
    faculty_employee_id = models.CharField(max_length=50)

    consent = models.BooleanField(default=False)
    submitted_at = models.DateTimeField(default=timezone.now)

    class Meta:
        ordering = ['-submitted_at']
        indexes = [
            models.Index(fields=['-submitted_at'], name='app_submitted_idx'),
            models.Index(fields=['register_number'], name='app_register_idx'),
        ]

    def __str__(self):
        return f"{self.startup_name} - {self.full_name}"

    @property
    def total_cost(self):
        total = self.resources.aggregate(total=Sum('cost'))['total']
        return total or Decimal('0')


class ResourceRequest(models.Model):
    application = models.ForeignKey(Application, related_name='resources', on_delete=models.CASCADE)
    resource_name = models.CharField(max_length=200, null=True, blank=True)
    description = models.TextField(null=True, blank=True)
    cost = models.DecimalField(max_digits=18, decimal_places=2, default=0, validators=[MinValueValidator(0)])
    link = models.CharField(max_length=2048, null=True, blank=True)
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        ordering = ['created_at', 'id']
        constraints = [
            models.CheckConstraint(condition=models.Q(cost__gte=0), name='resource_cost_non_negative'),
        ]

    def __str__(self):
        return self.resource_name or f"Resource for {self.application.startup_name}"
