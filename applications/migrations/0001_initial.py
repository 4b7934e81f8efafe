import django.core.validators
import django.db.models.deletion
import django.utils.timezone
import uuid
from django.db import migrations, models


class Migration(migrations.Migration):

    initial = True

    dependencies = [
    ]

    operations = [
        migrations.CreateModel(
            name='Application',
            fields=[
                ('id', models.UUIDField(default=uuid.uuid4, editable=False, primary_key=True, serialize=False)),
                ('full_name', models.CharField(max_length=200)),
                ('register_number', models.CharField(max_length=50)),
                ('contact_number', models.CharField(max_length=50)),
                ('email', models.EmailField(max_length=254)),
                ('school_department', models.CharField(max_length=200)),
                ('year_of_study', models.CharField(max_length=50)),
                ('startup_name', models.CharField(max_length=200)),
                ('problem_statement', models.TextField(max_length=300)),
                ('proposed_solution', models.TextField(max_length=300)),
                ('target_users', models.TextField(max_length=300)),
                ('innovation', models.TextField(max_length=300)),
                ('ppt_link', models.URLField(max_length=500, verbose_name='PPT drive link')),
                ('ppt_file_url', models.URLField(blank=True, max_length=500, null=True, verbose_name='Uploaded PPT file')),
                ('faculty_name', models.CharField(max_length=200)),
                ('faculty_department', models.CharField(max_length=200)),
                ('faculty_email', models.EmailField(max_length=254)),
                ('faculty_contact', models.CharField(max_length=50)),
                ('faculty_employee_id', models.CharField(max_length=50)),
                ('consent', models.BooleanField(default=False)),
                ('submitted_at', models.DateTimeField(default=django.utils.timezone.now)),
            ],
            options={
                'ordering': ['-submitted_at'],
                'indexes': [
                    models.Index(fields=['-submitted_at'], name='app_submitted_idx'),
                    models.Index(fields=['register_number'], name='app_register_idx'),
                ],
            },
        ),
        migrations.CreateModel(
            name='ResourceRequest',
            fields=[
                ('id', models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name='ID')),
                ('resource_name', models.CharField(blank=True, max_length=200, null=True)),
                ('description', models.TextField(blank=True, null=True)),
                ('cost', models.DecimalField(decimal_places=2, default=0, max_digits=18, validators=[django.core.validators.MinValueValidator(0)])),
                ('link', models.CharField(blank=True, max_length=2048, null=True)),
                ('created_at', models.DateTimeField(auto_now_add=True)),
                ('application', models.ForeignKey(on_delete=django.db.models.deletion.CASCADE, related_name='resources', to='applications.application')),
            ],
            options={
                'ordering': ['created_at', 'id'],
                'constraints': [
                    models.CheckConstraint(condition=models.Q(('cost__gte', 0)), name='resource_cost_non_negative'),
                ],
            },
        ),
    ]
