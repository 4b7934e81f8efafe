from django.conf import settings
from django.contrib import admin

from utils.cloudinary_utils import CloudinaryFileStore

from .models import Application, ResourceRequest


def archived_deck_store():
    credentials = settings.CLOUDINARY_STORAGE
    return CloudinaryFileStore(
        cloud_name=credentials['CLOUD_NAME'],
        api_key=credentials['API_KEY'],
        api_secret=credentials['API_SECRET'],
    )


class ResourceRequestInline(admin.TabularInline):
    model = ResourceRequest
    extra = 0
    fields = ['resource_name', 'description', 'cost', 'link', 'created_at']
    readonly_fields = ['created_at']


@admin.register(Application)
class ApplicationAdmin(admin.ModelAdmin):
    list_display = ['startup_name', 'full_name', 'register_number', 'school_department',
                    'faculty_name', 'resource_count', 'total_cost', 'submitted_at']
    list_filter = ['school_department', 'year_of_study', 'submitted_at']
    search_fields = ['startup_name', 'full_name', 'register_number', 'email', 'faculty_name']
    readonly_fields = ['id', 'submitted_at', 'ppt_file_url']
    date_hierarchy = 'submitted_at'
    inlines = [ResourceRequestInline]
    fieldsets = (
        ('Student Details', {
            'fields': ('id', 'full_name', 'register_number', 'contact_number', 'email',
                       'school_department', 'year_of_study')
        }),
        ('Startup Abstract', {
            'fields': ('startup_name', 'problem_statement', 'proposed_solution', 'target_users',
                       'innovation', 'ppt_link', 'ppt_file_url')
        }),
        ('Faculty Mentor', {
            'fields': ('faculty_name', 'faculty_department', 'faculty_email', 'faculty_contact',
                       'faculty_employee_id')
        }),
        ('Submission', {
            'fields': ('consent', 'submitted_at'),
        }),
    )

    def resource_count(self, obj):
        return obj.resources.count()
    resource_count.short_description = 'Resources'

    def delete_model(self, request, obj):
        if obj.ppt_file_url:
            archived_deck_store().delete(obj.ppt_file_url)
        super().delete_model(request, obj)

    def delete_queryset(self, request, queryset):
        store = archived_deck_store()
        for url in queryset.exclude(ppt_file_url__isnull=True).values_list('ppt_file_url', flat=True):
            store.delete(url)
        super().delete_queryset(request, queryset)
