from django.urls import path, include
from rest_framework.routers import DefaultRouter
from .views import ApplicationSubmitView, ApplicationWizardViewSet

router = DefaultRouter()
router.register(r'wizard', ApplicationWizardViewSet, basename='application-wizard')

urlpatterns = [
    path('submit/', ApplicationSubmitView.as_view(), name='application_submit'),
    path('', include(router.urls)),
]
