# apps/consent/urls.py

from rest_framework.routers import DefaultRouter

from apps.consent.views import ConsentRecordViewSet

router = DefaultRouter()
router.register(r"records", ConsentRecordViewSet, basename="consent-records")

urlpatterns = router.urls
