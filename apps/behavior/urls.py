# apps/behavior/urls.py

from rest_framework.routers import DefaultRouter

from apps.behavior.views import BehaviorEventViewSet

router = DefaultRouter()
router.register(r"events", BehaviorEventViewSet, basename="behavior-events")

urlpatterns = router.urls
