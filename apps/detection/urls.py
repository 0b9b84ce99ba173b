# apps/detection/urls.py

from rest_framework.routers import DefaultRouter

from apps.detection.views import DetectionSignalViewSet, ModerationFeedbackViewSet, ConfidenceRuleViewSet

router = DefaultRouter()
router.register(r"signals", DetectionSignalViewSet, basename="detection-signals")
router.register(r"feedback", ModerationFeedbackViewSet, basename="moderation-feedback")
router.register(r"confidence-rules", ConfidenceRuleViewSet, basename="confidence-rules")

urlpatterns = router.urls
