# apps/risk/urls.py

from rest_framework.routers import DefaultRouter

from apps.risk.views import RiskProfileViewSet, RiskAssessmentViewSet

router = DefaultRouter()
router.register(r"profiles", RiskProfileViewSet, basename="risk-profiles")
router.register(r"assess", RiskAssessmentViewSet, basename="risk-assess")

urlpatterns = router.urls
