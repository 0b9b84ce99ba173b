# apps/shield/urls.py

from rest_framework.routers import DefaultRouter

from apps.shield.views import HarassmentShieldViewSet

router = DefaultRouter()
router.register(r"shields", HarassmentShieldViewSet, basename="harassment-shields")

urlpatterns = router.urls
