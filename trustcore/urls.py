from django.contrib import admin
from django.urls import path, include

from rest_framework_simplejwt.views import TokenObtainPairView, TokenRefreshView


urlpatterns = [
    path('admin/', admin.site.urls),

    path('api/token/', TokenObtainPairView.as_view(), name='token_obtain_pair'),
    path('api/token/refresh/', TokenRefreshView.as_view(), name='token_refresh'),

    path('api/', include([
        path('consent/', include('apps.consent.urls')),
        path('detection/', include('apps.detection.urls')),
        path('shield/', include('apps.shield.urls')),
        path('behavior/', include('apps.behavior.urls')),
        path('risk/', include('apps.risk.urls')),
    ])),
]
