# kyc/urls.py
from django.urls import path
from kyc.presentation.api import (
    SessionCreateAPIView,
    SessionDetailAPIView,
    SelfieAPIView,
    DocumentAPIView,
    ReauthenticateAPIView,
    SessionResetAPIView,
    BiometricsAPIView,
    CloneCheckAPIView,
    FlowAPIView,
)

app_name = "kyc"

urlpatterns = [
    path('kyc/sessions', SessionCreateAPIView.as_view(), name='session-create'),
    path('kyc/sessions/<str:session_id>', SessionDetailAPIView.as_view(), name='session-detail'),
    path('kyc/sessions/<str:session_id>/selfie', SelfieAPIView.as_view(), name='session-selfie'),
    path('kyc/sessions/<str:session_id>/document', DocumentAPIView.as_view(), name='session-document'),
    path('kyc/sessions/<str:session_id>/reauthenticate', ReauthenticateAPIView.as_view(), name='session-reauthenticate'),
    path('kyc/sessions/<str:session_id>/reset', SessionResetAPIView.as_view(), name='session-reset'),
    path('kyc/biometrics', BiometricsAPIView.as_view(), name='biometrics'),
    # Video
    path('kyc/video/clone-check', CloneCheckAPIView.as_view(), name='clone-check'),
    path('kyc/flows/<str:uuid_flow>', FlowAPIView.as_view(), name='flow-detail'),
]
