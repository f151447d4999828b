from django.urls import path
from rest_framework.routers import DefaultRouter
from hotel_booking.views import RoomViewSet, BookingViewSet, PaymentViewSet, UserProfileViewSet, payment_webhook

router = DefaultRouter()
router.register(r'rooms', RoomViewSet)
router.register(r'bookings', BookingViewSet)
router.register(r'payments', PaymentViewSet)
router.register(r'users', UserProfileViewSet)

urlpatterns = [
    path('payments/webhook/', payment_webhook, name='payment-webhook'),
] + router.urls
