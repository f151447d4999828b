from decimal import Decimal
from unittest.mock import MagicMock, patch

import httpx
from django.test import SimpleTestCase, override_settings

from hotel_booking.gateway import GatewayError, MobileMoneyGateway

GATEWAY_SETTINGS = {
    "GATEWAY": {
        "BASE_URL": "https://gateway.test/api/",
        "API_KEY": "secret-key",
        "ACCOUNT_NO": "ACC-1",
        "TIMEOUT": 5.0,
    },
}


@override_settings(HOTEL_BOOKING=GATEWAY_SETTINGS)
class MobileMoneyGatewayTestCase(SimpleTestCase):
    """Test MobileMoneyGateway.request_payment() with mocked httpx."""

    def test_settings_are_read(self):
        gateway = MobileMoneyGateway()
        self.assertEqual(gateway.base_url, "https://gateway.test/api")
        self.assertEqual(gateway.account_no, "ACC-1")
        self.assertEqual(gateway.currency, "UGX")
        self.assertEqual(gateway.timeout, 5.0)

    def test_request_payment_posts_payload(self):
        mock_response = MagicMock()
        mock_response.json.return_value = {"success": True}
        mock_client = MagicMock()
        mock_client.post.return_value = mock_response

        with patch("hotel_booking.gateway.httpx.Client") as MockClient:
            MockClient.return_value.__enter__ = MagicMock(return_value=mock_client)
            MockClient.return_value.__exit__ = MagicMock(return_value=False)

            result = MobileMoneyGateway().request_payment(
                msisdn="+256772000111",
                amount=Decimal("150000"),
                reference="TX-1-000000001",
                narration="Booking 12",
            )

        self.assertEqual(result, {"success": True})
        MockClient.assert_called_once_with(timeout=5.0)
        mock_client.post.assert_called_once_with(
            "https://gateway.test/api/mobile-money/request-payment",
            json={
                "account_no": "ACC-1",
                "amount": 150000.0,
                "currency": "UGX",
                "msisdn": "+256772000111",
                "reference": "TX-1-000000001",
                "narration": "Booking 12",
            },
            headers={"Authorization": "Bearer secret-key"},
        )
        mock_response.raise_for_status.assert_called_once()

    def test_non_json_body(self):
        mock_response = MagicMock()
        mock_response.json.side_effect = ValueError("no json")
        mock_client = MagicMock()
        mock_client.post.return_value = mock_response

        with patch("hotel_booking.gateway.httpx.Client") as MockClient:
            MockClient.return_value.__enter__ = MagicMock(return_value=mock_client)
            MockClient.return_value.__exit__ = MagicMock(return_value=False)

            result = MobileMoneyGateway().request_payment("+256772000111", 100, "TX-2", "Booking 2")

        self.assertEqual(result, {})

    def test_connection_error(self):
        mock_client = MagicMock()
        mock_client.post.side_effect = httpx.ConnectError("Connection refused")

        with patch("hotel_booking.gateway.httpx.Client") as MockClient:
            MockClient.return_value.__enter__ = MagicMock(return_value=mock_client)
            MockClient.return_value.__exit__ = MagicMock(return_value=False)

            with self.assertRaises(GatewayError):
                MobileMoneyGateway().request_payment("+256772000111", 100, "TX-3", "Booking 3")

    def test_error_status(self):
        request = httpx.Request("POST", "https://gateway.test/api/mobile-money/request-payment")
        response = httpx.Response(401, request=request)
        mock_client = MagicMock()
        mock_client.post.return_value = response

        with patch("hotel_booking.gateway.httpx.Client") as MockClient:
            MockClient.return_value.__enter__ = MagicMock(return_value=mock_client)
            MockClient.return_value.__exit__ = MagicMock(return_value=False)

            with self.assertRaises(GatewayError):
                MobileMoneyGateway().request_payment("+256772000111", 100, "TX-4", "Booking 4")
