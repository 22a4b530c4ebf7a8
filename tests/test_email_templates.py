from unittest.mock import MagicMock, patch

import httpx
import pytest

from src.notifications.email import EmailDeliveryError, EmailSender
from src.notifications.templates import (
    TemplateRenderError,
    generate_subject,
    render_email_template,
)


class TestRenderEmailTemplate:
    def test_price_change_alert(self):
        html = render_email_template(
            "alert_notification",
            {
                "competitor_name": "Burger Barn",
                "message": "1 price updated",
                "details": {
                    "type": "price_change",
                    "updated": [
                        {"item": "Burger", "old_price": "12.99", "new_price": "10.99", "reduced": True}
                    ],
                    "added": [],
                    "removed": [],
                },
            },
        )
        assert "Burger Barn" in html
        assert "10.99" in html
        assert "(reduced)" in html

    def test_values_are_escaped(self):
        html = render_email_template(
            "alert_notification",
            {
                "competitor_name": "<script>alert(1)</script>",
                "message": "x",
                "details": {"type": "menu_change", "added": [], "removed": []},
            },
        )
        assert "<script>" not in html
        assert "&lt;script&gt;" in html

    def test_weekly_summary(self):
        html = render_email_template(
            "weekly_summary",
            {
                "user_name": None,
                "week_start": "Mar 2",
                "week_end": "Mar 8",
                "total_alerts": 3,
                "competitors": [
                    {"name": "Taco Truck", "price_changes": 2, "new_promotions": 1, "menu_changes": 0, "crawls": 14}
                ],
            },
        )
        assert "Hi there" in html
        assert "Taco Truck" in html

    def test_unknown_template(self):
        with pytest.raises(TemplateRenderError):
            render_email_template("nope", {})

    def test_layout_is_not_a_template(self):
        with pytest.raises(TemplateRenderError):
            render_email_template("layout", {})

    def test_missing_data(self):
        with pytest.raises(TemplateRenderError):
            render_email_template("alert_notification", {"competitor_name": "X"})


class TestGenerateSubject:
    @pytest.mark.parametrize(
        "alert_type,expected",
        [
            ("price_change", "💰 Price changes at Taco Truck"),
            ("new_promotion", "🎉 New promotion at Taco Truck"),
            ("menu_change", "🍽️ Menu updates at Taco Truck"),
        ],
    )
    def test_alert_subjects(self, alert_type, expected):
        data = {"alert_type": alert_type, "competitor_name": "Taco Truck"}
        assert generate_subject("alert_notification", data) == expected

    def test_system_subjects(self):
        assert generate_subject("welcome_email", {}) == "Welcome to MarketPulse! 🎉"
        assert generate_subject("trial_reminder", {"days_left": 3}) == "Your trial ends in 3 days"

    def test_fallback(self):
        assert generate_subject("something_else", {}) == "MarketPulse Update"
        assert generate_subject("something_else", {"competitor_name": "X"}) == "Update at X"


class TestEmailSender:
    @patch("src.notifications.email.get_settings")
    def test_dev_mode_logs_instead_of_sending(self, mock_settings):
        mock_settings.return_value = MagicMock(
            resend_api_key="", email_from="a@b.c", is_production=False
        )
        sender = EmailSender()

        with patch("src.notifications.email.httpx.Client") as mock_client_cls:
            assert sender.send("to@example.com", "Hi", "<p>hi</p>") == "dev"
        mock_client_cls.assert_not_called()

    @patch("src.notifications.email.get_settings")
    def test_production_without_key_raises(self, mock_settings):
        mock_settings.return_value = MagicMock(
            resend_api_key="", email_from="a@b.c", is_production=True
        )
        with pytest.raises(EmailDeliveryError):
            EmailSender().send("to@example.com", "Hi", "<p>hi</p>")

    @patch("src.notifications.email.httpx.Client")
    @patch("src.notifications.email.get_settings")
    def test_send_success(self, mock_settings, mock_client_cls):
        mock_settings.return_value = MagicMock(
            resend_api_key="re_123", email_from="alerts@marketpulse.com", is_production=True
        )
        mock_response = MagicMock()
        mock_response.raise_for_status.return_value = None
        mock_response.json.return_value = {"id": "email_1"}
        mock_client = MagicMock()
        mock_client.__enter__ = MagicMock(return_value=mock_client)
        mock_client.__exit__ = MagicMock(return_value=False)
        mock_client.post.return_value = mock_response
        mock_client_cls.return_value = mock_client

        assert EmailSender().send("to@example.com", "Hi", "<p>hi</p>") == "email_1"

        call_kwargs = mock_client.post.call_args
        assert call_kwargs.kwargs["json"]["to"] == ["to@example.com"]
        assert call_kwargs.kwargs["headers"]["Authorization"] == "Bearer re_123"

    @patch("src.notifications.email.httpx.Client")
    @patch("src.notifications.email.get_settings")
    def test_send_http_error(self, mock_settings, mock_client_cls):
        mock_settings.return_value = MagicMock(
            resend_api_key="re_123", email_from="alerts@marketpulse.com", is_production=True
        )
        mock_response = MagicMock()
        mock_response.status_code = 422
        mock_response.text = "invalid from"
        mock_response.raise_for_status.side_effect = httpx.HTTPStatusError(
            "error", request=MagicMock(), response=mock_response
        )
        mock_client = MagicMock()
        mock_client.__enter__ = MagicMock(return_value=mock_client)
        mock_client.__exit__ = MagicMock(return_value=False)
        mock_client.post.return_value = mock_response
        mock_client_cls.return_value = mock_client

        with pytest.raises(EmailDeliveryError, match="422"):
            EmailSender().send("to@example.com", "Hi", "<p>hi</p>")
