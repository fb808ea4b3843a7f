"""Tests for email/mailer functionality."""
import smtplib
from unittest.mock import MagicMock, patch

from dugout import mailer


def _setup_smtp_config(app):
    app.config["EMAIL_ENABLED"] = True
    app.config["SMTP_HOST"] = "smtp.example.com"
    app.config["SMTP_PORT"] = 587
    app.config["SMTP_USE_TLS"] = True
    app.config["SMTP_USE_SSL"] = False
    app.config["SMTP_USERNAME"] = "user@example.com"
    app.config["SMTP_PASSWORD"] = "secret"
    app.config["EMAIL_FROM_ADDRESS"] = "noreply@example.com"


class TestMailerConfiguration:
    """Test mailer configuration detection."""

    def test_is_configured_when_all_settings_present(self, app):
        with app.app_context():
            _setup_smtp_config(app)
            assert mailer.is_configured() is True

    def test_disabled_flag_wins(self, app):
        """Should return False when EMAIL_ENABLED is off even if SMTP is set."""
        with app.app_context():
            _setup_smtp_config(app)
            app.config["EMAIL_ENABLED"] = False
            assert mailer.is_configured() is False

    def test_missing_password(self, app):
        with app.app_context():
            _setup_smtp_config(app)
            app.config["SMTP_PASSWORD"] = None
            assert mailer.is_configured() is False


class TestSendEmail:
    """Test email sending functionality."""

    @patch("dugout.mailer.smtplib.SMTP")
    def test_send_with_starttls(self, mock_smtp, app):
        with app.app_context():
            _setup_smtp_config(app)
            smtp = MagicMock()
            mock_smtp.return_value.__enter__.return_value = smtp

            assert mailer.send_email("coach@example.com", "Hi", text="body") is True

            mock_smtp.assert_called_once_with("smtp.example.com", 587)
            smtp.starttls.assert_called_once()
            smtp.login.assert_called_once_with("user@example.com", "secret")
            message = smtp.send_message.call_args.args[0]
            assert message["To"] == "coach@example.com"
            assert message["From"] == "noreply@example.com"

    @patch("dugout.mailer.smtplib.SMTP_SSL")
    def test_send_with_ssl(self, mock_smtp_ssl, app):
        with app.app_context():
            _setup_smtp_config(app)
            app.config["SMTP_USE_SSL"] = True
            smtp = MagicMock()
            mock_smtp_ssl.return_value.__enter__.return_value = smtp
            assert mailer.send_email("coach@example.com", "Hi", html="<p>x</p>") is True
            smtp.starttls.assert_not_called()

    @patch("dugout.mailer.smtplib.SMTP")
    def test_smtp_failure_returns_false(self, mock_smtp, app):
        """Should swallow SMTP errors and report failure."""
        with app.app_context():
            _setup_smtp_config(app)
            mock_smtp.return_value.__enter__.return_value.login.side_effect = (
                smtplib.SMTPAuthenticationError(535, b"bad credentials")
            )
            assert mailer.send_email("coach@example.com", "Hi", text="x") is False

    def test_unconfigured_returns_false(self, app):
        with app.app_context():
            assert mailer.send_email("coach@example.com", "Hi", text="x") is False


class TestTemplates:
    """Test the invitation and revocation messages."""

    def test_invitation_email_escapes_names(self, app):
        with app.app_context():
            app.config["APP_LINK_BASE"] = "https://app.example.com"
            with patch.object(mailer, "send_email", return_value=True) as send:
                mailer.send_invitation_email(
                    "coach@example.com",
                    folder_name="Spring <Season>",
                    owner_name="Alex",
                    invitation_id="inv-1",
                    expires_at="2026-11-18",
                )
            html = send.call_args.kwargs["html"]
            assert "Spring &lt;Season&gt;" in html
            assert "https://app.example.com/invitation/inv-1" in html
            assert "2026-11-18" in send.call_args.kwargs["text"]

    def test_revocation_email(self, app):
        with app.app_context():
            with patch.object(mailer, "send_email", return_value=True) as send:
                assert mailer.send_access_revoked_email(
                    "coach@example.com", folder_name="Spring", owner_name="Alex"
                )
            assert send.call_args.args[1] == 'Your access to "Spring" was removed'
