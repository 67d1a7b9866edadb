"""Tests for job enqueueing and retry policies."""

from unittest.mock import MagicMock, patch

from helpdesk.config import settings
from helpdesk.services.queue import JobQueue


class TestJobQueue:
    def setup_method(self):
        self.connection = MagicMock()

    @patch("helpdesk.services.queue.Queue")
    def test_webhook_jobs_retry_with_backoff(self, mock_queue):
        JobQueue(self.connection).webhook("w-1", "ticket.created", {"a": 1})

        mock_queue.assert_called_once_with("webhooks", connection=self.connection)
        args, kwargs = mock_queue.return_value.enqueue.call_args
        assert args == ("helpdesk.workers.webhooks.deliver_webhook", "w-1", "ticket.created", {"a": 1})
        assert kwargs["job_timeout"] == settings.webhook_job_timeout
        retry = kwargs["retry"]
        assert retry.max == settings.webhook_max_attempts - 1
        assert retry.intervals == list(settings.webhook_retry_intervals)

    @patch("helpdesk.services.queue.Queue")
    def test_notification_jobs(self, mock_queue):
        JobQueue(self.connection).notification("send_message_notifications", "m-1")

        mock_queue.assert_called_once_with("notifications", connection=self.connection)
        args, kwargs = mock_queue.return_value.enqueue.call_args
        assert args == ("helpdesk.workers.notifications.send_message_notifications", "m-1")
        assert kwargs["retry"].max == settings.notification_max_attempts - 1

    @patch("helpdesk.services.queue.Queue")
    def test_messaging_jobs(self, mock_queue):
        JobQueue(self.connection).messaging("c-1", {"entry": []})

        mock_queue.assert_called_once_with("messaging", connection=self.connection)
        args, _ = mock_queue.return_value.enqueue.call_args
        assert args == ("helpdesk.workers.messaging.process_messaging_webhook", "c-1", {"entry": []})

    @patch("helpdesk.services.queue.Queue")
    def test_email_sync_jobs(self, mock_queue):
        JobQueue(self.connection).email_sync("ch-1")

        mock_queue.assert_called_once_with("email", connection=self.connection)
        args, kwargs = mock_queue.return_value.enqueue.call_args
        assert args == ("helpdesk.workers.email_sync.sync_email_channel", "ch-1")
        assert kwargs["retry"].max == settings.email_sync_max_attempts - 1
        assert kwargs["retry"].intervals == [settings.email_sync_retry_interval]

    @patch("helpdesk.services.queue.Queue")
    def test_single_attempt_has_no_retry(self, mock_queue):
        JobQueue(self.connection).enqueue("notifications", "x.y", max_attempts=1)

        _, kwargs = mock_queue.return_value.enqueue.call_args
        assert kwargs["retry"] is None

    @patch("helpdesk.services.queue.Queue")
    def test_queues_are_reused(self, mock_queue):
        queue = JobQueue(self.connection)
        queue.notification("a", "1")
        queue.notification("b", "2")

        assert mock_queue.call_count == 1
