import logging
from unittest.mock import MagicMock, patch

from acmedelegate.errors import ConfigurationConflict, InvalidArgument


def test_healthcheck(client):
    with client.application.app_context():
        healthcheck = client.get('/healthcheck')

        assert healthcheck.status_code == 200
        assert healthcheck.data == b'<p>Hello World</p>'

def test_config_template_command(app):
    runner = app.test_cli_runner()
    result = runner.invoke(args=['config-template'])

    assert result.exit_code == 0
    assert 'ACME_DNS_SERVER_URL=' in result.output
    assert 'RENEWAL_WINDOW_DAYS=30' in result.output

def test_init_db_command(app):
    runner = app.test_cli_runner()
    result = runner.invoke(args=['init-db', '--drop-first'])

    assert result.exit_code == 0

def test_manage_requires_requests(app):
    runner = app.test_cli_runner()
    result = runner.invoke(args=['manage'])

    assert result.exit_code == 2
    assert 'at least one certificate request' in result.output

def test_manage_auto_rejects_requests(app):
    runner = app.test_cli_runner()
    result = runner.invoke(args=['manage', '--auto', 'example.com'])

    assert result.exit_code == 2
    assert 'accepts no requests' in result.output

@patch("acmedelegate.orchestrator.run_batch")
def test_manage_prints_report_and_exits_with_result_code(mock_run_batch, app):
    batch = MagicMock()
    batch.report.return_value = "===== REQUIRED DNS CHANGES ====="
    batch.summary.return_value = "0 succeeded, 0 skipped, 1 need DNS changes, 0 failed"
    batch.exit_code = 3
    mock_run_batch.return_value = batch

    runner = app.test_cli_runner()
    result = runner.invoke(args=['manage', 'site@example.com,www.example.com'])

    mock_run_batch.assert_called_once_with(['site@example.com,www.example.com'], auto_mode=False)
    assert result.exit_code == 3
    assert "REQUIRED DNS CHANGES" in result.output
    assert "1 need DNS changes" in result.output

@patch("acmedelegate.orchestrator.run_batch")
def test_manage_auto_success(mock_run_batch, app):
    batch = MagicMock()
    batch.report.return_value = ""
    batch.summary.return_value = "0 succeeded, 2 skipped, 0 need DNS changes, 0 failed"
    batch.exit_code = 0
    mock_run_batch.return_value = batch

    runner = app.test_cli_runner()
    result = runner.invoke(args=['manage', '--auto', '--quiet'])

    mock_run_batch.assert_called_once_with([], auto_mode=True)
    assert result.exit_code == 0
    assert "2 skipped" in result.output

@patch("acmedelegate.orchestrator.run_batch")
def test_manage_invalid_argument_exits_1(mock_run_batch, app):
    mock_run_batch.side_effect = InvalidArgument("Invalid domain name 'bad_domain'")

    runner = app.test_cli_runner()
    result = runner.invoke(args=['manage', 'bad_domain'])

    assert result.exit_code == 1
    assert "Invalid domain name" in result.output

@patch("acmedelegate.orchestrator.run_batch")
def test_manage_configuration_conflict_exits_1(mock_run_batch, app):
    mock_run_batch.side_effect = ConfigurationConflict('site', 'other.com', 'example.com')

    runner = app.test_cli_runner()
    result = runner.invoke(args=['manage', 'site@other.com'])

    assert result.exit_code == 1
    assert "use a new certificate name instead" in result.output

@patch("acmedelegate.orchestrator.run_batch")
def test_manage_quiet_still_reports_failures(mock_run_batch, app):
    batch = MagicMock()
    batch.report.return_value = ""
    batch.summary.return_value = "0 succeeded, 0 skipped, 0 need DNS changes, 1 failed"
    batch.exit_code = 1
    mock_run_batch.return_value = batch

    runner = app.test_cli_runner()
    result = runner.invoke(args=['manage', '--quiet', 'site@example.com'])

    assert result.exit_code == 1
    assert "1 failed" in result.output
    assert logging.getLogger().level == logging.WARNING

@patch("acmedelegate.orchestrator.run_batch")
def test_manage_log_level_overrides_quiet(mock_run_batch, app):
    batch = MagicMock()
    batch.report.return_value = ""
    batch.summary.return_value = "1 succeeded, 0 skipped, 0 need DNS changes, 0 failed"
    batch.exit_code = 0
    mock_run_batch.return_value = batch

    runner = app.test_cli_runner()
    result = runner.invoke(args=['manage', '--quiet', '--log-level', 'DEBUG', 'site@example.com'])

    assert result.exit_code == 0
    assert logging.getLogger().level == logging.DEBUG

def test_manage_rejects_unknown_log_level(app):
    runner = app.test_cli_runner()
    result = runner.invoke(args=['manage', '--log-level', 'verbose', 'site@example.com'])

    assert result.exit_code == 2
