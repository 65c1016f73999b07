# The certificate run is orchestrated from here.

from datetime import datetime
import json
import logging

from flask import (
    abort, Blueprint, current_app, request, Response
)
import requests

from acmedelegate import settings
from acmedelegate.accounts.json_file import JSONAccountStore
from acmedelegate.cert_requests import parse_cert_args
from acmedelegate.certificates import CertificateManager
from acmedelegate.config import ManagerConfig
from acmedelegate.delegation import AcmeDnsClient, DelegationManager
from acmedelegate.dns.resolvers import DNSPythonResolver
from acmedelegate.dns.verify import CnameVerifier
from acmedelegate.errors import ManagerError
from acmedelegate.reconcile import (
    EXIT_OK, EXIT_REMEDIATION, BatchResult, ReconciliationEngine, TaskStatus
)
from acmedelegate.state import CertificateStateInspector

bp = Blueprint('orchestrator', __name__)
logger = logging.getLogger(__name__)

ENV = settings.FLASK_ENV

HTTP_STATUS = {
    EXIT_OK: 200,
    EXIT_REMEDIATION: 409,
}


@bp.route('/single/<path:cert_arg>')
def process_single_certificate(cert_arg=None):
    """Run one manual certificate request.

    The path segment uses the `manage` request grammar, e.g.
    `/single/site@example.com,www.example.com/key_type=ec256`. Manual runs
    always renew a certificate that already exists.

    Returns:
        flask.Response: JSON run summary with status 200 when satisfied, 409
            when DNS changes are required (the report is in the body) or 400
            on failure.

    Raises:
        werkzeug.exceptions.Unauthorized: If the `Flask-Key` header is missing
            or incorrect.
    """
    validate_header_key(request.headers)
    return run_cert_flow([cert_arg], auto_mode=False)

@bp.route("/process")
def process_certificates():
    """Run the unattended batch over the configured `AUTO_CERTS`.

    Certificates that are not close to expiry and already cover all their
    requested domains are skipped.

    Returns:
        flask.Response: See `process_single_certificate`.

    Raises:
        werkzeug.exceptions.Unauthorized: If the `Flask-Key` header is missing
            or incorrect.
    """
    validate_header_key(request.headers)
    return run_cert_flow([], auto_mode=True)

def validate_header_key(request_headers):
    """Validate the shared request header key and enforce access control.

    Checks the `Flask-Key` header against the application's secret key. On
    mismatch or absence, posts a Slack error notification, logs the failure, and
    aborts the request with HTTP 401.

    Args:
    request_headers (Mapping[str, str]): Incoming request headers (e.g.,
        `flask.request.headers`).

    Raises:
    werkzeug.exceptions.Unauthorized: Raised via `flask.abort(401)` when the
        header is missing or incorrect.
    """
    key = request_headers.get('Flask-Key')
    if not key:
        err = "Error: Certificate run refused: Missing key value"
    elif key != current_app.secret_key:
        err = "Error: Certificate run refused: Incorrect key value"
    else:
        return
    slack_error_notify({'name': 'All', 'errors': [err]})
    logger.error(err)
    abort(401)

def run_cert_flow(cert_args, auto_mode=False):
    """Run a batch and convert its result into an HTTP response.

    Errors that stop the whole batch (invalid requests, bad configuration, a
    primary domain conflict) are reported to Slack and answered with 400.
    """
    try:
        result = run_batch(cert_args, auto_mode=auto_mode)
    except ManagerError as e:
        message = f"Certificate run failed on: {e}"
        logger.error(message)
        slack_error_notify({'name': 'All', 'errors': [message]})
        return Response(message, status=400)

    body = {
        'summary': result.summary(),
        'certificates': [o.to_dict() for o in result.outcomes],
        'report': result.report(),
    }
    status = HTTP_STATUS.get(result.exit_code, 400)
    return Response(json.dumps(body), status=status, mimetype='application/json')

def build_engine(config=None):
    """Wire the reconciliation engine to its production collaborators.

    Args:
        config (ManagerConfig | None): Run configuration; read from settings
            when omitted. It is validated before anything is built.

    Returns:
        ReconciliationEngine: Ready to `run`.

    Raises:
        ConfigurationError: When the configuration is incomplete.
        AccountStoreError: When an existing account file cannot be loaded.
    """
    config = (config or ManagerConfig.from_settings()).validate()
    store = JSONAccountStore.for_path(config.accounts_file)
    client = AcmeDnsClient(config.acme_dns_url, timeout=config.http_timeout)
    delegation = DelegationManager(store, client, allow_from=config.allow_from)
    resolver = DNSPythonResolver.from_address(config.dns_resolver, timeout=config.dns_timeout)
    return ReconciliationEngine(
        inspector=CertificateStateInspector(config.certificates_dir),
        delegation=delegation,
        verifier=CnameVerifier(resolver),
        issuer=CertificateManager(config, delegation),
        renewal_threshold_days=config.renewal_threshold_days,
    )

def run_batch(cert_args, auto_mode=False, engine=None, config=None):
    """Parse the requests of one run and reconcile them.

    In auto mode the requests come from the configured `AUTO_CERTS` and
    `cert_args` is ignored. Requests are parsed before anything is built so a
    bad argument never reaches the network.

    Args:
        cert_args (list[str]): Request strings for a manual run.
        auto_mode (bool): Unattended run.
        engine (ReconciliationEngine | None): Injected engine, mainly for tests.
        config (ManagerConfig | None): Run configuration; read from settings
            when omitted.

    Returns:
        BatchResult: Outcomes of every task.

    Raises:
        InvalidArgument: A request could not be parsed.
        ConfigurationError: The configuration is incomplete.
        ConfigurationConflict: A request contradicts a stored certificate.
    """
    config = config or ManagerConfig.from_settings()
    if auto_mode:
        cert_args = config.auto_certs
    cert_requests = parse_cert_args(cert_args)
    if not cert_requests:
        logger.info("No certificates configured, nothing to do")
        return BatchResult()

    engine = engine or build_engine(config)
    result = engine.run(cert_requests, auto_mode=auto_mode)
    notify_result(result)
    return result

def notify_result(result):
    """Post the run summary to Slack, plus one error message per failed certificate."""
    for outcome in result.outcomes:
        if outcome.status == TaskStatus.FAILED:
            slack_error_notify({'name': outcome.name, 'errors': [outcome.error]})
    if result.outcomes:
        slack_notify(result)

def slack_notify(result):
    """Send a Slack notification summarizing a full certificate run.

    Always builds the Slack block. Sends only in production when
    ENABLE_SLACK_NOTIFICATIONS is true and webhook creds are present.
    Otherwise, logs the JSON payload and returns it.

    Args:
        result (BatchResult): Outcomes of the run.

    Returns:
        str: The Slack API response text when posting in production, otherwise
            the JSON payload string that was logged and would be sent.
    """
    today = datetime.today().strftime('%m-%d-%Y')
    section_text = f"Certificate run (acmedelegate {ENV}): {result.summary()}\n"
    section_text += '\n'.join([
        f"{o.name}: {o.status.value.replace('_', ' ').title()} {o.error or ''}".rstrip()
        for o in result.outcomes
    ])
    report = result.report()
    if report:
        section_text += f"\n```{report}```"
    slack_block = {
        "text": f"Certificate run for {today} ({ENV})",
        "blocks": [
            {"type": "section", "text": {"type": "mrkdwn", "text": section_text}}
        ]
    }
    return _post_slack(json.dumps(slack_block))

def slack_error_notify(slack_dict):
    """Send a Slack notification for a single error.

    Args:
    slack_dict (dict): Error context containing at least:
        - 'name' (str): The certificate name, or 'All' for run-wide errors.
        - 'errors' (Any): Error details to include in the message.

    Returns:
    str: The Slack API response text when posting in production; otherwise
        the JSON payload string that was logged and would be sent.
    """
    today = datetime.today().strftime("%m-%d-%Y")
    section_text = f"acmedelegate error at {today} ({ENV})\n"
    section_text += f"{slack_dict['name']}: {slack_dict['errors']}"
    slack_block = {
        "text": f"acmedelegate error(s) at ({ENV})",
        "blocks": [
            {"type": "section", "text": {"type": "mrkdwn", "text": section_text}}
        ],
    }
    return _post_slack(json.dumps(slack_block))

def _post_slack(payload):
    if ENV != "production" or not getattr(settings, "ENABLE_SLACK_NOTIFICATIONS", False):
        logger.info(f"[Slack disabled] Slack Payload: {payload}")
        return payload

    slack_key = getattr(settings, "SLACK_WEBHOOK_KEY", None)
    slack_ws = getattr(settings, "SLACK_WORKSPACE_ID", None)

    if not slack_key or not slack_ws:
        logger.warning(
            "Slack notifications enabled but SLACK_WEBHOOK_KEY/SLACK_WORKSPACE_ID are missing. "
            "Logging payload instead."
        )
        logger.info(f"Slack Payload: {payload}")
        return payload

    slack_webhook = f"https://hooks.slack.com/services/{slack_ws}/{slack_key}"

    try:
        r = requests.post(
            slack_webhook,
            data=payload,
            headers={"Content-Type": "application/json"},
            timeout=5,
        )
        r.raise_for_status()
        return r.text
    except requests.RequestException as e:
        logger.exception("Slack post failed; logging payload instead.")
        logger.info(f"Slack Payload: {payload}")
        return str(e)
