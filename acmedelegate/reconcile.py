# Decides, per requested certificate, whether to issue, renew or leave it alone,
# and checks the DNS delegation each domain depends on before any ACME call.

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
import logging
import time
from typing import List, Optional

from acmedelegate.cert_requests import CertRequest, get_base_domain
from acmedelegate.errors import (
    CertificateNotFound, ConfigurationConflict, CorruptState, DNSLookupFailure,
    ManagerError, RegistrationFailure
)
from acmedelegate.report import RemediationItem, format_cname_report
from acmedelegate.state import CertificateRecord

logger = logging.getLogger(__name__)

EXIT_OK = 0
EXIT_FAILURE = 1
EXIT_REMEDIATION = 3


class Action(str, Enum):
    INIT = 'init'
    RENEW = 'renew'
    SKIP = 'skip'


class TaskStatus(str, Enum):
    SUCCEEDED = 'succeeded'
    SKIPPED = 'skipped'
    REMEDIATION_REQUIRED = 'remediation_required'
    FAILED = 'failed'


@dataclass
class ReconciliationTask:
    """One requested certificate and the action chosen for it this run.

    `error` holds a `CorruptState` found while planning; such a task is
    reported as failed without any network call.
    """

    request: CertRequest
    action: Action
    record: Optional[CertificateRecord] = None
    missing: List[str] = field(default_factory=list)
    extra: List[str] = field(default_factory=list)
    error: Optional[Exception] = None


@dataclass
class TaskOutcome:
    task: ReconciliationTask
    status: TaskStatus
    remediation: List[RemediationItem] = field(default_factory=list)
    error: Optional[str] = None
    record: Optional[CertificateRecord] = None

    @property
    def name(self):
        return self.task.request.name

    def to_dict(self):
        return {
            'name': self.name,
            'domains': list(self.task.request.domains),
            'action': self.task.action.value,
            'status': self.status.value,
            'error': self.error,
            'expires': self.record.not_after.isoformat() if self.record else None,
        }


@dataclass
class BatchResult:
    outcomes: List[TaskOutcome] = field(default_factory=list)

    def count(self, status):
        return sum(1 for o in self.outcomes if o.status == status)

    @property
    def remediation(self):
        return [item for o in self.outcomes for item in o.remediation]

    @property
    def exit_code(self):
        """0 when every task is satisfied, 3 when DNS changes are needed, 1 on other failures."""
        if self.remediation:
            return EXIT_REMEDIATION
        if self.count(TaskStatus.FAILED):
            return EXIT_FAILURE
        return EXIT_OK

    def report(self):
        return format_cname_report(self.remediation)

    def summary(self):
        return (
            f"{self.count(TaskStatus.SUCCEEDED)} succeeded, "
            f"{self.count(TaskStatus.SKIPPED)} skipped, "
            f"{self.count(TaskStatus.REMEDIATION_REQUIRED)} need DNS changes, "
            f"{self.count(TaskStatus.FAILED)} failed"
        )


class ReconciliationEngine:

    def __init__(self, inspector, delegation, verifier, issuer, renewal_threshold_days=30, log=None, clock=None):
        """Initialize the engine with its collaborators.

        Args:
            inspector (CertificateStateInspector): Reads stored certificate state.
            delegation (DelegationManager): Finds or registers acme-dns accounts.
            verifier (CnameVerifier): Checks challenge CNAME records.
            issuer: Object with `obtain_or_renew(action, name, domains, key_type)`.
            renewal_threshold_days (int): Unattended runs renew certificates
                expiring within this many days.
            log (logging.Logger | None): Reporting sink; the module logger by default.
            clock (Callable[[], datetime] | None): Source of "now", for tests.
        """
        self.inspector = inspector
        self.delegation = delegation
        self.verifier = verifier
        self.issuer = issuer
        self.renewal_threshold_days = renewal_threshold_days
        self.log = log or logger
        self.clock = clock or (lambda: datetime.now(timezone.utc))

    def plan(self, requests, auto_mode=False):
        """Choose an action for every request without touching the network.

        Args:
            requests (list[CertRequest]): Parsed requests for this run.
            auto_mode (bool): Unattended run; certificates that are not close
                to expiry and already cover every requested domain are skipped.

        Returns:
            list[ReconciliationTask]: One task per request, in request order.

        Raises:
            ConfigurationConflict: A request's primary domain differs from the
                stored certificate of the same name. Nothing has been contacted
                when this is raised.
        """
        return [self._plan_one(req, auto_mode) for req in requests]

    def _plan_one(self, req, auto_mode):
        try:
            record = self.inspector.load(req.name)
        except CertificateNotFound:
            self.log.info(f"No existing certificate {req.name}, it will be obtained")
            return ReconciliationTask(request=req, action=Action.INIT)
        except CorruptState as e:
            self.log.error(f"Stored state of certificate {req.name} is unusable, it will not be renewed: {e}")
            return ReconciliationTask(request=req, action=Action.RENEW, error=e)

        if req.primary_domain != record.primary_domain:
            raise ConfigurationConflict(req.name, req.primary_domain, record.primary_domain)

        missing, extra = record.compare_domains(req.domains)
        task = ReconciliationTask(request=req, action=Action.RENEW, record=record, missing=missing, extra=extra)
        if missing:
            self.log.info(f"Certificate {req.name} does not cover {', '.join(missing)}, renewal is required")
        if extra:
            self.log.info(f"Certificate {req.name} covers {', '.join(extra)} which are no longer requested")

        if auto_mode and not missing and not record.expires_within(self.renewal_threshold_days, self.clock()):
            task.action = Action.SKIP
            self.log.info(f"Certificate {req.name} is valid until {record.not_after:%Y-%m-%d}, skipping")
            if extra:
                self.log.warning(
                    f"Certificate {req.name} will drop {', '.join(extra)} at its next renewal; "
                    f"run manage {req.name} to narrow it now"
                )
        return task

    def verify_delegation(self, request):
        """Check that every domain of a request is delegated to acme-dns.

        Registers accounts that do not exist yet. A domain whose base was
        already verified in this call is not looked up again, and a domain
        whose base is already queued for a CNAME change is queued alongside
        it without a lookup.

        Args:
            request (CertRequest): The request whose domains are checked.

        Returns:
            list[RemediationItem]: CNAME records the operator still has to add.

        Raises:
            RegistrationFailure: An account could not be registered or saved.
        """
        remediation = []
        checked = set()
        queued = {}
        for domain in request.domains:
            base = get_base_domain(domain)
            if base in checked:
                self.log.info(f"Skipping CNAME check for {domain}, {base} is already verified")
                continue
            if base in queued:
                remediation.append(RemediationItem.for_domain(domain, queued[base]))
                continue

            account = self.delegation.find_account(domain)
            if account is None:
                account, _ = self.delegation.ensure_account(domain)
                self.log.warning(f"Registered new acme-dns account for {domain}, its CNAME must be created")
                remediation.append(RemediationItem.for_domain(domain, account.fulldomain))
                queued[base] = account.fulldomain
                continue

            try:
                valid = self.verifier.verify(domain, account.fulldomain)
            except DNSLookupFailure as e:
                self.log.warning(f"Could not verify CNAME for {domain}: {e}")
                valid = False

            if valid:
                checked.add(base)
            else:
                remediation.append(RemediationItem.for_domain(domain, account.fulldomain))
                queued[base] = account.fulldomain
        return remediation

    def process_task(self, task):
        """Verify delegation for a task and, when it is complete, issue or renew.

        Returns:
            TaskOutcome: The result, carrying its own remediation items.
        """
        name = task.request.name
        if task.error is not None:
            return TaskOutcome(task=task, status=TaskStatus.FAILED, error=str(task.error))

        try:
            remediation = self.verify_delegation(task.request)
        except RegistrationFailure as e:
            self.log.error(f"acme-dns registration failed for certificate {name}: {e}")
            return TaskOutcome(task=task, status=TaskStatus.FAILED, error=str(e))

        if remediation:
            self.log.warning(f"Certificate {name} needs DNS changes before it can be {'renewed' if task.action == Action.RENEW else 'obtained'}")
            return TaskOutcome(task=task, status=TaskStatus.REMEDIATION_REQUIRED, remediation=remediation)

        try:
            record = self.issuer.obtain_or_renew(
                task.action.value, name, list(task.request.domains), task.request.key_type
            )
        except ManagerError as e:
            self.log.error(f"Certificate {name} {task.action.value} failed: {e}")
            return TaskOutcome(task=task, status=TaskStatus.FAILED, error=str(e))

        self.log.info(f"Certificate {name} {task.action.value} succeeded")
        return TaskOutcome(task=task, status=TaskStatus.SUCCEEDED, record=record)

    def run(self, requests, auto_mode=False):
        """Plan and process a batch of requests, one task at a time.

        A failing task never stops the batch. The summary and, when needed,
        the consolidated CNAME report are logged at the end.

        Raises:
            ConfigurationConflict: From planning, before any task runs.
        """
        tasks = self.plan(requests, auto_mode)
        result = BatchResult()
        if all(t.action == Action.SKIP for t in tasks):
            self.log.info("No certificates need to be obtained or renewed")

        for task in tasks:
            if task.action == Action.SKIP:
                result.outcomes.append(TaskOutcome(task=task, status=TaskStatus.SKIPPED))
                continue
            start_time = time.time()
            try:
                outcome = self.process_task(task)
            except Exception as e:
                self.log.exception(f"Unexpected error processing certificate {task.request.name}: {e}")
                outcome = TaskOutcome(task=task, status=TaskStatus.FAILED, error=str(e))
            duration = time.time() - start_time
            self.log.info(f"Finished certificate {task.request.name}: {outcome.status.value} (took {duration:.2f}s)")
            result.outcomes.append(outcome)

        if result.exit_code == EXIT_OK:
            self.log.info(f"Run complete: {result.summary()}")
        else:
            self.log.warning(f"Run complete: {result.summary()}")
        report = result.report()
        if report:
            self.log.warning(f"Manual DNS changes are required:\n{report}")
        return result
