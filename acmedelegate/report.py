# Consolidated report of the CNAME records an operator has to add by hand.

from dataclasses import dataclass

from acmedelegate.cert_requests import challenge_name, is_wildcard

REPORT_HEADER = "===== REQUIRED DNS CHANGES ====="
REPORT_FOOTER = "================================"


@dataclass(frozen=True)
class RemediationItem:
    domain: str
    cname_name: str
    cname_target: str

    @classmethod
    def for_domain(cls, domain, target):
        return cls(domain=domain, cname_name=challenge_name(domain), cname_target=target.rstrip('.'))


def group_remediation(items):
    """Group items by CNAME record name, then by target.

    Returns:
        dict[str, dict[str, list[str]]]: `{record: {target: [domains]}}` in
            first-seen order, each domain listed once per group.
    """
    groups = {}
    for item in items:
        domains = groups.setdefault(item.cname_name, {}).setdefault(item.cname_target, [])
        if item.domain not in domains:
            domains.append(item.domain)
    return groups

def format_cname_report(items):
    """Render remediation items as one block of BIND-style CNAME lines.

    Every `(record, target)` pair is printed once with a comment listing all
    domains that need it; wildcard domains are marked. Returns an empty
    string when there is nothing to do.
    """
    groups = group_remediation(items)
    if not groups:
        return ""

    lines = [REPORT_HEADER, "Add the following CNAME record(s) to your DNS:", ""]
    for record, targets in groups.items():
        for target, domains in targets.items():
            comment = ', '.join(f"{d} (wildcard)" if is_wildcard(d) else d for d in domains)
            lines.append(f"; {comment}")
            lines.append(f"{record}. IN CNAME {target}.")
            lines.append("")
    lines.append(REPORT_FOOTER)
    return '\n'.join(lines)
