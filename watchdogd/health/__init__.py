"""Health subsystem — issue model, probe engine, probes, scheduler."""

from .engine import ProbeSpec, RetryPolicy, run_health_check
from .issues import Issue, IssueList, Severity, difference
from .probes import Category, Probe, build_probes
from .scheme import HttpSchemeVerifier
from .scheduler import CheckScheduler, IssueState, Snapshot
