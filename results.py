"""Mock load-test metrics and the insight summary derived from them."""
import math
import random
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

GOOD = "good"
WARNING = "warning"
ERROR = "error"

PASSED_HEADLINE = "Test Passed"
WARNINGS_HEADLINE = "Test Completed with Warnings"


def simulate_results(virtual_users: int, duration: int, rng: Optional[random.Random] = None) -> Dict[str, Any]:
    """Random metrics in the shape a k6 summary would be reduced to.

    Request totals scale with the load profile; everything else is noise.
    """
    rng = rng or random.Random()
    error_rate = rng.random() * 2
    total = virtual_users * duration * 50
    successful = math.floor(total * (1 - error_rate / 100))

    return {
        "avgResponseTime": rng.randint(150, 449),
        "p95ResponseTime": rng.randint(300, 499),
        "p99ResponseTime": rng.randint(450, 649),
        "errorRate": error_rate,
        "requestsPerSecond": rng.randint(40, 69),
        "totalRequests": total,
        "successfulRequests": successful,
        "failedRequests": total - successful,
    }


def grade_response_time(avg_ms: float) -> str:
    if avg_ms < 200:
        return GOOD
    if avg_ms < 500:
        return WARNING
    return ERROR


def grade_error_rate(rate: float) -> str:
    if rate < 1:
        return GOOD
    if rate < 5:
        return WARNING
    return ERROR


@dataclass
class ThresholdCheck:
    name: str
    limit: float
    observed: float

    @property
    def passed(self) -> bool:
        return self.observed < self.limit


@dataclass
class Insight:
    response_time: str
    error_rate: str
    success_rate: Optional[float]
    checks: List[ThresholdCheck] = field(default_factory=list)

    @property
    def passed(self) -> bool:
        return (
            self.response_time == GOOD
            and self.error_rate == GOOD
            and all(check.passed for check in self.checks)
        )

    @property
    def headline(self) -> str:
        return PASSED_HEADLINE if self.passed else WARNINGS_HEADLINE

    def as_dict(self) -> Dict[str, Any]:
        return {
            "headline": self.headline,
            "passed": self.passed,
            "responseTime": self.response_time,
            "errorRate": self.error_rate,
            "successRate": self.success_rate,
            "thresholds": [
                {"name": c.name, "limit": c.limit, "observed": c.observed, "passed": c.passed}
                for c in self.checks
            ],
        }


def summarize(
    results: Dict[str, Any],
    response_time_threshold: Optional[float] = None,
    error_rate_threshold: Optional[float] = None,
) -> Insight:
    """Deterministic reading of a results payload.

    Thresholds follow the k6 script the wizard previews: p95 latency against
    ``response_time_threshold`` and error rate (percent) against
    ``error_rate_threshold``.
    """
    total = results.get("totalRequests")
    successful = results.get("successfulRequests")
    success_rate = None
    if total and successful is not None:
        success_rate = round(successful / total * 100, 2)

    checks = []
    if response_time_threshold:
        checks.append(ThresholdCheck("p95ResponseTime", response_time_threshold, results["p95ResponseTime"]))
    if error_rate_threshold:
        checks.append(ThresholdCheck("errorRate", error_rate_threshold, results["errorRate"]))

    return Insight(
        response_time=grade_response_time(results["avgResponseTime"]),
        error_rate=grade_error_rate(results["errorRate"]),
        success_rate=success_rate,
        checks=checks,
    )
